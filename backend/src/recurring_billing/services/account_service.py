"""Account service for businesses (tenants) and their customers."""
import structlog

from recurring_billing.exceptions import InvalidOperationError
from recurring_billing.models.business import Business, Customer
from recurring_billing.repositories.subscription_repository import SubscriptionRepository
from recurring_billing.schemas.account import BusinessCreate, CustomerCreate
from recurring_billing.utils.currency import currency_symbols

logger = structlog.get_logger(__name__)


class AccountService:
    """Service layer for business and customer operations."""

    def __init__(self, repository: SubscriptionRepository):
        """Initialize account service with the storage collaborator."""
        self.repository = repository

    async def create_business(self, business_data: BusinessCreate) -> Business:
        """
        Register a new business.

        Args:
            business_data: Business creation data

        Returns:
            Created business

        Raises:
            ValidationError: Currency is not supported
        """
        currency = business_data.currency.upper()
        if currency not in currency_symbols:
            raise InvalidOperationError(
                f"Currency {currency} is not supported",
                context={"currency": currency, "supported": sorted(currency_symbols)},
            )

        business = Business(
            name=business_data.name,
            owner_name=business_data.owner_name,
            phone_number=business_data.phone_number,
            currency=currency,
            is_active=True,
        )
        await self.repository.add(business)

        logger.info("business_created", business_id=str(business.id), currency=currency)
        return business

    async def create_customer(self, customer_data: CustomerCreate) -> Customer:
        """
        Add a customer to a business.

        Raises:
            BusinessNotFoundError: Business does not exist
            InvalidOperationError: Business is deactivated
        """
        business = await self.repository.load_business(customer_data.business_id)
        if not business.is_active:
            raise InvalidOperationError(
                f"Business {business.id} is not active",
                context={"business_id": str(business.id)},
            )

        customer = Customer(
            business_id=business.id,
            first_name=customer_data.first_name,
            last_name=customer_data.last_name,
            phone_number=customer_data.phone_number,
            email=customer_data.email,
            is_active=True,
        )
        await self.repository.add(customer)

        logger.info("customer_created", customer_id=str(customer.id), business_id=str(business.id))
        return customer
