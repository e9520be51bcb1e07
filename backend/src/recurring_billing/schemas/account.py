"""Pydantic schemas for businesses and customers."""
from uuid import UUID

from pydantic import BaseModel, Field


class BusinessCreate(BaseModel):
    """Schema for registering a business (tenant)."""

    name: str = Field(..., min_length=1, max_length=255, description="Business name")
    owner_name: str | None = Field(default=None, max_length=255, description="Owner's full name")
    phone_number: str | None = Field(default=None, max_length=32, description="Contact phone number")
    currency: str = Field(default="IRR", min_length=3, max_length=3, description="ISO 4217 tenant currency")


class CustomerCreate(BaseModel):
    """Schema for adding a customer to a business."""

    business_id: UUID = Field(..., description="Business this customer belongs to")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., pattern=r"^\+?[0-9]{7,15}$", description="Phone number for SMS notifications")
    email: str | None = Field(default=None, max_length=255)
