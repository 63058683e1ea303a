"""Organization and user profile schemas"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email, validate_hex_color, validate_slug

OrganizationType = Literal["internal", "partner", "client"]


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = None  # Derived from the name when omitted
    type: OrganizationType = "client"
    parent_id: Optional[int] = None
    is_priority_client: bool = False
    logo_url: Optional[str] = Field(None, max_length=500)
    brand_color: Optional[str] = None
    billing_email: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("slug")
    @classmethod
    def check_slug(cls, v):
        return validate_slug(v)

    @field_validator("brand_color")
    @classmethod
    def check_brand_color(cls, v):
        return validate_hex_color(v)

    @field_validator("billing_email")
    @classmethod
    def check_billing_email(cls, v):
        return validate_email(v)


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = None
    parent_id: Optional[int] = None
    is_priority_client: Optional[bool] = None
    status: Optional[Literal["active", "suspended"]] = None
    logo_url: Optional[str] = Field(None, max_length=500)
    brand_color: Optional[str] = None
    billing_email: Optional[str] = None

    @field_validator("slug")
    @classmethod
    def check_slug(cls, v):
        return validate_slug(v)

    @field_validator("brand_color")
    @classmethod
    def check_brand_color(cls, v):
        return validate_hex_color(v)

    @field_validator("billing_email")
    @classmethod
    def check_billing_email(cls, v):
        return validate_email(v)


class OrganizationResponse(BaseModel):
    id: int
    public_id: str
    name: str
    slug: str
    type: str
    parent_id: Optional[int]
    is_priority_client: bool
    status: str
    logo_url: Optional[str]
    brand_color: Optional[str]
    billing_email: Optional[str]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: Optional[str]
    avatar_url: Optional[str]
    role: str
    is_account_manager: bool
    organization_id: Optional[int]
    is_active: bool
    notification_preferences: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
