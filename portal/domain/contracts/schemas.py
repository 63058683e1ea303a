"""Contract domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ContractCreate(BaseModel):
    """Schema for creating a draft contract"""

    client_org_id: int
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    content: Optional[str] = Field(None, max_length=200000)  # HTML, sanitized on save
    value_cents: Optional[int] = Field(None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before the start date")
        return self


class ContractUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    content: Optional[str] = Field(None, max_length=200000)
    value_cents: Optional[int] = Field(None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ContractSignRequest(BaseModel):
    signer_name: str = Field(..., min_length=1, max_length=255)
    signature: str = Field(..., min_length=1, max_length=500000)  # Typed name or data URL
    agree_to_terms: bool

    @field_validator("agree_to_terms")
    @classmethod
    def must_agree(cls, v):
        if not v:
            raise ValueError("You must agree to the contract terms")
        return v


class ContractStatusUpdate(BaseModel):
    status: Literal["completed", "void"]


class ContractResponse(BaseModel):
    """Schema for contract response"""

    id: int
    public_id: str
    organization_id: int
    client_org_id: int
    title: str
    description: Optional[str]
    content: Optional[str]
    status: str
    value_cents: Optional[int]
    start_date: Optional[date]
    end_date: Optional[date]
    sent_at: Optional[datetime]
    viewed_at: Optional[datetime]
    signed_at: Optional[datetime]
    completed_at: Optional[datetime]
    signer_name: Optional[str]
    signer_email: Optional[str]
    created_by: Optional[int]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
