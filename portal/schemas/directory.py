from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    company_code: Optional[str] = Field(default=None, max_length=20)
    primary_contact: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class CompanyPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    primary_contact: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class UserCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = ""
    email: str = Field(min_length=3, max_length=255)
    role: str
    company_id: Optional[UUID] = None
    password: Optional[str] = None
    timezone: Optional[str] = None
    assigned_company_ids: list[UUID] = Field(default_factory=list)


class AgentCompanies(BaseModel):
    company_ids: list[UUID] = Field(default_factory=list)


class SuperAdminCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = ""
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    timezone: Optional[str] = None


class InsuredAccountCreate(BaseModel):
    insured_name: str = Field(min_length=1, max_length=200)
    primary_contact_name: str = Field(min_length=1, max_length=200)
    contact_email: str = Field(min_length=3, max_length=255)
    phone: str = Field(min_length=1, max_length=40)
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zipcode: str = Field(min_length=1, max_length=20)
    company_id: Optional[UUID] = None


class InsuredAccountPatch(BaseModel):
    insured_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    primary_contact_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    contact_email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    phone: Optional[str] = Field(default=None, min_length=1, max_length=40)
    street: Optional[str] = Field(default=None, min_length=1, max_length=200)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, min_length=1, max_length=100)
    zipcode: Optional[str] = Field(default=None, min_length=1, max_length=20)
