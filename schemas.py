"""
Database Schemas for Hospital Financial Reporting

Each Pydantic model below either represents a document in a MongoDB
collection or a request body that becomes one. Field names are snake_case
in Python and camelCase on the wire and in storage (e.g. ``patientCare``),
so exported files and stored documents share the same category keys.

Collections:
- financial_report  -> FinancialReport
- hospital_settings -> HospitalSettings
- review_schedule   -> ReviewSchedule
- user              -> User
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

ReportType = Literal["monthly", "quarterly", "annual"]
ReportStatus = Literal["draft", "submitted", "approved", "archived"]
ReviewType = Literal["monthly", "quarterly", "annual", "audit"]
ReviewStatus = Literal["pending", "in-progress", "completed", "overdue"]
Role = Literal["admin", "finance", "viewer"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItems(CamelModel):
    """A named category of amounts. Unknown keys are rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# Line items

class Revenue(LineItems):
    patient_care: float = Field(0, ge=0)
    emergency_services: float = Field(0, ge=0)
    surgery: float = Field(0, ge=0)
    laboratory: float = Field(0, ge=0)
    pharmacy: float = Field(0, ge=0)
    other: float = Field(0, ge=0)


class Expenses(LineItems):
    salaries: float = Field(0, ge=0)
    medical_supplies: float = Field(0, ge=0)
    equipment: float = Field(0, ge=0)
    utilities: float = Field(0, ge=0)
    maintenance: float = Field(0, ge=0)
    insurance: float = Field(0, ge=0)
    other: float = Field(0, ge=0)


class CurrentAssets(LineItems):
    cash: float = Field(0, ge=0)
    accounts_receivable: float = Field(0, ge=0)
    inventory: float = Field(0, ge=0)
    other: float = Field(0, ge=0)


class FixedAssets(LineItems):
    buildings: float = Field(0, ge=0)
    equipment: float = Field(0, ge=0)
    vehicles: float = Field(0, ge=0)
    other: float = Field(0, ge=0)


class Assets(LineItems):
    current: CurrentAssets = Field(default_factory=CurrentAssets)
    fixed: FixedAssets = Field(default_factory=FixedAssets)


class CurrentLiabilities(LineItems):
    accounts_payable: float = Field(0, ge=0)
    short_term_debt: float = Field(0, ge=0)
    accrued_expenses: float = Field(0, ge=0)
    other: float = Field(0, ge=0)


class LongTermLiabilities(LineItems):
    long_term_debt: float = Field(0, ge=0)
    other: float = Field(0, ge=0)


class Liabilities(LineItems):
    current: CurrentLiabilities = Field(default_factory=CurrentLiabilities)
    long_term: LongTermLiabilities = Field(default_factory=LongTermLiabilities)


class Equity(LineItems):
    capital: float = Field(0, ge=0)
    retained_earnings: float = 0
    current_earnings: float = 0


class TaxInput(CamelModel):
    rate: Optional[float] = Field(None, ge=0, le=1, description="Falls back to the hospital's corporate tax rate")
    deductions: float = Field(0, ge=0)


# Derived blocks, always recomputed server side

class Tax(CamelModel):
    income: float = 0
    rate: float = Field(0.25, ge=0, le=1)
    amount: float = 0
    deductions: float = 0
    net_taxable: float = 0


class BalanceSheet(CamelModel):
    total_assets: float = 0
    total_liabilities: float = 0
    total_equity: float = 0
    is_balanced: bool = False


# Financial reports

class ReportCreate(CamelModel):
    report_type: ReportType
    year: int = Field(..., ge=2020, le=2030)
    month: Optional[int] = Field(None, ge=1, le=12)
    quarter: Optional[int] = Field(None, ge=1, le=4)
    revenue: Revenue = Field(default_factory=Revenue)
    expenses: Expenses = Field(default_factory=Expenses)
    assets: Assets = Field(default_factory=Assets)
    liabilities: Liabilities = Field(default_factory=Liabilities)
    equity: Equity = Field(default_factory=Equity)
    tax: TaxInput = Field(default_factory=TaxInput)
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_period_shape(self):
        if self.report_type == "monthly" and (self.month is None or self.quarter is not None):
            raise ValueError("monthly reports need a month and no quarter")
        if self.report_type == "quarterly" and (self.quarter is None or self.month is not None):
            raise ValueError("quarterly reports need a quarter and no month")
        if self.report_type == "annual" and (self.month is not None or self.quarter is not None):
            raise ValueError("annual reports take neither month nor quarter")
        return self


class ReportUpdate(CamelModel):
    """Partial edit. A category that is present replaces the stored one."""

    revenue: Optional[Revenue] = None
    expenses: Optional[Expenses] = None
    assets: Optional[Assets] = None
    liabilities: Optional[Liabilities] = None
    equity: Optional[Equity] = None
    tax: Optional[TaxInput] = None
    notes: Optional[str] = Field(None, max_length=1000)


class FinancialReport(CamelModel):
    id: Optional[str] = None
    hospital_id: str
    report_type: ReportType
    period: str
    year: int
    month: Optional[int] = None
    quarter: Optional[int] = None
    revenue: Revenue = Field(default_factory=Revenue)
    expenses: Expenses = Field(default_factory=Expenses)
    assets: Assets = Field(default_factory=Assets)
    liabilities: Liabilities = Field(default_factory=Liabilities)
    equity: Equity = Field(default_factory=Equity)
    tax: Tax = Field(default_factory=Tax)
    balance_sheet: BalanceSheet = Field(default_factory=BalanceSheet)
    status: ReportStatus = "draft"
    created_by: str = Field(..., description="user id of the creator")
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Review schedules

class ReviewCreate(CamelModel):
    report_id: str
    scheduled_date: datetime
    review_type: ReviewType
    assigned_to: str = Field(..., description="user id of the reviewer")
    notes: Optional[str] = Field(None, max_length=500)


class ReviewStatusUpdate(CamelModel):
    status: ReviewStatus
    notes: Optional[str] = Field(None, max_length=500)


class ReviewSchedule(ReviewCreate):
    id: Optional[str] = None
    hospital_id: str
    status: ReviewStatus = "pending"
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Hospital settings

class TaxSettings(CamelModel):
    corporate_tax_rate: float = Field(0.25, ge=0, le=1)
    vat_rate: float = Field(0.11, ge=0, le=1)
    withholding_tax_rate: float = Field(0.02, ge=0, le=1)
    deduction_types: List[str] = Field(default_factory=list)


class ReportingSettings(CamelModel):
    auto_approval: bool = False
    require_dual_approval: bool = True
    archive_after_months: int = Field(24, ge=1, le=120)


class NotificationSettings(CamelModel):
    email_notifications: bool = True
    reminder_days: List[int] = Field(default_factory=lambda: [7, 3, 1])

    @model_validator(mode="after")
    def check_reminder_days(self):
        if any(day < 1 for day in self.reminder_days):
            raise ValueError("reminder days must be positive")
        return self


class HospitalSettingsIn(CamelModel):
    hospital_name: str = Field(..., max_length=200)
    address: str = Field(..., max_length=500)
    phone: str
    email: EmailStr
    tax_id: str
    fiscal_year_start: int = Field(1, ge=1, le=12)
    currency: Literal["IDR", "USD"] = "IDR"
    tax_settings: TaxSettings = Field(default_factory=TaxSettings)
    reporting_settings: ReportingSettings = Field(default_factory=ReportingSettings)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)


class HospitalSettings(HospitalSettingsIn):
    id: Optional[str] = None
    hospital_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Users

class User(CamelModel):
    name: str
    email: EmailStr
    password_hash: str
    role: Role = Field(..., description="admin | finance | viewer")
    hospital_id: str
    is_active: bool = True
    last_login: Optional[datetime] = None


class UserCreate(CamelModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role


class UserPublic(CamelModel):
    id: str
    name: str
    email: EmailStr
    role: Role
    hospital_id: str
    is_active: bool


class RoleUpdate(CamelModel):
    role: Role


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
