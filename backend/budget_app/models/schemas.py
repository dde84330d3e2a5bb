from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from enum import Enum
import re

HEX_COLOR_RE = re.compile(r'^#[0-9A-Fa-f]{6}$')


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class FraudAlertType(str, Enum):
    UNUSUAL_AMOUNT = "unusual_amount"
    UNUSUAL_LOCATION = "unusual_location"
    RAPID_TRANSACTIONS = "rapid_transactions"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


# Users / auth

class UserBase(BaseModel):
    email: EmailStr
    first_name: str
    last_name: str

class UserCreate(UserBase):
    password: str

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class User(UserBase):
    id: str
    created_at: datetime

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

class AuthResponse(Token):
    user: User

class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None

class TokenData(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    token_type: Optional[str] = None


# Categories

class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = None
    color: Optional[str] = None
    parent_category_id: Optional[str] = None

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value):
        if value is not None and not HEX_COLOR_RE.match(value):
            raise ValueError("color must be a hex value like #4CAF50")
        return value

class CategoryCreate(CategoryBase):
    pass

class Category(CategoryBase):
    id: str
    user_id: Optional[str] = None
    is_system: bool

    class Config:
        from_attributes = True


# Categorization rules

class CategorizationRuleCreate(BaseModel):
    merchant_pattern: str = Field(..., min_length=1)
    category_id: str
    priority: Optional[int] = None

class CategorizationRule(BaseModel):
    id: str
    merchant_pattern: str
    category_id: str
    category_name: Optional[str] = None
    priority: int
    learned_from_user: bool
    created_at: datetime

    class Config:
        from_attributes = True


# Linked accounts

class LinkTokenResponse(BaseModel):
    link_token: str
    expiration: str

class ExchangeTokenRequest(BaseModel):
    public_token: str
    metadata: Optional[Dict[str, Any]] = None

class LinkedAccount(BaseModel):
    id: str
    plaid_account_id: str
    plaid_item_id: str
    account_name: str
    account_type: str
    account_subtype: Optional[str] = None
    current_balance: Optional[float] = None
    available_balance: Optional[float] = None
    last_synced_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class LinkedAccountsResponse(BaseModel):
    accounts: List[LinkedAccount]
    message: Optional[str] = None

class SyncResult(BaseModel):
    account_id: str
    imported: int
    duplicates: int

class SyncJobResponse(BaseModel):
    job_id: str
    status: str


# Transactions

class TransactionCategoryUpdate(BaseModel):
    category_id: str

class Transaction(BaseModel):
    id: str
    account_id: str
    plaid_transaction_id: Optional[str] = None
    amount: float
    date: datetime
    merchant_name: Optional[str] = None
    description: str
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_icon: Optional[str] = None
    category_color: Optional[str] = None
    category_confidence: int
    needs_review: bool = False
    is_pending: bool
    location_city: Optional[str] = None
    location_region: Optional[str] = None
    location_country: Optional[str] = None
    is_fraudulent: bool
    created_at: datetime

    class Config:
        from_attributes = True

class TransactionPage(BaseModel):
    transactions: List[Transaction]
    total: int
    page: int
    limit: int
    total_pages: int


# Budgets

class BudgetBase(BaseModel):
    category_id: str
    amount: float
    period: BudgetPeriod
    start_date: date
    end_date: date
    alert_threshold: int = 80

class BudgetCreate(BudgetBase):
    pass

class BudgetUpdate(BaseModel):
    category_id: Optional[str] = None
    amount: Optional[float] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    alert_threshold: Optional[int] = None

class Budget(BudgetBase):
    id: str
    user_id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class BudgetProgress(BaseModel):
    budget: Budget
    category_name: Optional[str] = None
    current_spending: float
    percentage_used: float
    remaining_amount: float
    days_remaining: int
    is_over_budget: bool
    should_alert: bool


# Fraud alerts

class FraudAlertReview(BaseModel):
    is_false_positive: bool

class FraudAlertTransaction(BaseModel):
    id: str
    amount: float
    merchant_name: Optional[str] = None
    description: str
    date: datetime

class FraudAlert(BaseModel):
    id: str
    transaction_id: str
    alert_type: FraudAlertType
    severity: Severity
    reason: str
    is_reviewed: bool
    is_false_positive: bool
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    transaction: Optional[FraudAlertTransaction] = None

    class Config:
        from_attributes = True


# Reports

class ReportMeta(BaseModel):
    generated_in_ms: float
    cached: bool = False

class CategorySpending(BaseModel):
    category_id: Optional[str] = None
    category_name: str
    category_color: Optional[str] = None
    total_amount: float
    transaction_count: int
    percentage: float

class SpendingByCategoryResponse(BaseModel):
    data: List[CategorySpending]
    meta: ReportMeta

class PeriodSummary(BaseModel):
    start_date: datetime
    end_date: datetime
    total_spending: float
    transaction_count: int
    average_transaction: float

class TrendComparison(BaseModel):
    current_period: PeriodSummary
    previous_period: PeriodSummary
    change_amount: float
    change_percentage: float
    trend: Trend

class TrendResponse(BaseModel):
    data: TrendComparison
    meta: ReportMeta
