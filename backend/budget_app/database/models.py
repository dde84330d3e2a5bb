"""
SQLAlchemy ORM Models for PostgreSQL
"""
from sqlalchemy import (
    Column, String, Float, DateTime, Date, ForeignKey, Text, Integer, Boolean, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    accounts = relationship("PlaidAccount", back_populates="user", cascade="all, delete-orphan")
    categories = relationship("Category", back_populates="user", cascade="all, delete-orphan")
    categorization_rules = relationship("CategorizationRule", back_populates="user", cascade="all, delete-orphan")
    budgets = relationship("Budget", back_populates="user", cascade="all, delete-orphan")


class Category(Base):
    """Spending category. System categories have no owner and are shared by every user."""
    __tablename__ = "categories"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String, nullable=False)
    icon = Column(String, nullable=True)
    color = Column(String, nullable=True)  # Hex color, e.g. #4CAF50
    parent_category_id = Column(String, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="categories")
    parent = relationship("Category", remote_side=[id])

    __table_args__ = (
        Index('idx_category_user_name', 'user_id', 'name'),
    )


class CategorizationRule(Base):
    """User regex rule mapping a merchant pattern to a category."""
    __tablename__ = "categorization_rules"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    merchant_pattern = Column(String, nullable=False)
    category_id = Column(String, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    learned_from_user = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="categorization_rules")
    category = relationship("Category")

    __table_args__ = (
        Index('idx_rule_user_priority', 'user_id', 'priority'),
    )


class PlaidAccount(Base):
    """A bank or credit account linked through Plaid"""
    __tablename__ = "plaid_accounts"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plaid_account_id = Column(String, nullable=False, unique=True, index=True)  # Plaid's account ID
    plaid_access_token = Column(String, nullable=False)  # Fernet encrypted
    plaid_item_id = Column(String, nullable=False, index=True)
    account_name = Column(String, nullable=False)
    account_type = Column(String, nullable=False)  # depository, credit, loan, investment
    account_subtype = Column(String, nullable=True)  # checking, savings, credit card, etc.
    current_balance = Column(Float, nullable=True)
    available_balance = Column(Float, nullable=True)
    sync_cursor = Column(String, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account", cascade="all, delete-orphan")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(String, ForeignKey("plaid_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    plaid_transaction_id = Column(String, nullable=True, unique=True, index=True)
    amount = Column(Float, nullable=False)  # Plaid convention: positive is money out
    date = Column(DateTime, nullable=False, index=True)
    merchant_name = Column(String, nullable=True)
    description = Column(Text, nullable=False)
    category_id = Column(String, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    category_confidence = Column(Integer, default=0, nullable=False)  # 0 to 100
    is_pending = Column(Boolean, default=False, nullable=False)
    location_city = Column(String, nullable=True)
    location_region = Column(String, nullable=True)
    location_country = Column(String, nullable=True)
    is_fraudulent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    account = relationship("PlaidAccount", back_populates="transactions")
    category = relationship("Category")
    fraud_alerts = relationship("FraudAlert", back_populates="transaction", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_transaction_user_date', 'user_id', 'date'),
        Index('idx_transaction_user_category_date', 'user_id', 'category_id', 'date'),
    )


class Budget(Base):
    __tablename__ = "budgets"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(String, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    period = Column(String, nullable=False)  # monthly, quarterly, annual
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    alert_threshold = Column(Integer, default=80, nullable=False)  # Percentage 1-100
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="budgets")
    category = relationship("Category")


class FraudAlert(Base):
    __tablename__ = "fraud_alerts"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_id = Column(String, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    alert_type = Column(String, nullable=False)  # unusual_amount, unusual_location, rapid_transactions
    severity = Column(String, nullable=False)  # low, medium, high
    reason = Column(Text, nullable=False)
    is_reviewed = Column(Boolean, default=False, nullable=False)
    is_false_positive = Column(Boolean, default=False, nullable=False)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    transaction = relationship("Transaction", back_populates="fraud_alerts")

    # One alert per heuristic per transaction
    __table_args__ = (
        UniqueConstraint('transaction_id', 'alert_type', name='uq_fraud_alert_transaction_type'),
        Index('idx_fraud_alert_user_reviewed', 'user_id', 'is_reviewed'),
    )
