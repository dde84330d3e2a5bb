import os
import uuid
from datetime import datetime

import pytest

os.environ["SECRET_KEY"] = "test-signing-key-abcdefghijklmnopqrstuvwxyz"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-abcdefghijklmnopqrstuvwxyz"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SYNC_SCHEDULER_ENABLED"] = "false"
os.environ["OLLAMA_ENABLED"] = "false"
os.environ.pop("PLAID_CLIENT_ID", None)
os.environ.pop("PLAID_SECRET", None)

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from budget_app.database.models import Base, Category, PlaidAccount, Transaction, User
from budget_app.database.seed import seed_system_categories
from budget_app.services.encryption import encryption_service


class FakeRedis:
    """In-memory stand-in for the few Redis commands the app uses."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value.encode() if isinstance(value, str) else value

    def delete(self, key):
        self.store.pop(key, None)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to nest properly
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    seed_system_categories(session)
    session.commit()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


def _make_user(session, email):
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        password_hash="not-a-real-hash",
        first_name="Test",
        last_name="User",
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def user(db_session):
    return _make_user(db_session, "user@example.com")


@pytest.fixture
def other_user(db_session):
    return _make_user(db_session, "other@example.com")


@pytest.fixture
def account(db_session, user):
    account = PlaidAccount(
        id=str(uuid.uuid4()),
        user_id=user.id,
        plaid_account_id="plaid-acc-1",
        plaid_access_token=encryption_service.encrypt("access-sandbox-token"),
        plaid_item_id="item-1",
        account_name="Checking",
        account_type="depository",
        account_subtype="checking",
        is_active=True,
    )
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture
def category_named(db_session):
    def _lookup(name):
        return db_session.query(Category).filter(Category.name == name, Category.is_system.is_(True)).one()
    return _lookup


@pytest.fixture
def make_transaction(db_session, user, account):
    """Insert a transaction directly, bypassing the import pipeline."""

    def _make(amount=25.0, date=None, merchant_name="Corner Store", description=None, **fields):
        txn = Transaction(
            id=str(uuid.uuid4()),
            user_id=fields.pop("user_id", user.id),
            account_id=fields.pop("account_id", account.id),
            amount=amount,
            date=date or datetime(2024, 3, 15, 12, 0),
            merchant_name=merchant_name,
            description=description or merchant_name or "Purchase",
            category_confidence=fields.pop("category_confidence", 85),
            is_pending=fields.pop("is_pending", False),
            is_fraudulent=False,
            **fields,
        )
        db_session.add(txn)
        db_session.flush()
        return txn

    return _make


@pytest.fixture
def plaid_transaction():
    """Formatted Plaid transaction as produced by PlaidClient._format_transaction."""

    def _make(transaction_id="txn-1", amount=12.5, date=datetime(2024, 3, 15, 9, 30), **overrides):
        data = {
            "transaction_id": transaction_id,
            "account_id": "plaid-acc-1",
            "amount": amount,
            "date": date,
            "name": "STARBUCKS STORE 123",
            "merchant_name": "Starbucks",
            "category": ["Food and Drink", "Restaurants", "Coffee Shop"],
            "pending": False,
            "location": {"city": "Charlotte", "region": "NC", "country": "US"},
        }
        data.update(overrides)
        return data

    return _make
