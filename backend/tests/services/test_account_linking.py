from contextlib import contextmanager
from datetime import datetime

import pytest

from budget_app.database.models import PlaidAccount, Transaction
from budget_app.services.account_linking import AccountLinkingService
from budget_app.services.encryption import encryption_service
from budget_app.services.exceptions import ConflictError, ExternalServiceError, NotFoundError
from budget_app.tasks import account_sync


class FakePlaidClient:
    def __init__(self, pages=None, accounts=None):
        self.pages = list(pages or [])
        self.accounts = accounts if accounts is not None else [
            {
                "account_id": "plaid-checking",
                "name": "Everyday Checking",
                "type": "depository",
                "subtype": "checking",
                "balances": {"current": 1200.0, "available": 1100.0},
            },
            {
                "account_id": "plaid-other",
                "name": "Mystery",
                "type": "other",
                "subtype": None,
                "balances": {"current": 0.0, "available": None},
            },
        ]
        self.sync_calls = []
        self.removed = []

    def create_link_token(self, user_id, client_name=None):
        return {"link_token": "link-sandbox-abc", "expiration": "2024-03-15T12:00:00Z"}

    def exchange_public_token(self, public_token):
        if public_token == "bad":
            return None
        return {"access_token": "access-sandbox-xyz", "item_id": "item-9"}

    def get_accounts(self, access_token):
        return self.accounts

    def sync_transactions(self, access_token, cursor=None, count=500):
        self.sync_calls.append((access_token, cursor))
        if not self.pages:
            return {"added": [], "modified": [], "removed": [], "next_cursor": cursor, "has_more": False}
        return self.pages.pop(0)

    def remove_item(self, access_token):
        self.removed.append(access_token)
        return True


def _page(added, cursor, has_more=False):
    return {"added": added, "modified": [], "removed": [], "next_cursor": cursor, "has_more": has_more}


def test_create_link_token_failure_raises(db_session, user):
    client = FakePlaidClient()
    client.create_link_token = lambda user_id, client_name=None: None

    with pytest.raises(ExternalServiceError):
        AccountLinkingService(db_session, client=client).create_link_token(user.id)


def test_exchange_stores_supported_accounts_with_encrypted_token(db_session, user):
    service = AccountLinkingService(db_session, client=FakePlaidClient())

    linked = service.exchange_public_token(user.id, "public-sandbox-1")

    assert [a.plaid_account_id for a in linked] == ["plaid-checking"]
    stored = db_session.query(PlaidAccount).one()
    assert stored.plaid_access_token != "access-sandbox-xyz"
    assert encryption_service.decrypt(stored.plaid_access_token) == "access-sandbox-xyz"
    assert stored.current_balance == 1200.0
    assert stored.last_synced_at is not None


def test_exchange_failure_raises(db_session, user):
    with pytest.raises(ExternalServiceError):
        AccountLinkingService(db_session, client=FakePlaidClient()).exchange_public_token(user.id, "bad")


def test_sync_follows_cursor_and_filters_by_account(db_session, user, account, plaid_transaction):
    client = FakePlaidClient(pages=[
        _page([plaid_transaction("t1"), plaid_transaction("t-other", account_id="someone-else")], "c1", has_more=True),
        _page([plaid_transaction("t2", amount=3.0)], "c2"),
    ])
    service = AccountLinkingService(db_session, client=client)

    result = service.sync_account(account)

    assert result == {"imported": 2, "duplicates": 0}
    assert [cursor for _, cursor in client.sync_calls] == [None, "c1"]
    assert client.sync_calls[0][0] == "access-sandbox-token"
    assert account.sync_cursor == "c2"
    assert {t.plaid_transaction_id for t in db_session.query(Transaction).all()} == {"t1", "t2"}


def test_sync_raises_when_plaid_fails(db_session, account):
    client = FakePlaidClient()
    client.sync_transactions = lambda access_token, cursor=None, count=500: None

    with pytest.raises(ExternalServiceError):
        AccountLinkingService(db_session, client=client).sync_account(account)


def test_remove_account_deactivates(db_session, user, other_user, account):
    client = FakePlaidClient()
    service = AccountLinkingService(db_session, client=client)

    with pytest.raises(NotFoundError):
        service.remove_account(account.id, other_user.id)

    service.remove_account(account.id, user.id)

    assert client.removed == ["access-sandbox-token"]
    assert account.is_active is False
    assert service.get_accounts(user.id) == []


def test_sync_job_reports_totals(db_session, user, account, plaid_transaction, monkeypatch):
    client = FakePlaidClient(pages=[_page([plaid_transaction("t1", account_id="plaid-acc-1")], "c1")])

    @contextmanager
    def fake_db_context():
        yield db_session

    monkeypatch.setattr(account_sync, "get_db_context", fake_db_context)
    monkeypatch.setattr(
        account_sync,
        "AccountLinkingService",
        lambda session: AccountLinkingService(session, client=client),
    )

    result = account_sync.run_account_sync_job(user.id)

    assert result["imported"] == 1
    assert result["accounts"] == [{"account_id": account.id, "imported": 1, "duplicates": 0}]
    assert db_session.query(Transaction).count() == 1


def _linked_checking():
    return [{
        "account_id": "plaid-acc-1",
        "name": "Relinked Checking",
        "type": "depository",
        "subtype": "checking",
        "balances": {"current": 50.0, "available": 50.0},
    }]


def test_relink_refreshes_own_account(db_session, user, account):
    account.is_active = False
    db_session.flush()
    service = AccountLinkingService(db_session, client=FakePlaidClient(accounts=_linked_checking()))

    (relinked,) = service.exchange_public_token(user.id, "public-sandbox-2")

    assert relinked.id == account.id
    assert relinked.is_active is True
    assert relinked.account_name == "Relinked Checking"
    assert encryption_service.decrypt(relinked.plaid_access_token) == "access-sandbox-xyz"


def test_relink_rejects_account_owned_by_another_user(db_session, user, other_user, account, make_transaction):
    make_transaction()
    service = AccountLinkingService(db_session, client=FakePlaidClient(accounts=_linked_checking()))

    with pytest.raises(ConflictError):
        service.exchange_public_token(other_user.id, "public-sandbox-2")

    stored = db_session.get(PlaidAccount, account.id)
    assert stored.user_id == user.id
    assert stored.account_name == "Checking"
    assert encryption_service.decrypt(stored.plaid_access_token) == "access-sandbox-token"
    assert db_session.query(Transaction).filter(Transaction.user_id == user.id).count() == 1
