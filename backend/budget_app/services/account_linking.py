"""
Account Linking Service

Links Plaid items to users, keeps their transactions in sync and unlinks them.
Access tokens are stored Fernet-encrypted and never leave this module in plain text.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from budget_app.database.models import PlaidAccount
from budget_app.database.postgres_db import get_db_context
from budget_app.services.encryption import EncryptionService, encryption_service
from budget_app.services.exceptions import ConflictError, ExternalServiceError, NotFoundError
from budget_app.services.plaid_client import PlaidClient, plaid_client
from budget_app.services.transactions import TransactionService

logger = logging.getLogger(__name__)

SUPPORTED_ACCOUNT_TYPES = {"depository", "credit", "loan", "investment"}


class AccountLinkingService:
    def __init__(
        self,
        session: Session,
        client: Optional[PlaidClient] = None,
        encryption: Optional[EncryptionService] = None,
        transaction_service: Optional[TransactionService] = None,
    ):
        self.session = session
        self.client = client or plaid_client
        self.encryption = encryption or encryption_service
        self.transaction_service = transaction_service or TransactionService(session)

    def create_link_token(self, user_id: str) -> Dict[str, Any]:
        result = self.client.create_link_token(user_id=user_id)
        if not result:
            raise ExternalServiceError("Failed to create link token")
        return result

    def exchange_public_token(self, user_id: str, public_token: str) -> List[PlaidAccount]:
        """Exchange a Link public token and store every account of the new item."""
        exchange = self.client.exchange_public_token(public_token)
        if not exchange:
            raise ExternalServiceError("Failed to exchange public token")

        access_token = exchange["access_token"]
        plaid_accounts = self.client.get_accounts(access_token)
        if plaid_accounts is None:
            raise ExternalServiceError("Failed to fetch accounts from Plaid")

        encrypted_token = self.encryption.encrypt(access_token)
        linked = []
        for plaid_account in plaid_accounts:
            account_type = plaid_account.get("type")
            if account_type not in SUPPORTED_ACCOUNT_TYPES:
                logger.info("Skipping unsupported Plaid account type %s", account_type)
                continue

            account = (
                self.session.query(PlaidAccount)
                .filter(PlaidAccount.plaid_account_id == plaid_account["account_id"])
                .first()
            )
            if account is None:
                account = PlaidAccount(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    plaid_account_id=plaid_account["account_id"],
                )
                self.session.add(account)
            elif account.user_id != user_id:
                logger.warning(
                    "User %s tried to link Plaid account %s owned by user %s",
                    user_id,
                    plaid_account["account_id"],
                    account.user_id,
                )
                raise ConflictError("Account is already linked to another user")

            # Relinking an existing account reactivates it with the fresh token
            account.plaid_access_token = encrypted_token
            account.plaid_item_id = exchange["item_id"]
            account.account_name = plaid_account.get("name") or "Account"
            account.account_type = account_type
            account.account_subtype = plaid_account.get("subtype")
            account.current_balance = plaid_account["balances"].get("current")
            account.available_balance = plaid_account["balances"].get("available")
            account.is_active = True
            linked.append(account)

        self.session.flush()
        logger.info("Linked %d accounts from item %s for user %s", len(linked), exchange["item_id"], user_id)

        for account in linked:
            try:
                with self.session.begin_nested():
                    self.sync_account(account)
            except Exception:
                logger.exception("Initial sync failed for account %s", account.id)

        return linked

    def get_accounts(self, user_id: str) -> List[PlaidAccount]:
        return (
            self.session.query(PlaidAccount)
            .filter(PlaidAccount.user_id == user_id, PlaidAccount.is_active.is_(True))
            .order_by(PlaidAccount.created_at)
            .all()
        )

    def get_account(self, account_id: str, user_id: str) -> PlaidAccount:
        account = (
            self.session.query(PlaidAccount)
            .filter(
                PlaidAccount.id == account_id,
                PlaidAccount.user_id == user_id,
                PlaidAccount.is_active.is_(True),
            )
            .first()
        )
        if account is None:
            raise NotFoundError("Account not found")
        return account

    def remove_account(self, account_id: str, user_id: str) -> None:
        """Revoke the item at Plaid (best effort) and deactivate the account locally."""
        account = self.get_account(account_id, user_id)

        access_token = self.encryption.decrypt(account.plaid_access_token)
        if not self.client.remove_item(access_token):
            logger.warning("Plaid item removal failed for account %s; deactivating locally", account.id)

        account.is_active = False
        self.session.flush()
        logger.info("Unlinked account %s for user %s", account.id, user_id)

    def sync_account(self, account: PlaidAccount) -> Dict[str, int]:
        """
        Pull new transactions for one account using the stored sync cursor.

        Raises:
            ExternalServiceError: if Plaid does not answer
        """
        access_token = self.encryption.decrypt(account.plaid_access_token)
        cursor = account.sync_cursor
        added: List[Dict[str, Any]] = []

        has_more = True
        while has_more:
            page = self.client.sync_transactions(access_token, cursor=cursor)
            if page is None:
                raise ExternalServiceError(f"Failed to sync transactions for account {account.id}")
            # Item-level sync returns every account of the item
            added.extend(t for t in page["added"] if t["account_id"] == account.plaid_account_id)
            cursor = page["next_cursor"]
            has_more = page["has_more"]

        result = self.transaction_service.import_transactions(account.user_id, account.id, added)

        account.sync_cursor = cursor
        account.last_synced_at = datetime.utcnow()
        self.session.flush()
        return result


def list_active_account_ids() -> List[str]:
    with get_db_context() as session:
        rows = session.query(PlaidAccount.id).filter(PlaidAccount.is_active.is_(True)).all()
        return [row.id for row in rows]


def sync_linked_account(account_id: str, user_id: Optional[str] = None) -> Dict[str, int]:
    """
    Sync one account in its own database session.

    Raises:
        NotFoundError: if the account is inactive, missing or owned by another user
    """
    with get_db_context() as session:
        query = session.query(PlaidAccount).filter(
            PlaidAccount.id == account_id,
            PlaidAccount.is_active.is_(True),
        )
        if user_id:
            query = query.filter(PlaidAccount.user_id == user_id)
        account = query.first()
        if account is None:
            raise NotFoundError("Account not found")
        return AccountLinkingService(session).sync_account(account)
