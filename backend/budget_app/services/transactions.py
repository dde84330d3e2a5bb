"""
Transaction Service

Import pipeline for Plaid transactions (dedupe -> categorize -> store -> fraud
analysis) plus filtered, paginated queries and manual recategorization.
"""
import logging
import math
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from budget_app.database.models import PlaidAccount, Transaction
from budget_app.services.categorization import (
    MANUAL_CONFIDENCE,
    REVIEW_THRESHOLD,
    CategorizationResult,
    CategorizationService,
    needs_review,
)
from budget_app.services.exceptions import NotFoundError, ValidationError
from budget_app.services.fraud_detection import FraudDetectionService

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    raise ValueError(f"Unsupported date value: {value!r}")


def validate_plaid_transaction(plaid_txn: Dict[str, Any]) -> List[str]:
    errors = []
    if not plaid_txn.get("transaction_id"):
        errors.append("transaction_id is required")
    if plaid_txn.get("amount") is None:
        errors.append("amount is required")
    elif not isinstance(plaid_txn["amount"], (int, float)):
        errors.append("amount must be a number")
    if not plaid_txn.get("date"):
        errors.append("date is required")
    if not (plaid_txn.get("name") or plaid_txn.get("merchant_name")):
        errors.append("description is required")
    return errors


def transaction_to_dict(txn: Transaction) -> Dict[str, Any]:
    category = txn.category
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "plaid_transaction_id": txn.plaid_transaction_id,
        "amount": txn.amount,
        "date": txn.date,
        "merchant_name": txn.merchant_name,
        "description": txn.description,
        "category_id": txn.category_id,
        "category_name": category.name if category else None,
        "category_icon": category.icon if category else None,
        "category_color": category.color if category else None,
        "category_confidence": txn.category_confidence,
        "needs_review": needs_review(txn.category_confidence),
        "is_pending": txn.is_pending,
        "location_city": txn.location_city,
        "location_region": txn.location_region,
        "location_country": txn.location_country,
        "is_fraudulent": txn.is_fraudulent,
        "created_at": txn.created_at,
    }


class TransactionService:
    def __init__(
        self,
        session: Session,
        categorizer: Optional[CategorizationService] = None,
        fraud_detector: Optional[FraudDetectionService] = None,
    ):
        self.session = session
        self.categorizer = categorizer or CategorizationService(session)
        self.fraud_detector = fraud_detector or FraudDetectionService(session)

    # Import

    def _is_duplicate(self, account_id: str, plaid_txn: Dict[str, Any], txn_date: datetime) -> bool:
        if self.session.query(Transaction.id).filter(
            Transaction.plaid_transaction_id == plaid_txn["transaction_id"]
        ).first():
            return True

        # Same account, amount, calendar day and merchant is treated as the same purchase
        day_start = datetime(txn_date.year, txn_date.month, txn_date.day)
        merchant = plaid_txn.get("merchant_name") or plaid_txn.get("name")
        query = self.session.query(Transaction.id).filter(
            Transaction.account_id == account_id,
            Transaction.amount == plaid_txn["amount"],
            Transaction.date >= day_start,
            Transaction.date < day_start + timedelta(days=1),
        )
        if plaid_txn.get("merchant_name"):
            query = query.filter(Transaction.merchant_name == merchant)
        else:
            query = query.filter(Transaction.merchant_name.is_(None), Transaction.description == merchant)
        return query.first() is not None

    def import_transactions(self, user_id: str, account_id: str, plaid_transactions: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Import formatted Plaid transactions for one account.

        Returns:
            {"imported": n, "duplicates": n}
        """
        imported = 0
        duplicates = 0

        for plaid_txn in plaid_transactions:
            errors = validate_plaid_transaction(plaid_txn)
            if errors:
                logger.warning(
                    "Skipping invalid transaction %s: %s",
                    plaid_txn.get("transaction_id"),
                    ", ".join(errors),
                )
                continue

            try:
                txn_date = _as_datetime(plaid_txn["date"])
                if self._is_duplicate(account_id, plaid_txn, txn_date):
                    duplicates += 1
                    continue

                with self.session.begin_nested():
                    txn = self._store(user_id, account_id, plaid_txn, txn_date)
                imported += 1
            except Exception:
                logger.exception("Failed to import transaction %s", plaid_txn.get("transaction_id"))
                continue

            # A failed alert insert only rolls back its own savepoint
            try:
                with self.session.begin_nested():
                    self.fraud_detector.analyze_transaction(txn)
            except Exception:
                logger.exception("Fraud analysis failed for transaction %s", txn.id)

        logger.info(
            "Imported %d transactions for account %s (%d duplicates skipped)",
            imported,
            account_id,
            duplicates,
        )
        return {"imported": imported, "duplicates": duplicates}

    def _store(self, user_id: str, account_id: str, plaid_txn: Dict[str, Any], txn_date: datetime) -> Transaction:
        description = plaid_txn.get("name") or plaid_txn.get("merchant_name")
        location = plaid_txn.get("location") or {}

        try:
            result = self.categorizer.categorize(
                user_id,
                description=description,
                merchant_name=plaid_txn.get("merchant_name"),
                plaid_category=plaid_txn.get("category"),
                amount=plaid_txn["amount"],
            )
        except Exception:
            logger.exception("Categorization failed for transaction %s", plaid_txn["transaction_id"])
            result = CategorizationResult(self.categorizer.get_default_category().id, 0, "default")

        txn = Transaction(
            id=str(uuid.uuid4()),
            user_id=user_id,
            account_id=account_id,
            plaid_transaction_id=plaid_txn["transaction_id"],
            amount=float(plaid_txn["amount"]),
            date=txn_date,
            merchant_name=plaid_txn.get("merchant_name"),
            description=description,
            category_id=result.category_id,
            category_confidence=result.confidence,
            is_pending=bool(plaid_txn.get("pending", False)),
            location_city=location.get("city"),
            location_region=location.get("region"),
            location_country=location.get("country"),
            is_fraudulent=False,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    # Queries

    def get_transactions(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[str] = None,
        account_id: Optional[str] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        merchant: Optional[str] = None,
        review_needed: Optional[bool] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        if page < 1:
            raise ValidationError("page must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        query = self.session.query(Transaction).filter(Transaction.user_id == user_id)
        if start_date:
            query = query.filter(Transaction.date >= _as_datetime(start_date))
        if end_date:
            query = query.filter(Transaction.date < _as_datetime(end_date) + timedelta(days=1))
        if category_id:
            query = query.filter(Transaction.category_id == category_id)
        if account_id:
            query = query.filter(Transaction.account_id == account_id)
        if min_amount is not None:
            query = query.filter(Transaction.amount >= min_amount)
        if max_amount is not None:
            query = query.filter(Transaction.amount <= max_amount)
        if merchant:
            query = query.filter(func.lower(Transaction.merchant_name).contains(merchant.lower()))
        if review_needed is True:
            query = query.filter(Transaction.category_confidence < REVIEW_THRESHOLD)
        elif review_needed is False:
            query = query.filter(Transaction.category_confidence >= REVIEW_THRESHOLD)

        total = query.count()
        rows = (
            query.options(joinedload(Transaction.category))
            .order_by(Transaction.date.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return {
            "transactions": [transaction_to_dict(t) for t in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def get_transaction(self, transaction_id: str, user_id: str) -> Transaction:
        txn = (
            self.session.query(Transaction)
            .filter(Transaction.id == transaction_id, Transaction.user_id == user_id)
            .first()
        )
        if txn is None:
            raise NotFoundError("Transaction not found")
        return txn

    def update_category(self, transaction_id: str, user_id: str, category_id: str) -> Transaction:
        """Manual recategorization; also teaches the categorizer a rule for this merchant."""
        txn = self.get_transaction(transaction_id, user_id)
        self.categorizer.get_accessible_category(user_id, category_id)

        txn.category_id = category_id
        txn.category_confidence = MANUAL_CONFIDENCE
        txn.updated_at = datetime.utcnow()
        self.session.flush()

        try:
            with self.session.begin_nested():
                self.categorizer.learn_from_correction(user_id, txn.merchant_name or txn.description, category_id)
        except Exception:
            logger.exception("Failed to learn categorization rule from transaction %s", txn.id)

        return txn

    def get_active_account(self, account_id: str, user_id: str) -> PlaidAccount:
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
