from fastapi import APIRouter, Depends, Query, Request, status
from typing import List, Optional
from datetime import date
from sqlalchemy.orm import Session
import logging

from budget_app.models.schemas import (
    User,
    Category,
    CategoryCreate,
    CategorizationRule,
    CategorizationRuleCreate,
    Transaction,
    TransactionPage,
    TransactionCategoryUpdate,
    SyncResult,
)
from budget_app.api.auth import get_current_user
from budget_app.api.limiter import limiter
from budget_app.database.postgres_db import get_db
from budget_app.services.categorization import CategorizationService
from budget_app.services.transactions import TransactionService, transaction_to_dict
from budget_app.services.sync_scheduler import SyncScheduler, get_sync_scheduler
from budget_app.config import settings

router = APIRouter(prefix="/transactions", tags=["transactions"])
logger = logging.getLogger(__name__)


def _rule_to_dict(rule) -> dict:
    return {
        "id": rule.id,
        "merchant_pattern": rule.merchant_pattern,
        "category_id": rule.category_id,
        "category_name": rule.category.name if rule.category else None,
        "priority": rule.priority,
        "learned_from_user": rule.learned_from_user,
        "created_at": rule.created_at,
    }


@router.get("/categories", response_model=List[Category])
async def list_categories(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return CategorizationService(db).get_categories(current_user.id)


@router.post("/categories", response_model=Category, status_code=status.HTTP_201_CREATED)
async def create_category(
    category: CategoryCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    created = CategorizationService(db).create_category(current_user.id, category)
    db.commit()
    return created


@router.get("/rules", response_model=List[CategorizationRule])
async def list_rules(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [_rule_to_dict(rule) for rule in CategorizationService(db).get_rules(current_user.id)]


@router.post("/rules", response_model=CategorizationRule, status_code=status.HTTP_201_CREATED)
async def create_rule(
    rule: CategorizationRuleCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    created = CategorizationService(db).create_rule(
        current_user.id,
        rule.merchant_pattern,
        rule.category_id,
        rule.priority,
    )
    db.commit()
    return _rule_to_dict(created)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    CategorizationService(db).delete_rule(current_user.id, rule_id)
    db.commit()


@router.post("/sync/{account_id}", response_model=SyncResult)
@limiter.limit(settings.SYNC_RATE_LIMIT)
async def sync_account_now(
    request: Request,
    account_id: str,
    current_user: User = Depends(get_current_user),
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
):
    """Synchronous manual sync of one linked account."""
    result = scheduler.manual_sync(account_id, current_user.id)
    return SyncResult(account_id=account_id, **result)


@router.get("", response_model=TransactionPage)
async def list_transactions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[str] = None,
    account_id: Optional[str] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    merchant: Optional[str] = None,
    needs_review: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return TransactionService(db).get_transactions(
        current_user.id,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        account_id=account_id,
        min_amount=min_amount,
        max_amount=max_amount,
        merchant=merchant,
        review_needed=needs_review,
        page=page,
        limit=limit,
    )


@router.get("/{transaction_id}", response_model=Transaction)
async def get_transaction(
    transaction_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db).get_transaction(transaction_id, current_user.id)
    return transaction_to_dict(txn)


@router.patch("/{transaction_id}/category", response_model=Transaction)
async def update_transaction_category(
    transaction_id: str,
    update: TransactionCategoryUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db).update_category(transaction_id, current_user.id, update.category_id)
    db.commit()
    db.refresh(txn)
    return transaction_to_dict(txn)
