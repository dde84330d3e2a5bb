"""
Plaid API Routes

Account linking, unlinking and background transaction syncing.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from rq.exceptions import NoSuchJobError
import logging

from budget_app.models.schemas import (
    User,
    LinkTokenResponse,
    ExchangeTokenRequest,
    LinkedAccount,
    LinkedAccountsResponse,
    SyncJobResponse,
)
from budget_app.api.auth import get_current_user
from budget_app.api.limiter import limiter
from budget_app.database.postgres_db import get_db
from budget_app.services.account_linking import AccountLinkingService
from budget_app.services.job_queue import enqueue_account_sync_job, get_job_info
from budget_app.services.sync_scheduler import SyncScheduler, get_sync_scheduler
from budget_app.config import settings

router = APIRouter(prefix="/plaid", tags=["plaid"])
logger = logging.getLogger(__name__)

PLAID_NOT_CONFIGURED = "Plaid is not configured. Please set PLAID_CLIENT_ID and PLAID_SECRET."


def _require_plaid():
    if not settings.is_plaid_configured:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=PLAID_NOT_CONFIGURED)


@router.post("/create-link-token", response_model=LinkTokenResponse)
async def create_link_token(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a Plaid Link token for initializing Plaid Link in the frontend
    """
    _require_plaid()
    return AccountLinkingService(db).create_link_token(current_user.id)


@router.post("/exchange-token", response_model=List[LinkedAccount], status_code=status.HTTP_201_CREATED)
async def exchange_token(
    body: ExchangeTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Exchange the public token from Plaid Link and store the linked accounts.
    Each account gets an initial transaction sync.
    """
    _require_plaid()
    accounts = AccountLinkingService(db).exchange_public_token(current_user.id, body.public_token)
    db.commit()
    return accounts


@router.get("/accounts", response_model=LinkedAccountsResponse)
async def list_accounts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not settings.is_plaid_configured:
        return LinkedAccountsResponse(accounts=[], message=PLAID_NOT_CONFIGURED)
    accounts = AccountLinkingService(db).get_accounts(current_user.id)
    return LinkedAccountsResponse(accounts=accounts)


@router.delete("/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_account(
    account_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    AccountLinkingService(db).remove_account(account_id, current_user.id)
    db.commit()


@router.post("/sync", response_model=SyncJobResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.SYNC_RATE_LIMIT)
async def sync_accounts(
    request: Request,
    account_id: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Queue a background sync for one account (account_id) or all linked accounts.
    """
    _require_plaid()
    if account_id:
        AccountLinkingService(db).get_account(account_id, current_user.id)

    job = enqueue_account_sync_job(current_user.id, account_id)
    return SyncJobResponse(job_id=job.id, status=job.get_status())


@router.get("/jobs/{job_id}")
async def get_sync_job(job_id: str, current_user: User = Depends(get_current_user)) -> Dict[str, Any]:
    try:
        info = get_job_info(job_id)
    except NoSuchJobError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    if info["meta"].get("user_id") != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return info


@router.get("/sync/retries")
async def get_retry_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
) -> List[Dict[str, Any]]:
    """Pending sync retries for the user's accounts."""
    account_ids = {account.id for account in AccountLinkingService(db).get_accounts(current_user.id)}
    return [entry for entry in scheduler.get_retry_queue_status() if entry["account_id"] in account_ids]
