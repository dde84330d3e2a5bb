from fastapi import APIRouter, Depends, status
from typing import List
from sqlalchemy.orm import Session

from budget_app.models.schemas import User, Budget, BudgetCreate, BudgetUpdate, BudgetProgress
from budget_app.api.auth import get_current_user
from budget_app.database.postgres_db import get_db
from budget_app.services.budgets import BudgetService

router = APIRouter(prefix="/budgets", tags=["budgets"])


@router.get("", response_model=List[Budget])
async def list_budgets(
    include_inactive: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db).get_budgets(current_user.id, include_inactive=include_inactive)


@router.get("/alerts/check", response_model=List[BudgetProgress])
async def check_budget_alerts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active budgets at or past their alert threshold."""
    return BudgetService(db).check_alerts(current_user.id)


@router.post("", response_model=Budget, status_code=status.HTTP_201_CREATED)
async def create_budget(
    budget: BudgetCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    created = BudgetService(db).create_budget(current_user.id, budget)
    db.commit()
    db.refresh(created)
    return created


@router.get("/{budget_id}", response_model=Budget)
async def get_budget(
    budget_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db).get_budget(budget_id, current_user.id)


@router.put("/{budget_id}", response_model=Budget)
async def update_budget(
    budget_id: str,
    budget: BudgetUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = BudgetService(db).update_budget(budget_id, current_user.id, budget)
    db.commit()
    db.refresh(updated)
    return updated


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_budget(
    budget_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    BudgetService(db).delete_budget(budget_id, current_user.id)
    db.commit()


@router.get("/{budget_id}/progress", response_model=BudgetProgress)
async def get_budget_progress(
    budget_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db).get_budget_progress(budget_id, current_user.id)
