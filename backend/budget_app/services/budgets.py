"""
Budget Service

A budget caps spending in one category over a date range. Progress is the sum
of the user's non-pending transactions in that category within the range
(both ends inclusive) compared against the limit and the alert threshold.
"""
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from budget_app.database.models import Budget, Transaction
from budget_app.models.schemas import BudgetCreate, BudgetPeriod, BudgetUpdate
from budget_app.services.categorization import CategorizationService
from budget_app.services.exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 80
VALID_PERIODS = {period.value for period in BudgetPeriod}


def validate_budget_fields(
    amount: float,
    period: str,
    start_date: date,
    end_date: date,
    alert_threshold: int,
) -> List[str]:
    errors = []
    if amount is None or amount <= 0:
        errors.append("Budget amount must be greater than 0")
    if period not in VALID_PERIODS:
        errors.append("Period must be one of: monthly, quarterly, annual")
    if start_date >= end_date:
        errors.append("Start date must be before end date")
    if alert_threshold is None or not 1 <= alert_threshold <= 100:
        errors.append("Alert threshold must be between 1 and 100")
    return errors


def _period_value(period) -> str:
    return period.value if hasattr(period, 'value') else period


class BudgetService:
    def __init__(self, session: Session):
        self.session = session

    def _check_overlap(
        self,
        user_id: str,
        category_id: str,
        start_date: date,
        end_date: date,
        exclude_id: Optional[str] = None,
    ) -> None:
        query = self.session.query(Budget).filter(
            Budget.user_id == user_id,
            Budget.category_id == category_id,
            Budget.is_active.is_(True),
            Budget.start_date <= end_date,
            Budget.end_date >= start_date,
        )
        if exclude_id:
            query = query.filter(Budget.id != exclude_id)
        if query.first():
            raise ConflictError("An active budget already exists for this category in the given date range")

    def create_budget(self, user_id: str, data: BudgetCreate) -> Budget:
        period = _period_value(data.period)
        threshold = data.alert_threshold if data.alert_threshold is not None else DEFAULT_ALERT_THRESHOLD
        errors = validate_budget_fields(data.amount, period, data.start_date, data.end_date, threshold)
        if errors:
            raise ValidationError(f"Validation failed: {', '.join(errors)}", errors)

        CategorizationService(self.session).get_accessible_category(user_id, data.category_id)
        self._check_overlap(user_id, data.category_id, data.start_date, data.end_date)

        budget = Budget(
            id=str(uuid.uuid4()),
            user_id=user_id,
            category_id=data.category_id,
            amount=data.amount,
            period=period,
            start_date=data.start_date,
            end_date=data.end_date,
            alert_threshold=threshold,
            is_active=True,
        )
        self.session.add(budget)
        self.session.flush()
        logger.info("Created %s budget %s for user %s", period, budget.id, user_id)
        return budget

    def get_budgets(self, user_id: str, include_inactive: bool = False) -> List[Budget]:
        query = self.session.query(Budget).filter(Budget.user_id == user_id)
        if not include_inactive:
            query = query.filter(Budget.is_active.is_(True))
        return query.order_by(Budget.created_at.desc()).all()

    def get_budget(self, budget_id: str, user_id: str) -> Budget:
        budget = (
            self.session.query(Budget)
            .filter(Budget.id == budget_id, Budget.user_id == user_id)
            .first()
        )
        if budget is None:
            raise NotFoundError("Budget not found")
        return budget

    def update_budget(self, budget_id: str, user_id: str, data: BudgetUpdate) -> Budget:
        budget = self.get_budget(budget_id, user_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        category_id = changes.get("category_id", budget.category_id)
        amount = changes.get("amount", budget.amount)
        period = _period_value(changes.get("period", budget.period))
        start_date = changes.get("start_date", budget.start_date)
        end_date = changes.get("end_date", budget.end_date)
        threshold = changes.get("alert_threshold", budget.alert_threshold)

        errors = validate_budget_fields(amount, period, start_date, end_date, threshold)
        if errors:
            raise ValidationError(f"Validation failed: {', '.join(errors)}", errors)

        if category_id != budget.category_id:
            CategorizationService(self.session).get_accessible_category(user_id, category_id)
        self._check_overlap(user_id, category_id, start_date, end_date, exclude_id=budget.id)

        budget.category_id = category_id
        budget.amount = amount
        budget.period = period
        budget.start_date = start_date
        budget.end_date = end_date
        budget.alert_threshold = threshold
        budget.updated_at = datetime.utcnow()
        self.session.flush()
        return budget

    def delete_budget(self, budget_id: str, user_id: str) -> None:
        """Soft delete: the budget is deactivated, history is kept."""
        budget = self.get_budget(budget_id, user_id)
        budget.is_active = False
        budget.updated_at = datetime.utcnow()
        self.session.flush()

    def calculate_spending(self, user_id: str, category_id: str, start_date: date, end_date: date) -> float:
        range_start = datetime.combine(start_date, datetime.min.time())
        range_end = datetime.combine(end_date + timedelta(days=1), datetime.min.time())
        total = (
            self.session.query(func.coalesce(func.sum(Transaction.amount), 0.0))
            .filter(
                Transaction.user_id == user_id,
                Transaction.category_id == category_id,
                Transaction.is_pending.is_(False),
                Transaction.date >= range_start,
                Transaction.date < range_end,
            )
            .scalar()
        )
        return float(total or 0.0)

    def get_progress(self, budget: Budget, today: Optional[date] = None) -> Dict:
        today = today or date.today()
        spending = self.calculate_spending(budget.user_id, budget.category_id, budget.start_date, budget.end_date)
        limit = float(budget.amount)
        percentage = (spending / limit) * 100 if limit > 0 else 0.0

        return {
            "budget": budget,
            "category_name": budget.category.name if budget.category else None,
            "current_spending": round(spending, 2),
            "percentage_used": round(percentage, 2),
            "remaining_amount": round(limit - spending, 2),
            "days_remaining": max(0, (budget.end_date - today).days),
            "is_over_budget": spending > limit,
            "should_alert": percentage >= budget.alert_threshold,
        }

    def get_budget_progress(self, budget_id: str, user_id: str) -> Dict:
        return self.get_progress(self.get_budget(budget_id, user_id))

    def check_alerts(self, user_id: str) -> List[Dict]:
        """Progress for every active budget that has reached its alert threshold."""
        alerts = []
        for budget in self.get_budgets(user_id):
            progress = self.get_progress(budget)
            if progress["should_alert"]:
                alerts.append(progress)
        return alerts
