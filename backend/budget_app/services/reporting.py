"""
Reporting Service

Spending by category, period-over-period trends and CSV export. The two
aggregate reports are cached in Redis for a few minutes.
"""
import csv
import io
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from budget_app.database.models import Category, Transaction
from budget_app.database.seed import UNCATEGORIZED
from budget_app.services.report_cache import ReportCache

logger = logging.getLogger(__name__)

STABLE_TREND_PERCENT = 5.0
CSV_HEADERS = ["Date", "Description", "Merchant", "Amount", "Category", "Account", "Location", "Status", "Fraudulent"]


def day_bounds(start_date: date, end_date: date):
    """Datetime range covering both dates in full."""
    return datetime.combine(start_date, time.min), datetime.combine(end_date, time.max)


def previous_period(start_date: date, end_date: date):
    """The period of equal length that ends the day before start_date."""
    days = (end_date - start_date).days + 1
    return start_date - timedelta(days=days), start_date - timedelta(days=1)


def percentage_change(previous_total: float, current_total: float) -> float:
    if previous_total > 0:
        return (current_total - previous_total) / previous_total * 100
    if current_total > 0:
        return 100.0
    return 0.0


def trend_direction(change: float) -> str:
    if abs(change) < STABLE_TREND_PERCENT:
        return "stable"
    return "up" if change > 0 else "down"


class ReportingService:
    def __init__(self, session: Session, cache: Optional[ReportCache] = None):
        self.session = session
        self.cache = cache

    def _cache_key(self, report: str, user_id: str, start_date: date, end_date: date, account_id: Optional[str]) -> str:
        return f"{report}:{user_id}:{start_date.isoformat()}:{end_date.isoformat()}:{account_id or 'all'}"

    def _cached(self, key: str, compute):
        """Return (payload, was_cached)."""
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached, True
        payload = compute()
        if self.cache is not None:
            self.cache.set(key, payload)
        return payload, False

    def _base_query(self, user_id: str, start_date: date, end_date: date, account_id: Optional[str]):
        range_start, range_end = day_bounds(start_date, end_date)
        query = self.session.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.date >= range_start,
            Transaction.date <= range_end,
        )
        if account_id:
            query = query.filter(Transaction.account_id == account_id)
        return query

    # Spending by category

    def get_spending_by_category(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        account_id: Optional[str] = None,
    ):
        key = self._cache_key("spending", user_id, start_date, end_date, account_id)
        return self._cached(key, lambda: self._compute_spending(user_id, start_date, end_date, account_id))

    def _compute_spending(self, user_id: str, start_date: date, end_date: date, account_id: Optional[str]) -> List[Dict[str, Any]]:
        range_start, range_end = day_bounds(start_date, end_date)
        query = (
            self.session.query(
                Transaction.category_id,
                Category.name,
                Category.color,
                func.sum(func.abs(Transaction.amount)),
                func.count(Transaction.id),
            )
            .outerjoin(Category, Category.id == Transaction.category_id)
            .filter(
                Transaction.user_id == user_id,
                Transaction.is_pending.is_(False),
                Transaction.date >= range_start,
                Transaction.date <= range_end,
            )
        )
        if account_id:
            query = query.filter(Transaction.account_id == account_id)
        rows = query.group_by(Transaction.category_id, Category.name, Category.color).all()

        grand_total = sum(float(total or 0) for _, _, _, total, _ in rows)
        data = []
        for category_id, name, color, total, count in rows:
            total = float(total or 0)
            data.append({
                "category_id": category_id,
                "category_name": name or UNCATEGORIZED,
                "category_color": color,
                "total_amount": round(total, 2),
                "transaction_count": int(count),
                "percentage": round(total / grand_total * 100, 2) if grand_total > 0 else 0.0,
            })
        data.sort(key=lambda item: item["total_amount"], reverse=True)
        return data

    # Trends

    def get_trends(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        account_id: Optional[str] = None,
    ):
        key = self._cache_key("trends", user_id, start_date, end_date, account_id)
        return self._cached(key, lambda: self._compute_trends(user_id, start_date, end_date, account_id))

    def _period_summary(self, user_id: str, start_date: date, end_date: date, account_id: Optional[str]) -> Dict[str, Any]:
        range_start, range_end = day_bounds(start_date, end_date)
        query = self.session.query(
            func.coalesce(func.sum(func.abs(Transaction.amount)), 0.0),
            func.count(Transaction.id),
        ).filter(
            Transaction.user_id == user_id,
            Transaction.is_pending.is_(False),
            Transaction.date >= range_start,
            Transaction.date <= range_end,
        )
        if account_id:
            query = query.filter(Transaction.account_id == account_id)
        total, count = query.one()
        total = float(total or 0)
        return {
            "start_date": range_start.isoformat(),
            "end_date": range_end.isoformat(),
            "total_spending": round(total, 2),
            "transaction_count": int(count),
            "average_transaction": round(total / count, 2) if count else 0.0,
        }

    def _compute_trends(self, user_id: str, start_date: date, end_date: date, account_id: Optional[str]) -> Dict[str, Any]:
        prev_start, prev_end = previous_period(start_date, end_date)
        current = self._period_summary(user_id, start_date, end_date, account_id)
        previous = self._period_summary(user_id, prev_start, prev_end, account_id)

        change = percentage_change(previous["total_spending"], current["total_spending"])
        return {
            "current_period": current,
            "previous_period": previous,
            "change_amount": round(current["total_spending"] - previous["total_spending"], 2),
            "change_percentage": round(change, 2),
            "trend": trend_direction(change),
        }

    # CSV export

    def export_transactions_csv(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        account_id: Optional[str] = None,
    ) -> str:
        transactions = (
            self._base_query(user_id, start_date, end_date, account_id)
            .options(joinedload(Transaction.category), joinedload(Transaction.account))
            .order_by(Transaction.date.desc())
            .all()
        )

        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for txn in transactions:
            location = ", ".join(
                part for part in (txn.location_city, txn.location_region, txn.location_country) if part
            )
            writer.writerow([
                txn.date.date().isoformat(),
                txn.description,
                txn.merchant_name or "",
                f"{txn.amount:.2f}",
                txn.category.name if txn.category else UNCATEGORIZED,
                txn.account.account_name if txn.account else "",
                location,
                "Pending" if txn.is_pending else "Posted",
                "Yes" if txn.is_fraudulent else "No",
            ])

        logger.info("Exported %d transactions for user %s", len(transactions), user_id)
        return output.getvalue()
