"""
Fraud Detection Service

Runs independent heuristics over a newly stored transaction. Each heuristic
raises at most one alert, and alerts are unique per (transaction, alert type):

- unusual_amount:     amount far above the user's 30-day baseline, or a
                      merchant/description/amount matching a risky pattern
- unusual_location:   city/region outside the user's frequent locations
- rapid_transactions: too many transactions in a trailing 5-minute window
"""
import logging
import re
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional

from sqlalchemy.orm import Session

from budget_app.database.models import FraudAlert, Transaction, User
from budget_app.services.exceptions import NotFoundError

logger = logging.getLogger(__name__)

BASELINE_DAYS = 30
MIN_BASELINE_TRANSACTIONS = 10
UNUSUAL_AMOUNT_MULTIPLIER = 3.0
HIGH_SEVERITY_AMOUNT_MULTIPLIER = 5.0
UNUSUAL_AMOUNT_MINIMUM = 100.0
TYPICAL_LOCATION_SHARE = 0.10
RAPID_WINDOW = timedelta(minutes=5)
RAPID_MIN_OTHER_TRANSACTIONS = 4
RAPID_HIGH_SEVERITY_COUNT = 6
LARGE_ROUND_AMOUNTS = {1000, 2000, 5000, 10000}

ALERT_UNUSUAL_AMOUNT = "unusual_amount"
ALERT_UNUSUAL_LOCATION = "unusual_location"
ALERT_RAPID_TRANSACTIONS = "rapid_transactions"

# (pattern, reason, severity)
SKETCHY_PATTERNS = [
    (r'\bcasino\b|\bgambling\b|\bpoker\b|\bslots\b|\bbet\b|\bbets\b|\bbetting\b|\blottery\b|\bdraftkings\b|\bfanduel\b',
     'Gambling transaction detected', 'medium'),
    (r'coinbase|binance|kraken|crypto|bitcoin|\bbtc\b|\beth\b', 'Cryptocurrency transaction detected', 'low'),
    (r'payday|cash advance|quick loan|instant loan', 'Payday loan transaction detected', 'high'),
    (r'wire transfer|western union|moneygram|money order', 'Wire transfer detected', 'medium'),
    (r'adult|xxx|escort|onlyfans', 'Adult content transaction detected', 'low'),
    (r'temp charge|pending|authorization|test transaction', 'Suspicious transaction description', 'medium'),
]
_COMPILED_SKETCHY_PATTERNS = [
    (re.compile(pattern, re.IGNORECASE), reason, severity)
    for pattern, reason, severity in SKETCHY_PATTERNS
]


class Finding(NamedTuple):
    alert_type: str
    severity: str
    reason: str


class UserBaseline(NamedTuple):
    transaction_count: int
    average_amount: float
    typical_locations: List[str]


def _location_key(city: Optional[str], region: Optional[str]) -> Optional[str]:
    if not city or not region:
        return None
    return f"{city},{region}"


def alert_to_dict(alert: FraudAlert) -> Dict:
    """Alert plus a short summary of the flagged transaction."""
    txn = alert.transaction
    return {
        "id": alert.id,
        "transaction_id": alert.transaction_id,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "reason": alert.reason,
        "is_reviewed": alert.is_reviewed,
        "is_false_positive": alert.is_false_positive,
        "reviewed_at": alert.reviewed_at,
        "created_at": alert.created_at,
        "transaction": {
            "id": txn.id,
            "amount": txn.amount,
            "merchant_name": txn.merchant_name,
            "description": txn.description,
            "date": txn.date,
        } if txn else None,
    }


class FraudDetectionService:
    def __init__(self, session: Session):
        self.session = session

    def calculate_user_baseline(self, user_id: str, as_of: datetime, exclude_id: Optional[str] = None) -> UserBaseline:
        """
        Spending profile from the user's non-pending transactions in the 30 days before `as_of`.
        """
        query = self.session.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.is_pending.is_(False),
            Transaction.date >= as_of - timedelta(days=BASELINE_DAYS),
            Transaction.date <= as_of,
        )
        if exclude_id:
            query = query.filter(Transaction.id != exclude_id)
        transactions = query.all()

        count = len(transactions)
        if count == 0:
            return UserBaseline(0, 0.0, [])

        average = sum(abs(t.amount) for t in transactions) / count
        locations = Counter(
            key for key in (_location_key(t.location_city, t.location_region) for t in transactions) if key
        )
        typical = [key for key, hits in locations.items() if hits >= count * TYPICAL_LOCATION_SHARE]
        return UserBaseline(count, average, typical)

    def check_unusual_amount(self, transaction: Transaction, baseline: UserBaseline) -> Optional[Finding]:
        amount = abs(transaction.amount)
        if (
            baseline.transaction_count >= MIN_BASELINE_TRANSACTIONS
            and baseline.average_amount > 0
            and amount >= UNUSUAL_AMOUNT_MINIMUM
        ):
            ratio = amount / baseline.average_amount
            if ratio >= UNUSUAL_AMOUNT_MULTIPLIER:
                severity = 'high' if ratio >= HIGH_SEVERITY_AMOUNT_MULTIPLIER else 'medium'
                return Finding(
                    ALERT_UNUSUAL_AMOUNT,
                    severity,
                    f"Amount ${amount:.2f} is {ratio:.1f}x the 30-day average of ${baseline.average_amount:.2f}",
                )
        return self.check_sketchy_merchant(transaction)

    def check_sketchy_merchant(self, transaction: Transaction) -> Optional[Finding]:
        text = f"{transaction.merchant_name or ''} {transaction.description or ''}"
        for pattern, reason, severity in _COMPILED_SKETCHY_PATTERNS:
            if pattern.search(text):
                return Finding(ALERT_UNUSUAL_AMOUNT, severity, reason)

        amount = abs(transaction.amount)
        if amount in LARGE_ROUND_AMOUNTS:
            return Finding(ALERT_UNUSUAL_AMOUNT, 'medium', f"Large round number transaction ({amount:g})")
        return None

    def check_unusual_location(self, transaction: Transaction, baseline: UserBaseline) -> Optional[Finding]:
        location = _location_key(transaction.location_city, transaction.location_region)
        if location is None or baseline.transaction_count < MIN_BASELINE_TRANSACTIONS:
            return None
        if location not in baseline.typical_locations:
            return Finding(
                ALERT_UNUSUAL_LOCATION,
                'medium',
                f"Transaction in unusual location: {transaction.location_city}, {transaction.location_region}",
            )
        return None

    def check_rapid_transactions(self, transaction: Transaction) -> Optional[Finding]:
        others = self.session.query(Transaction).filter(
            Transaction.user_id == transaction.user_id,
            Transaction.id != transaction.id,
            Transaction.date >= transaction.date - RAPID_WINDOW,
            Transaction.date < transaction.date,
        ).count()

        if others >= RAPID_MIN_OTHER_TRANSACTIONS:
            total = others + 1
            severity = 'high' if total >= RAPID_HIGH_SEVERITY_COUNT else 'medium'
            return Finding(ALERT_RAPID_TRANSACTIONS, severity, f"{total} transactions detected within a 5-minute window")
        return None

    def analyze_transaction(self, transaction: Transaction) -> List[FraudAlert]:
        """Run every heuristic and persist one alert per finding."""
        alerts: List[FraudAlert] = []
        try:
            baseline = self.calculate_user_baseline(transaction.user_id, transaction.date, exclude_id=transaction.id)
            findings = [
                self.check_unusual_amount(transaction, baseline),
                self.check_unusual_location(transaction, baseline),
                self.check_rapid_transactions(transaction),
            ]
            for finding in findings:
                if finding:
                    alerts.append(self.create_alert(transaction, finding))

            if alerts:
                transaction.is_fraudulent = True
                self.session.flush()
                self._send_notifications(transaction.user_id, alerts)
        except Exception:
            logger.exception("Error analyzing transaction %s for fraud", transaction.id)
        return alerts

    def create_alert(self, transaction: Transaction, finding: Finding) -> FraudAlert:
        existing = (
            self.session.query(FraudAlert)
            .filter(
                FraudAlert.transaction_id == transaction.id,
                FraudAlert.alert_type == finding.alert_type,
            )
            .first()
        )
        if existing:
            return existing

        alert = FraudAlert(
            id=str(uuid.uuid4()),
            user_id=transaction.user_id,
            transaction_id=transaction.id,
            alert_type=finding.alert_type,
            severity=finding.severity,
            reason=finding.reason,
            is_reviewed=False,
            is_false_positive=False,
        )
        self.session.add(alert)
        self.session.flush()
        return alert

    def _send_notifications(self, user_id: str, alerts: List[FraudAlert]) -> None:
        user = self.session.get(User, user_id)
        if user is None:
            logger.error("User %s not found for fraud notification", user_id)
            return
        logger.warning("[FRAUD ALERT] Sending %d fraud alert(s) to %s", len(alerts), user.email)
        for alert in alerts:
            logger.warning("  - %s (%s): %s", alert.alert_type, alert.severity, alert.reason)

    def get_alerts(
        self,
        user_id: str,
        include_reviewed: bool = False,
        severity: Optional[str] = None,
        alert_type: Optional[str] = None,
    ) -> List[Dict]:
        query = self.session.query(FraudAlert).filter(FraudAlert.user_id == user_id)
        if not include_reviewed:
            query = query.filter(FraudAlert.is_reviewed.is_(False))
        if severity:
            query = query.filter(FraudAlert.severity == severity)
        if alert_type:
            query = query.filter(FraudAlert.alert_type == alert_type)

        return [alert_to_dict(alert) for alert in query.order_by(FraudAlert.created_at.desc()).all()]

    def review_alert(self, alert_id: str, user_id: str, is_false_positive: bool) -> FraudAlert:
        alert = (
            self.session.query(FraudAlert)
            .filter(FraudAlert.id == alert_id, FraudAlert.user_id == user_id)
            .first()
        )
        if alert is None:
            raise NotFoundError("Fraud alert not found")

        alert.is_reviewed = True
        alert.is_false_positive = is_false_positive
        alert.reviewed_at = datetime.utcnow()
        self.session.flush()

        if is_false_positive:
            self._learn_from_false_positive(alert)
        return alert

    def _learn_from_false_positive(self, alert: FraudAlert) -> None:
        txn = alert.transaction
        if txn is None:
            return
        logger.info(
            "[FRAUD LEARNING] False positive: type=%s severity=%s amount=%s merchant=%s location=%s",
            alert.alert_type,
            alert.severity,
            txn.amount,
            txn.merchant_name,
            _location_key(txn.location_city, txn.location_region),
        )
