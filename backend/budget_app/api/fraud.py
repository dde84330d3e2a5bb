from fastapi import APIRouter, Depends
from typing import List, Optional
from sqlalchemy.orm import Session

from budget_app.models.schemas import User, FraudAlert, FraudAlertReview, FraudAlertType, Severity
from budget_app.api.auth import get_current_user
from budget_app.database.postgres_db import get_db
from budget_app.services.fraud_detection import FraudDetectionService, alert_to_dict

router = APIRouter(prefix="/fraud", tags=["fraud"])


@router.get("/alerts", response_model=List[FraudAlert])
async def list_fraud_alerts(
    include_reviewed: bool = False,
    severity: Optional[Severity] = None,
    alert_type: Optional[FraudAlertType] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return FraudDetectionService(db).get_alerts(
        current_user.id,
        include_reviewed=include_reviewed,
        severity=severity.value if severity else None,
        alert_type=alert_type.value if alert_type else None,
    )


@router.patch("/alerts/{alert_id}", response_model=FraudAlert)
async def review_fraud_alert(
    alert_id: str,
    review: FraudAlertReview,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark an alert reviewed, optionally as a false positive."""
    alert = FraudDetectionService(db).review_alert(alert_id, current_user.id, review.is_false_positive)
    db.commit()
    return alert_to_dict(alert)
