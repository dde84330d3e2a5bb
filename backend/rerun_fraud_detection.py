"""
Maintenance Script: Re-run Fraud Detection

Deletes every fraud alert, resets the fraud flag on all transactions and
analyzes them again in date order. Use after tuning the detection thresholds.
"""
import sys

from budget_app.database.postgres_db import get_db_context
from budget_app.database.models import FraudAlert, Transaction
from budget_app.services.fraud_detection import FraudDetectionService


def rerun_fraud_detection():
    print("Re-running fraud detection over all transactions...")
    print()

    with get_db_context() as db:
        deleted = db.query(FraudAlert).delete(synchronize_session=False)
        db.query(Transaction).update({Transaction.is_fraudulent: False}, synchronize_session=False)
        db.flush()
        db.expire_all()
        print(f"Cleared {deleted} existing alert(s)")

        detector = FraudDetectionService(db)
        transactions = db.query(Transaction).order_by(Transaction.date).all()

        flagged_count = 0
        alert_count = 0
        error_count = 0
        for txn in transactions:
            try:
                with db.begin_nested():
                    alerts = detector.analyze_transaction(txn)
            except Exception as e:
                error_count += 1
                print(f"✗ Error analyzing transaction {txn.id}: {e}")
                continue
            if alerts:
                flagged_count += 1
                alert_count += len(alerts)

        print()
        print("=" * 60)
        print("Fraud Detection Summary:")
        print(f"  Transactions analyzed: {len(transactions)}")
        print(f"  Flagged transactions: {flagged_count}")
        print(f"  Alerts created: {alert_count}")
        print(f"  Errors: {error_count}")
        print("=" * 60)
        return 0


if __name__ == "__main__":
    try:
        sys.exit(rerun_fraud_detection())
    except Exception as e:
        print(f"\n✗ FATAL ERROR: {str(e)}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
