"""
Maintenance Script: Re-run Categorization

Runs every transaction back through the categorization cascade (user rules,
merchant patterns, LLM, default) and updates the ones whose category changed.
Manually categorized transactions are left alone.
"""
import sys

from budget_app.database.postgres_db import get_db_context
from budget_app.database.models import Transaction
from budget_app.services.categorization import CategorizationService, MANUAL_CONFIDENCE


def recategorize_transactions():
    print("Re-running categorization over all transactions...")
    print()

    with get_db_context() as db:
        categorizer = CategorizationService(db)
        transactions = db.query(Transaction).order_by(Transaction.date).all()

        if not transactions:
            print("No transactions found in database.")
            return 0

        updated_count = 0
        manual_count = 0
        error_count = 0

        for txn in transactions:
            if txn.category_confidence >= MANUAL_CONFIDENCE:
                manual_count += 1
                continue

            try:
                with db.begin_nested():
                    result = categorizer.categorize(
                        txn.user_id,
                        txn.description,
                        merchant_name=txn.merchant_name,
                        amount=txn.amount,
                    )
                    if result.category_id == txn.category_id and result.confidence == txn.category_confidence:
                        continue

                    txn.category_id = result.category_id
                    txn.category_confidence = result.confidence
                print(f"→ {txn.description[:40]}: {result.category_id} ({result.source}, {result.confidence}%)")
                updated_count += 1
            except Exception as e:
                error_count += 1
                print(f"✗ Error processing transaction {txn.id}: {e}")

        print()
        print("=" * 60)
        print("Recategorization Summary:")
        print(f"  Total transactions: {len(transactions)}")
        print(f"  Updated: {updated_count}")
        print(f"  Skipped (manual): {manual_count}")
        print(f"  Errors: {error_count}")
        print("=" * 60)
        return 0


if __name__ == "__main__":
    try:
        sys.exit(recategorize_transactions())
    except Exception as e:
        print(f"\n✗ FATAL ERROR: {str(e)}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
