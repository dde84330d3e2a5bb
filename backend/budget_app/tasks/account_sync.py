import logging
from typing import Optional

from rq import get_current_job

from budget_app.database.postgres_db import get_db_context
from budget_app.services.account_linking import AccountLinkingService

logger = logging.getLogger(__name__)


def run_account_sync_job(user_id: str, account_id: Optional[str] = None):
    job = get_current_job()

    def update_stage(stage: str, **extra):
        if job:
            job.meta["stage"] = stage
            job.meta.update(extra)
            job.save_meta()
            logger.info("Account sync job %s stage: %s", job.id, stage)

    try:
        update_stage("starting")
        results = []
        with get_db_context() as session:
            service = AccountLinkingService(session)
            if account_id:
                accounts = [service.get_account(account_id, user_id)]
            else:
                accounts = service.get_accounts(user_id)

            for index, account in enumerate(accounts, start=1):
                update_stage("syncing", current_account=account.id, progress=f"{index}/{len(accounts)}")
                result = service.sync_account(account)
                results.append({"account_id": account.id, **result})
                session.commit()

        update_stage("completed")
        return {
            "accounts": results,
            "imported": sum(r["imported"] for r in results),
            "duplicates": sum(r["duplicates"] for r in results),
        }
    except Exception as exc:
        update_stage("failed")
        logger.exception("Account sync job failed for user %s", user_id)
        raise exc
