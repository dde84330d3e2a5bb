from types import SimpleNamespace

from budget_app.api import plaid as plaid_api


def test_link_token_requires_configuration(client, auth_headers):
    response = client.post("/api/plaid/create-link-token", headers=auth_headers)

    assert response.status_code == 503


def test_accounts_lists_message_when_unconfigured(client, auth_headers):
    response = client.get("/api/plaid/accounts", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["accounts"] == []
    assert "not configured" in response.json()["message"]


def test_remove_account(client, auth_headers, account, monkeypatch):
    removed = []
    monkeypatch.setattr(plaid_api, "AccountLinkingService", _linking_with_client(removed))

    response = client.delete(f"/api/plaid/accounts/{account.id}", headers=auth_headers)

    assert response.status_code == 204
    assert removed == ["access-sandbox-token"]


def test_sync_enqueues_job(client, auth_headers, account, monkeypatch):
    monkeypatch.setattr(plaid_api.settings, "PLAID_CLIENT_ID", "client-id")
    monkeypatch.setattr(plaid_api.settings, "PLAID_SECRET", "plaid-key")
    enqueued = []

    def fake_enqueue(user_id, account_id=None):
        enqueued.append((user_id, account_id))
        return SimpleNamespace(id="job-1", get_status=lambda: "queued")

    monkeypatch.setattr(plaid_api, "enqueue_account_sync_job", fake_enqueue)

    response = client.post("/api/plaid/sync", headers=auth_headers, params={"account_id": account.id})

    assert response.status_code == 202
    assert response.json() == {"job_id": "job-1", "status": "queued"}
    assert enqueued == [(account.user_id, account.id)]


def test_job_status_hidden_from_other_users(client, auth_headers, monkeypatch):
    monkeypatch.setattr(
        plaid_api,
        "get_job_info",
        lambda job_id: {"job_id": job_id, "status": "finished", "meta": {"user_id": "someone-else"}},
    )

    response = client.get("/api/plaid/jobs/job-1", headers=auth_headers)

    assert response.status_code == 404


def test_retry_status_only_shows_own_accounts(client, auth_headers, account):
    from budget_app.main import app
    from budget_app.services.sync_scheduler import get_sync_scheduler

    scheduler = app.dependency_overrides[get_sync_scheduler]()
    scheduler.handle_sync_failure(account.id, RuntimeError("ITEM_LOGIN_REQUIRED"))
    scheduler.handle_sync_failure("someone-elses-account", RuntimeError("timeout"))

    response = client.get("/api/plaid/sync/retries", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert [entry["account_id"] for entry in body] == [account.id]
    assert body[0]["last_error"] == "ITEM_LOGIN_REQUIRED"


def _linking_with_client(removed):
    from budget_app.services.account_linking import AccountLinkingService

    class RecordingClient:
        def remove_item(self, access_token):
            removed.append(access_token)
            return True

    return lambda session: AccountLinkingService(session, client=RecordingClient())
