from datetime import datetime

from budget_app.services.fraud_detection import FraudDetectionService


def flag(db_session, make_transaction, merchant="DraftKings"):
    txn = make_transaction(amount=40.0, date=datetime(2024, 3, 15), merchant_name=merchant)
    (alert,) = FraudDetectionService(db_session).analyze_transaction(txn)
    db_session.commit()
    return alert


def test_list_and_review_alerts(client, auth_headers, db_session, make_transaction):
    alert = flag(db_session, make_transaction)

    listed = client.get("/api/fraud/alerts", headers=auth_headers)
    assert listed.status_code == 200
    body = listed.json()
    assert [a["id"] for a in body] == [alert.id]
    assert body[0]["alert_type"] == "unusual_amount"
    assert body[0]["transaction"]["merchant_name"] == "DraftKings"

    reviewed = client.patch(
        f"/api/fraud/alerts/{alert.id}",
        headers=auth_headers,
        json={"is_false_positive": True},
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["is_reviewed"] is True
    assert reviewed.json()["is_false_positive"] is True

    assert client.get("/api/fraud/alerts", headers=auth_headers).json() == []
    everything = client.get("/api/fraud/alerts", headers=auth_headers, params={"include_reviewed": "true"}).json()
    assert len(everything) == 1


def test_filter_by_severity(client, auth_headers, db_session, make_transaction):
    flag(db_session, make_transaction, merchant="Coinbase")

    assert client.get("/api/fraud/alerts", headers=auth_headers, params={"severity": "high"}).json() == []
    low = client.get("/api/fraud/alerts", headers=auth_headers, params={"severity": "low"}).json()
    assert len(low) == 1
    assert client.get("/api/fraud/alerts", headers=auth_headers, params={"severity": "extreme"}).status_code == 422


def test_review_unknown_alert_is_404(client, auth_headers):
    response = client.patch("/api/fraud/alerts/missing", headers=auth_headers, json={"is_false_positive": False})
    assert response.status_code == 404
