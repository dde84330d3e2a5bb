from datetime import datetime


def test_list_transactions(client, auth_headers, make_transaction, db_session):
    make_transaction(amount=12.0, date=datetime(2024, 3, 1), merchant_name="Taco Stand")
    make_transaction(amount=40.0, date=datetime(2024, 3, 2), merchant_name="Hardware Co", category_confidence=10)
    db_session.commit()

    response = client.get("/api/transactions", headers=auth_headers, params={"needs_review": "true"})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["transactions"][0]["merchant_name"] == "Hardware Co"
    assert body["transactions"][0]["needs_review"] is True


def test_list_transactions_rejects_large_limit(client, auth_headers):
    response = client.get("/api/transactions", headers=auth_headers, params={"limit": 500})
    assert response.status_code == 422


def test_get_transaction_of_other_user_is_404(client, auth_headers, make_transaction, other_user, db_session):
    txn = make_transaction(user_id=other_user.id)
    db_session.commit()

    response = client.get(f"/api/transactions/{txn.id}", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "Transaction not found"


def test_recategorize_transaction(client, auth_headers, make_transaction, category_named, db_session):
    txn = make_transaction(merchant_name="Neighborhood Market", category_confidence=0)
    db_session.commit()
    groceries = category_named("Groceries").id

    response = client.patch(
        f"/api/transactions/{txn.id}/category",
        headers=auth_headers,
        json={"category_id": groceries},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["category_name"] == "Groceries"
    assert body["category_confidence"] == 100
    assert body["needs_review"] is False

    rules = client.get("/api/transactions/rules", headers=auth_headers).json()
    assert rules[0]["merchant_pattern"] == "^Neighborhood\\ Market"
    assert rules[0]["learned_from_user"] is True


def test_categories_and_rules(client, auth_headers, category_named):
    response = client.post(
        "/api/transactions/categories",
        headers=auth_headers,
        json={"name": "Pets", "icon": "paw", "color": "#AA3366"},
    )
    assert response.status_code == 201
    pets = response.json()
    assert pets["is_system"] is False

    names = [c["name"] for c in client.get("/api/transactions/categories", headers=auth_headers).json()]
    assert "Pets" in names and "Groceries" in names

    duplicate = client.post("/api/transactions/categories", headers=auth_headers, json={"name": "Pets"})
    assert duplicate.status_code == 400

    rule = client.post(
        "/api/transactions/rules",
        headers=auth_headers,
        json={"merchant_pattern": "petco|chewy", "category_id": pets["id"]},
    )
    assert rule.status_code == 201
    assert rule.json()["category_name"] == "Pets"

    bad_rule = client.post(
        "/api/transactions/rules",
        headers=auth_headers,
        json={"merchant_pattern": "([", "category_id": pets["id"]},
    )
    assert bad_rule.status_code == 400

    deleted = client.delete(f"/api/transactions/rules/{rule.json()['id']}", headers=auth_headers)
    assert deleted.status_code == 204
    assert client.get("/api/transactions/rules", headers=auth_headers).json() == []


def test_manual_sync(client, auth_headers, account, synced_accounts, user):
    response = client.post(f"/api/transactions/sync/{account.id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"account_id": account.id, "imported": 2, "duplicates": 1}
    assert synced_accounts == [(account.id, user.id)]
