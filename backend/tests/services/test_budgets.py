from datetime import date, datetime

import pytest

from budget_app.models.schemas import BudgetCreate, BudgetUpdate
from budget_app.services.budgets import BudgetService, validate_budget_fields
from budget_app.services.exceptions import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def service(db_session):
    return BudgetService(db_session)


@pytest.fixture
def dining_budget(service, user, category_named):
    return service.create_budget(user.id, BudgetCreate(
        category_id=category_named("Dining").id,
        amount=200.0,
        period="monthly",
        start_date=date(2024, 3, 1),
        end_date=date(2024, 3, 31),
    ))


def test_validate_budget_fields_collects_every_error():
    errors = validate_budget_fields(0, "weekly", date(2024, 3, 31), date(2024, 3, 1), 150)
    assert len(errors) == 4


def test_create_budget_defaults(dining_budget, user):
    assert dining_budget.user_id == user.id
    assert dining_budget.alert_threshold == 80
    assert dining_budget.is_active is True
    assert dining_budget.period == "monthly"


def test_create_budget_rejects_invalid_fields(service, user, category_named):
    with pytest.raises(ValidationError) as exc_info:
        service.create_budget(user.id, BudgetCreate(
            category_id=category_named("Dining").id,
            amount=-5,
            period="monthly",
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 1),
        ))
    assert "Budget amount must be greater than 0" in exc_info.value.errors
    assert "Start date must be before end date" in exc_info.value.errors


def test_create_budget_rejects_unknown_category(service, user):
    with pytest.raises(NotFoundError):
        service.create_budget(user.id, BudgetCreate(
            category_id="missing",
            amount=100,
            period="monthly",
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 31),
        ))


def test_overlapping_budget_conflicts(service, dining_budget, user, category_named):
    with pytest.raises(ConflictError):
        service.create_budget(user.id, BudgetCreate(
            category_id=category_named("Dining").id,
            amount=50,
            period="monthly",
            start_date=date(2024, 3, 15),
            end_date=date(2024, 4, 15),
        ))


def test_overlap_ignores_deleted_budgets(service, dining_budget, user, category_named):
    service.delete_budget(dining_budget.id, user.id)

    replacement = service.create_budget(user.id, BudgetCreate(
        category_id=category_named("Dining").id,
        amount=250,
        period="monthly",
        start_date=date(2024, 3, 1),
        end_date=date(2024, 3, 31),
    ))

    assert replacement.id != dining_budget.id
    assert [b.id for b in service.get_budgets(user.id)] == [replacement.id]
    assert len(service.get_budgets(user.id, include_inactive=True)) == 2


def test_update_budget_revalidates(service, dining_budget, user):
    updated = service.update_budget(dining_budget.id, user.id, BudgetUpdate(amount=300, alert_threshold=90))
    assert updated.amount == 300
    assert updated.alert_threshold == 90

    with pytest.raises(ValidationError):
        service.update_budget(dining_budget.id, user.id, BudgetUpdate(end_date=date(2024, 2, 1)))


def test_budgets_are_private(service, dining_budget, other_user):
    with pytest.raises(NotFoundError):
        service.get_budget(dining_budget.id, other_user.id)


def test_progress_counts_posted_spending_in_range(service, dining_budget, make_transaction, category_named):
    dining = category_named("Dining").id
    make_transaction(amount=100.0, date=datetime(2024, 3, 1, 0, 0), category_id=dining)
    make_transaction(amount=70.0, date=datetime(2024, 3, 31, 23, 59), category_id=dining)
    make_transaction(amount=500.0, date=datetime(2024, 4, 1, 0, 0), category_id=dining)
    make_transaction(amount=40.0, date=datetime(2024, 3, 10), category_id=dining, is_pending=True)
    make_transaction(amount=40.0, date=datetime(2024, 3, 10), category_id=category_named("Travel").id)

    progress = service.get_progress(dining_budget, today=date(2024, 3, 21))

    assert progress["current_spending"] == 170.0
    assert progress["percentage_used"] == 85.0
    assert progress["remaining_amount"] == 30.0
    assert progress["days_remaining"] == 10
    assert progress["is_over_budget"] is False
    assert progress["should_alert"] is True
    assert progress["category_name"] == "Dining"


def test_progress_after_end_date(service, dining_budget, make_transaction, category_named):
    make_transaction(amount=250.0, date=datetime(2024, 3, 5), category_id=category_named("Dining").id)

    progress = service.get_progress(dining_budget, today=date(2024, 5, 1))

    assert progress["days_remaining"] == 0
    assert progress["is_over_budget"] is True
    assert progress["remaining_amount"] == -50.0


def test_check_alerts(service, dining_budget, user, make_transaction, category_named):
    assert service.check_alerts(user.id) == []

    make_transaction(amount=180.0, date=datetime(2024, 3, 5), category_id=category_named("Dining").id)

    alerts = service.check_alerts(user.id)
    assert [a["budget"].id for a in alerts] == [dining_budget.id]
