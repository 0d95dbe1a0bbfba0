from datetime import date

import pytest

from errors import OwnershipMismatch, ValidationError
from gateway import Operation
from models import Collection, RecurrenceFrequency, TransactionType
from recurrence import calculate_next_date
from schemas import RecurringTransactionIn
from services import (
    AccountService,
    CategoryService,
    RecurrenceExpander,
    RecurringTransactionService,
    TransactionService,
)


def _template(account_id: str, next_due: date, **extra) -> RecurringTransactionIn:
    return RecurringTransactionIn(
        description=extra.pop("description", "Aluguel"),
        value_cents=extra.pop("value_cents", 150_000),
        type=extra.pop("type", TransactionType.expense),
        account_id=account_id,
        frequency=extra.pop("frequency", RecurrenceFrequency.monthly),
        next_due_date=next_due,
        **extra,
    )


def test_calculate_next_date_per_frequency():
    start = date(2024, 6, 10)
    assert calculate_next_date(RecurrenceFrequency.daily, start) == date(2024, 6, 11)
    assert calculate_next_date(RecurrenceFrequency.weekly, start) == date(2024, 6, 17)
    assert calculate_next_date(RecurrenceFrequency.monthly, start) == date(2024, 7, 10)
    assert calculate_next_date(RecurrenceFrequency.yearly, start) == date(2025, 6, 10)


def test_calculate_next_date_snaps_month_end():
    assert calculate_next_date(RecurrenceFrequency.monthly, date(2024, 1, 31)) == date(2024, 2, 29)
    assert calculate_next_date(RecurrenceFrequency.monthly, date(2024, 12, 15)) == date(2025, 1, 15)
    assert calculate_next_date(RecurrenceFrequency.yearly, date(2024, 2, 29)) == date(2025, 2, 28)


def test_expansion_generates_one_unpaid_occurrence_per_pass(gateway, owner, checking, today):
    templates = RecurringTransactionService(gateway, owner)
    template = templates.create(_template(checking.id, date(2024, 4, 10)))

    result = templates.run_expansion(today)
    assert len(result.generated) == 1
    txn = result.generated[0]
    assert txn.date == date(2024, 4, 10)
    assert txn.is_paid is False
    assert txn.is_recurring is True
    assert txn.recurring_id == template.id
    assert txn.value_cents == 150_000
    assert templates.get(template.id).next_due_date == date(2024, 5, 10)
    assert templates.get(template.id).last_generated_at is not None

    # Materialized occurrences are unpaid, so balances stay put.
    assert AccountService(gateway, owner).get(checking.id).balance_cents == 100_000


def test_expansion_catches_up_one_period_per_run(gateway, owner, checking, today):
    templates = RecurringTransactionService(gateway, owner)
    template = templates.create(_template(checking.id, date(2024, 4, 10)))

    dates = [templates.run_expansion(today).generated for _ in range(4)]
    assert [len(batch) for batch in dates] == [1, 1, 1, 0]
    txns = TransactionService(gateway, owner).list_all()
    assert sorted(t.date for t in txns) == [
        date(2024, 4, 10),
        date(2024, 5, 10),
        date(2024, 6, 10),
    ]
    assert templates.get(template.id).next_due_date == date(2024, 7, 10)


def test_expansion_is_idempotent_without_clock_change(gateway, owner, checking, today):
    templates = RecurringTransactionService(gateway, owner)
    templates.create(_template(checking.id, today))

    first = templates.run_expansion(today)
    second = templates.run_expansion(today)
    assert len(first.generated) == 1
    assert second.generated == []
    assert len(TransactionService(gateway, owner).list_all()) == 1


def test_next_due_date_is_monotonic(gateway, owner, checking, today):
    templates = RecurringTransactionService(gateway, owner)
    due_now = templates.create(_template(checking.id, date(2024, 6, 1), frequency=RecurrenceFrequency.daily))
    future = templates.create(_template(checking.id, date(2024, 9, 1)))

    before = {t.id: t.next_due_date for t in templates.list_all()}
    for _ in range(3):
        templates.run_expansion(today)
    after = {t.id: t.next_due_date for t in templates.list_all()}

    assert after[due_now.id] == date(2024, 6, 4)
    assert after[due_now.id] > before[due_now.id]
    assert after[future.id] == before[future.id]


def test_inactive_templates_are_skipped(gateway, owner, checking, today):
    templates = RecurringTransactionService(gateway, owner)
    template = templates.create(_template(checking.id, date(2024, 6, 1)))
    templates.set_active(template.id, False)

    assert templates.run_expansion(today).generated == []
    assert templates.get(template.id).next_due_date == date(2024, 6, 1)


def test_failing_template_does_not_block_others(gateway, owner, checking, today, caplog):
    templates = RecurringTransactionService(gateway, owner)
    broken = templates.create(_template(checking.id, date(2024, 6, 1), description="Quebrado"))
    healthy = templates.create(_template(checking.id, date(2024, 6, 2), description="Internet"))
    # Point the broken template at an account that no longer exists.
    gateway.commit_atomic(
        [Operation.update(Collection.recurring.value, broken.id, {"account_id": "gone"})]
    )

    with caplog.at_level("ERROR", logger="services"):
        result = templates.run_expansion(today)

    assert result.failed == [broken.id]
    assert [t.description for t in result.generated] == ["Internet"]
    assert templates.get(broken.id).next_due_date == date(2024, 6, 1)
    assert templates.get(healthy.id).next_due_date == date(2024, 7, 2)
    assert "recurring_failed" in caplog.text


def test_expansion_only_reads_own_templates(gateway, owner, other_owner, checking, today):
    RecurringTransactionService(gateway, owner).create(_template(checking.id, today))

    result = RecurrenceExpander(gateway, other_owner).run(today)
    assert result.generated == []
    assert TransactionService(gateway, other_owner).list_all() == []


def test_legacy_template_record_is_normalized(gateway, owner, checking, today):
    gateway.put(
        Collection.recurring.value,
        "legacy-1",
        {
            "userId": owner.owner_id,
            "description": "Netflix",
            "value": "39.90",
            "type": "EXPENSE",
            "accountId": checking.id,
            "frequency": "MONTHLY",
            "nextDueDate": "2024-06-10T03:00:00.000Z",
            "active": True,
        },
    )
    result = RecurrenceExpander(gateway, owner).run(today)
    assert len(result.generated) == 1
    assert result.generated[0].value_cents == 3_990
    assert result.generated[0].date == date(2024, 6, 10)


def test_create_template_requires_owned_account(gateway, owner, other_owner, checking):
    with pytest.raises(OwnershipMismatch):
        RecurringTransactionService(gateway, other_owner).create(
            _template(checking.id, date(2024, 6, 1))
        )


def test_template_survives_deleted_category(gateway, owner, checking, food, today):
    templates = RecurringTransactionService(gateway, owner)
    template = templates.create(_template(checking.id, date(2024, 6, 1), category_id=food.id))
    CategoryService(gateway, owner).delete(food.id)

    result = templates.run_expansion(today)
    assert result.failed == []
    assert [t.category_id for t in result.generated] == [food.id]
    assert templates.get(template.id).next_due_date == date(2024, 7, 1)


def test_transfer_template_requires_destination(gateway, owner, checking):
    with pytest.raises(ValidationError):
        RecurringTransactionService(gateway, owner).create(
            {
                "description": "Reserva",
                "value_cents": 50_000,
                "type": "transfer",
                "account_id": checking.id,
                "frequency": "monthly",
                "next_due_date": "2024-06-01",
            }
        )


def test_transfer_template_expands_with_destination(gateway, owner, checking, card, today):
    templates = RecurringTransactionService(gateway, owner)
    template = templates.create(
        _template(
            checking.id,
            date(2024, 6, 5),
            type=TransactionType.transfer,
            destination_account_id=card.id,
        )
    )

    result = templates.run_expansion(today)
    assert result.failed == []
    assert [t.destination_account_id for t in result.generated] == [card.id]
    assert templates.get(template.id).next_due_date == date(2024, 7, 5)
