import random
from datetime import date

import pytest

import ledger
from errors import NotAuthenticated, NotFound, OwnershipMismatch, ValidationError
from models import AccountType, TransactionType
from schemas import AccountIn, TransactionIn
from services import AccountService, CategoryService, TransactionService


def _expense(account_id: str, value: int, *, paid: bool = True, **extra) -> TransactionIn:
    return TransactionIn(
        value_cents=value,
        date=extra.pop("on", date(2024, 6, 5)),
        description=extra.pop("description", "Compra"),
        account_id=account_id,
        type=extra.pop("type", TransactionType.expense),
        is_paid=paid,
        **extra,
    )


def _balance(gateway, owner, account_id: str) -> int:
    return AccountService(gateway, owner).get(account_id).balance_cents


def test_credit_card_expense_scenario(gateway, owner, checking, card) -> None:
    service = TransactionService(gateway, owner)

    txn = service.create(_expense(card.id, 5_000))
    assert _balance(gateway, owner, card.id) == 25_000
    assert _balance(gateway, owner, checking.id) == 100_000

    service.update(txn.id, _expense(card.id, 8_000))
    assert _balance(gateway, owner, card.id) == 28_000

    service.delete(txn.id)
    assert _balance(gateway, owner, card.id) == 20_000
    assert _balance(gateway, owner, checking.id) == 100_000
    with pytest.raises(NotFound):
        service.get(txn.id)


def test_unpaid_transaction_only_counts_once_paid(gateway, owner, checking) -> None:
    service = TransactionService(gateway, owner)
    txn = service.create(_expense(checking.id, 2_500, paid=False))
    assert _balance(gateway, owner, checking.id) == 100_000

    service.set_paid(txn.id)
    assert _balance(gateway, owner, checking.id) == 97_500

    service.set_paid(txn.id, False)
    assert _balance(gateway, owner, checking.id) == 100_000

    service.delete(txn.id)
    assert _balance(gateway, owner, checking.id) == 100_000


def test_edit_moves_effect_to_new_account(gateway, owner, checking, card) -> None:
    service = TransactionService(gateway, owner)
    txn = service.create(_expense(checking.id, 4_000))
    assert _balance(gateway, owner, checking.id) == 96_000

    service.update(txn.id, _expense(card.id, 4_000))
    assert _balance(gateway, owner, checking.id) == 100_000
    assert _balance(gateway, owner, card.id) == 24_000


def test_edit_changing_type_reverses_old_effect(gateway, owner, checking) -> None:
    service = TransactionService(gateway, owner)
    txn = service.create(_expense(checking.id, 1_000))
    service.update(txn.id, _expense(checking.id, 1_000, type=TransactionType.income))
    assert _balance(gateway, owner, checking.id) == 101_000


def test_transfer_does_not_touch_balances(gateway, owner, checking, card) -> None:
    service = TransactionService(gateway, owner)
    txn = service.create(
        _expense(
            checking.id,
            3_000,
            type=TransactionType.transfer,
            destination_account_id=card.id,
        )
    )
    assert txn.type == TransactionType.transfer
    assert _balance(gateway, owner, checking.id) == 100_000
    assert _balance(gateway, owner, card.id) == 20_000


def test_transfer_requires_distinct_destination(gateway, owner, checking) -> None:
    with pytest.raises(ValidationError):
        TransactionService(gateway, owner).create(
            {
                "value_cents": 100,
                "date": "2024-06-05",
                "account_id": checking.id,
                "destination_account_id": checking.id,
                "type": "transfer",
            }
        )


def test_rejects_non_positive_and_non_numeric_values(gateway, owner, checking) -> None:
    service = TransactionService(gateway, owner)
    for bad_value in (0, -5, "abc"):
        with pytest.raises(ValidationError):
            service.create(
                {
                    "value_cents": bad_value,
                    "date": "2024-06-05",
                    "account_id": checking.id,
                    "type": "expense",
                }
            )


def test_missing_account_is_not_found(gateway, owner) -> None:
    with pytest.raises(NotFound):
        TransactionService(gateway, owner).create(_expense("nope", 100))


def test_missing_category_is_not_found(gateway, owner, checking) -> None:
    with pytest.raises(NotFound):
        TransactionService(gateway, owner).create(
            _expense(checking.id, 100, category_id="missing")
        )


def test_other_owner_cannot_touch_records(gateway, owner, other_owner, checking) -> None:
    txn = TransactionService(gateway, owner).create(_expense(checking.id, 1_000))
    intruder = TransactionService(gateway, other_owner)

    with pytest.raises(OwnershipMismatch):
        intruder.get(txn.id)
    with pytest.raises(OwnershipMismatch):
        intruder.delete(txn.id)
    with pytest.raises(OwnershipMismatch):
        intruder.create(_expense(checking.id, 1_000))
    assert intruder.list_all() == []
    assert _balance(gateway, owner, checking.id) == 99_000


def test_requires_owner_context(gateway) -> None:
    with pytest.raises(NotAuthenticated):
        TransactionService(gateway, None)
    from context import OwnerContext

    with pytest.raises(NotAuthenticated):
        TransactionService(gateway, OwnerContext(""))


def test_dangling_category_survives_edit(gateway, owner, checking, food) -> None:
    service = TransactionService(gateway, owner)
    txn = service.create(_expense(checking.id, 1_000, category_id=food.id))
    CategoryService(gateway, owner).delete(food.id)

    updated = service.update(txn.id, _expense(checking.id, 1_500, category_id=food.id))
    assert updated.category_id == food.id
    assert _balance(gateway, owner, checking.id) == 98_500


def test_delete_with_missing_account_still_removes_record(gateway, owner, checking) -> None:
    service = TransactionService(gateway, owner)
    txn = service.create(_expense(checking.id, 1_000))
    AccountService(gateway, owner).delete(checking.id)
    service.delete(txn.id)
    assert service.list_all() == []


def test_list_is_newest_first(gateway, owner, checking) -> None:
    service = TransactionService(gateway, owner)
    service.create(_expense(checking.id, 100, on=date(2024, 5, 1)))
    service.create(_expense(checking.id, 100, on=date(2024, 6, 1)))
    service.create(_expense(checking.id, 100, on=date(2024, 4, 1)))
    assert [t.date.month for t in service.list_all()] == [6, 5, 4]


def test_balance_conservation_over_random_operations(gateway, owner) -> None:
    accounts = AccountService(gateway, owner)
    seeds = {
        accounts.create(AccountIn(name="Checking", type=AccountType.checking, balance_cents=50_000)).id: 50_000,
        accounts.create(AccountIn(name="Cash", type=AccountType.cash, balance_cents=1_000)).id: 1_000,
        accounts.create(AccountIn(name="Card", type=AccountType.credit_card, balance_cents=0)).id: 0,
    }
    account_ids = list(seeds)
    service = TransactionService(gateway, owner)
    rng = random.Random(20240610)
    live: list[str] = []

    def payload() -> TransactionIn:
        return _expense(
            rng.choice(account_ids),
            rng.randint(1, 10_000),
            paid=rng.random() < 0.6,
            type=rng.choice([TransactionType.income, TransactionType.expense]),
        )

    for _ in range(60):
        action = rng.random()
        if action < 0.5 or not live:
            live.append(service.create(payload()).id)
        elif action < 0.8:
            service.update(rng.choice(live), payload())
        else:
            txn_id = live.pop(rng.randrange(len(live)))
            service.delete(txn_id)

    stored = {a.id: a for a in accounts.list_all()}
    expected = dict(seeds)
    for txn in service.list_all():
        expected[txn.account_id] += ledger.balance_delta(txn, stored[txn.account_id].type)
    assert {account_id: stored[account_id].balance_cents for account_id in seeds} == expected
