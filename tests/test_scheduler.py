from datetime import date

from context import OwnerContext
from errors import PersistenceFailure
from gateway import PersistenceGateway
from models import TransactionType
from schemas import AccountIn, RecurringTransactionIn
from scheduler import SchedulerManager, expand_all_owners
from services import AccountService, RecurringTransactionService, TransactionService


def _seed_owner(gateway, owner_id: str, due: date) -> None:
    owner = OwnerContext(owner_id)
    account = AccountService(gateway, owner).create(
        AccountIn(name="Conta", type="checking", balance_cents=0)
    )
    RecurringTransactionService(gateway, owner).create(
        RecurringTransactionIn(
            description="Mensalidade",
            value_cents=1_000,
            type=TransactionType.expense,
            account_id=account.id,
            frequency="monthly",
            next_due_date=due,
        )
    )


def test_expand_all_owners_runs_each_owner(gateway, today):
    _seed_owner(gateway, "user-1", date(2024, 6, 1))
    _seed_owner(gateway, "user-2", date(2024, 6, 9))
    _seed_owner(gateway, "user-3", date(2024, 7, 1))

    assert expand_all_owners(gateway, today) == 2
    assert expand_all_owners(gateway, today) == 0
    for owner_id, expected in (("user-1", 1), ("user-2", 1), ("user-3", 0)):
        txns = TransactionService(gateway, OwnerContext(owner_id)).list_all()
        assert len(txns) == expected


class DownGateway(PersistenceGateway):
    def _fail(self, *args, **kwargs):
        raise PersistenceFailure("backend down")

    query_by_owner = get_by_id = put = update = delete = commit_atomic = owner_ids = _fail


def test_run_job_logs_storage_failures(caplog):
    manager = SchedulerManager(DownGateway())
    with caplog.at_level("ERROR", logger="scheduler"):
        manager._run_job("test")
    assert "scheduler_run_failed: source=test" in caplog.text


def test_start_registers_jobs_and_stop(gateway):
    manager = SchedulerManager(gateway)
    manager.start()
    try:
        assert {job.id for job in manager.scheduler.get_jobs()} == {
            "recurring_daily",
            "recurring_hourly_safety",
        }
    finally:
        manager.stop()
    assert not manager.scheduler.running
