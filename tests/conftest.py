from datetime import date

import pytest
from sqlalchemy.orm import sessionmaker

from context import OwnerContext
from database import build_engine, init_db
from gateway import SQLAlchemyGateway
from models import AccountType
from schemas import AccountIn, CategoryIn
from services import AccountService, CategoryService


@pytest.fixture
def engine():
    eng = build_engine("sqlite+pysqlite:///:memory:")
    init_db(eng)
    return eng


@pytest.fixture
def gateway(engine) -> SQLAlchemyGateway:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SQLAlchemyGateway(factory)


@pytest.fixture
def owner() -> OwnerContext:
    return OwnerContext("user-1")


@pytest.fixture
def other_owner() -> OwnerContext:
    return OwnerContext("user-2")


@pytest.fixture
def today() -> date:
    return date(2024, 6, 10)


@pytest.fixture
def checking(gateway, owner):
    return AccountService(gateway, owner).create(
        AccountIn(name="Checking", type=AccountType.checking, balance_cents=100_000)
    )


@pytest.fixture
def card(gateway, owner):
    return AccountService(gateway, owner).create(
        AccountIn(
            name="Card",
            type=AccountType.credit_card,
            balance_cents=20_000,
            closing_day=25,
            due_day=5,
            limit_cents=500_000,
        )
    )


@pytest.fixture
def food(gateway, owner):
    return CategoryService(gateway, owner).create(
        CategoryIn(name="Alimentação", color="#f59e0b", budget_limit_cents=50_000)
    )
