"""Pytest fixtures for settlement engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from settlement_engine.calculators.types import SettlementPeriod
from settlement_engine.models import Base, Driver, Load, Settlement

# In-memory SQLite shared across sessions of one test via StaticPool
TEST_DATABASE_URL = "sqlite+aiosqlite://"


def make_load(
    load_id: str,
    driver_id: str | None,
    delivery_date: str | None = "2024-01-10",
    status: str = "delivered",
    **kwargs: Any,
) -> Load:
    """Build a load with sensible defaults for settlement tests."""
    values: dict[str, Any] = {
        "rate": Decimal("1000.00"),
        "miles": Decimal("400"),
        "load_number": f"L-{load_id}",
    }
    values.update(kwargs)
    return Load(
        id=load_id,
        driver_id=driver_id,
        status=status,
        delivery_date=delivery_date,
        **values,
    )


def make_settlement(
    settlement_id: str,
    driver_id: str,
    number: str,
    load_ids: list[str] | None = None,
    deductions: dict[str, str] | None = None,
    gross_pay: str = "0",
    paid_on: date | None = None,
    **kwargs: Any,
) -> Settlement:
    """Build a settlement row directly, bypassing the engine."""
    total_deductions = sum((Decimal(v) for v in (deductions or {}).values()), Decimal("0"))
    gross = Decimal(gross_pay)
    values: dict[str, Any] = {
        "period_start": date(2024, 1, 1),
        "period_end": date(2024, 1, 31),
        "status": "pending",
    }
    values.update(kwargs)
    return Settlement(
        id=settlement_id,
        settlement_number=number,
        driver_id=driver_id,
        driver_name="Test Driver",
        load_ids=list(load_ids or []),
        load_pay=[{"load_id": load_id, "base_pay": "0"} for load_id in load_ids or []],
        deductions=dict(deductions or {}),
        additional_pay={},
        gross_pay=gross,
        total_deductions=total_deductions,
        net_pay=max(Decimal("0"), gross - total_deductions),
        paid_on=paid_on,
        **values,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def company_driver(session: AsyncSession) -> Driver:
    """Company driver paid 25% of the load rate."""
    driver = Driver(
        id="drv-company",
        first_name="Casey",
        last_name="Jones",
        driver_type="Company",
        pay_type="percentage",
        pay_percentage=Decimal("25"),
    )
    session.add(driver)
    await session.flush()
    return driver


@pytest_asyncio.fixture
async def other_driver(session: AsyncSession) -> Driver:
    driver = Driver(
        id="drv-other",
        first_name="Robin",
        last_name="Hale",
        driver_type="Company",
        pay_type="per_mile",
        per_mile_rate=Decimal("0.55"),
    )
    session.add(driver)
    await session.flush()
    return driver


@pytest_asyncio.fixture
async def january_loads(session: AsyncSession, company_driver: Driver) -> list[Load]:
    """Two delivered January loads with precomputed pay of 500 and 700."""
    loads = [
        make_load(
            "load-a",
            company_driver.id,
            "2024-01-05",
            driver_base_pay=Decimal("500.00"),
            miles=Decimal("300"),
        ),
        make_load(
            "load-b",
            company_driver.id,
            "2024-01-12T14:30:00Z",
            driver_base_pay=Decimal("700.00"),
            miles=Decimal("450"),
        ),
    ]
    session.add_all(loads)
    await session.flush()
    return loads


@pytest.fixture
def january() -> SettlementPeriod:
    return SettlementPeriod(date(2024, 1, 1), date(2024, 1, 31))
