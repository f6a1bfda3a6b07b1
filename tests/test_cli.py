"""Tests for the operational CLI."""

import json
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine.cli import SettlementCli
from settlement_engine.models import Driver, Load
from tests.conftest import make_load, make_settlement

pytestmark = pytest.mark.asyncio


class TestLinkAuditCommand:
    """Test link-audit."""

    async def test_clean_database(
        self,
        session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        company_driver: Driver,
        capsys,
    ):
        await session.commit()

        exit_code = await SettlementCli(session_factory).run_async(["link-audit"])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["consistent"] is True
        assert data["issues"] == []

    async def test_scan_then_repair(
        self,
        session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        company_driver: Driver,
        capsys,
    ):
        session.add(make_load("orphan", company_driver.id, settlement_id="ghost"))
        await session.commit()
        cli = SettlementCli(session_factory)

        assert await cli.run_async(["link-audit"]) == 1
        scan = json.loads(capsys.readouterr().out)
        assert [issue["kind"] for issue in scan["issues"]] == ["orphan_backref"]

        assert await cli.run_async(["link-audit", "--repair"]) == 0
        repair = json.loads(capsys.readouterr().out)
        assert repair["repaired"] == 1

        async with session_factory() as check:
            assert (await check.get(Load, "orphan")).settlement_id is None


class TestYtdCommand:
    """Test ytd."""

    async def test_prints_summary(
        self,
        session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        company_driver: Driver,
        capsys,
    ):
        session.add(
            make_settlement(
                "s-1",
                company_driver.id,
                "ST-2024-1001",
                deductions={"fuel": "100.00"},
                gross_pay="1500.00",
                paid_on=date(2024, 3, 1),
            )
        )
        await session.commit()

        exit_code = await SettlementCli(session_factory).run_async(
            ["ytd", "--driver-id", company_driver.id, "--year", "2024"]
        )

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["settlement_count"] == 1
        assert data["gross_ytd"] == "1500.00"
        assert data["deductions_by_category_ytd"] == {"fuel": "100.00"}
        assert data["net_ytd"] == "1400.00"

    async def test_unknown_driver(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        capsys,
    ):
        exit_code = await SettlementCli(session_factory).run_async(
            ["ytd", "--driver-id", "ghost", "--year", "2024"]
        )

        assert exit_code == 1
        assert "ERROR" in capsys.readouterr().err


class TestParser:
    async def test_no_command_prints_help(self, session_factory, capsys):
        assert await SettlementCli(session_factory).run_async([]) == 1
        assert "link-audit" in capsys.readouterr().out
