"""Settlement engine command line interface.

Provides operational tools for:
- Load/settlement link audits and repair
- Driver year-to-date summaries

Usage:
    python -m settlement_engine.cli link-audit
    python -m settlement_engine.cli link-audit --repair
    python -m settlement_engine.cli ytd --driver-id X --year 2024
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine.config import get_settings
from settlement_engine.database import dispose_db, get_session
from settlement_engine.exceptions import SettlementEngineError
from settlement_engine.services.link_audit import LinkAuditor
from settlement_engine.services.reconciliation_engine import ReconciliationEngine

logger = logging.getLogger(__name__)


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str)


class SettlementCli:
    """Settlement engine command line interface."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self.session_factory = session_factory
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m settlement_engine.cli",
            description="Settlement engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # link-audit command
        audit = subparsers.add_parser(
            "link-audit",
            help="Check load backrefs against settlement load lists",
        )
        audit.add_argument(
            "--repair",
            action="store_true",
            help="Clear bad backrefs and restore missing ones",
        )

        # ytd command
        ytd = subparsers.add_parser(
            "ytd",
            help="Year-to-date totals for a driver",
        )
        ytd.add_argument(
            "--driver-id",
            type=str,
            required=True,
            help="Driver ID",
        )
        ytd.add_argument(
            "--year",
            type=int,
            required=True,
            help="Calendar year",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        return asyncio.run(self.run_async(args))

    async def run_async(self, args: list[str] | None = None) -> int:
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "link-audit": self._cmd_link_audit,
            "ytd": self._cmd_ytd,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return await handler(parsed)
        except SettlementEngineError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        if self.session_factory is None:
            async with get_session() as session:
                yield session
            return

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _cmd_link_audit(self, args: argparse.Namespace) -> int:
        """Scan (and optionally repair) load/settlement links."""
        async with self._session() as session:
            auditor = LinkAuditor(session)
            report = await auditor.repair() if args.repair else await auditor.scan()

        print(_dump(report.to_dict()))

        if args.repair:
            unresolved = [issue for issue in report.issues if not issue.repairable]
            return 0 if not report.errors and not unresolved else 1
        return 0 if report.is_consistent else 1

    async def _cmd_ytd(self, args: argparse.Namespace) -> int:
        """Print year-to-date totals for a driver."""
        async with self._session() as session:
            summary = await ReconciliationEngine(session).ytd_summary(args.driver_id, args.year)

        print(_dump(dataclasses.asdict(summary)))
        return 0


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = SettlementCli()

    async def _run() -> int:
        try:
            return await cli.run_async()
        finally:
            await dispose_db()

    return asyncio.run(_run())


if __name__ == "__main__":
    sys.exit(main())
