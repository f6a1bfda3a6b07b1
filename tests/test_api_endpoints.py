"""API endpoint tests.

Tests the FastAPI endpoints against an in-memory database.
"""

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine.api.app import create_app
from settlement_engine.api.dependencies import get_db_session
from settlement_engine.models import Driver, Load

pytestmark = pytest.mark.asyncio

SETTLEMENT_PAYLOAD = {
    "driver_id": "drv-company",
    "period_start": "2024-01-01",
    "period_end": "2024-01-31",
    "load_ids": ["load-a", "load-b"],
    "deductions": [{"category": "Tolls", "amount": "50"}],
    "additional_pay": [{"category": "Bonus", "amount": "100"}],
}


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the test database."""
    app = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def seeded(session: AsyncSession, company_driver: Driver, january_loads: list[Load]) -> None:
    await session.commit()


async def _commit(client: AsyncClient) -> dict:
    response = await client.post("/api/v1/settlements", json=SETTLEMENT_PAYLOAD)
    assert response.status_code == 201, response.text
    return response.json()["settlement"]


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    async def test_readiness_and_liveness(self, client: AsyncClient):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestSettlementEndpoints:
    """Test settlement commit, read, and adjustment endpoints."""

    async def test_commit(self, client: AsyncClient, seeded):
        response = await client.post("/api/v1/settlements", json=SETTLEMENT_PAYLOAD)

        assert response.status_code == 201, response.text
        body = response.json()
        settlement = body["settlement"]
        assert body["warnings"] == []
        assert Decimal(settlement["gross_pay"]) == Decimal("1300")
        assert Decimal(settlement["total_deductions"]) == Decimal("50")
        assert Decimal(settlement["net_pay"]) == Decimal("1250")
        assert settlement["load_ids"] == ["load-a", "load-b"]
        assert {k: Decimal(v) for k, v in settlement["deductions"].items()} == {"tolls": Decimal("50")}
        assert [Decimal(entry["total_pay"]) for entry in settlement["load_pay"]] == [
            Decimal("500"),
            Decimal("700"),
        ]
        assert settlement["period_display"] == "Jan 1, 2024 - Jan 31, 2024"

    async def test_get_and_list(self, client: AsyncClient, seeded):
        settlement = await _commit(client)

        response = await client.get(f"/api/v1/settlements/{settlement['id']}")
        assert response.status_code == 200
        assert response.json()["settlement_number"] == settlement["settlement_number"]

        response = await client.get("/api/v1/settlements", params={"driver_id": "drv-company"})
        assert response.status_code == 200
        listing = response.json()
        assert listing["total"] == 1
        assert Decimal(listing["total_net"]) == Decimal("1250")
        assert Decimal(listing["average_net"]) == Decimal("1250")

    async def test_adjustments(self, client: AsyncClient, seeded):
        settlement = await _commit(client)
        base = f"/api/v1/settlements/{settlement['id']}"

        response = await client.post(f"{base}/deductions", json={"category": "Fuel Advance", "amount": "20"})
        assert response.status_code == 200, response.text
        response = await client.post(f"{base}/deductions", json={"category": "fuel advance", "amount": "30"})
        assert Decimal(response.json()["deductions"]["fueladvance"]) == Decimal("50")
        assert Decimal(response.json()["net_pay"]) == Decimal("1200")

        response = await client.post(f"{base}/additional-pay", json={"category": "Bonus", "amount": "25"})
        assert Decimal(response.json()["gross_pay"]) == Decimal("1325")

        response = await client.get(f"{base}/audit")
        actions = [event["action"] for event in response.json()]
        assert actions.count("deduction_added") == 2
        assert "additional_pay_added" in actions

    async def test_update(self, client: AsyncClient, seeded):
        settlement = await _commit(client)

        response = await client.put(
            f"/api/v1/settlements/{settlement['id']}",
            json={**SETTLEMENT_PAYLOAD, "load_ids": ["load-b"], "additional_pay": []},
        )

        assert response.status_code == 200, response.text
        updated = response.json()["settlement"]
        assert updated["load_ids"] == ["load-b"]
        assert Decimal(updated["net_pay"]) == Decimal("650")

        eligible = await client.get(
            "/api/v1/drivers/drv-company/eligible-loads",
            params={"period_start": "2024-01-01", "period_end": "2024-01-31"},
        )
        assert [load["id"] for load in eligible.json()["items"]] == ["load-a"]

    async def test_update_null_clears_notes(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/settlements", json={**SETTLEMENT_PAYLOAD, "notes": "call dispatch"}
        )
        settlement_id = response.json()["settlement"]["id"]
        url = f"/api/v1/settlements/{settlement_id}"

        response = await client.put(url, json=SETTLEMENT_PAYLOAD)
        assert response.json()["settlement"]["notes"] == "call dispatch"

        response = await client.put(url, json={**SETTLEMENT_PAYLOAD, "notes": None})
        assert response.status_code == 200, response.text
        assert response.json()["settlement"]["notes"] is None

    async def test_mark_paid_and_delete(self, client: AsyncClient, seeded):
        settlement = await _commit(client)
        base = f"/api/v1/settlements/{settlement['id']}"

        response = await client.post(f"{base}/mark-paid", json={"paid_on": "2024-02-02"})
        assert response.json()["status"] == "paid"

        response = await client.delete(base)
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

        response = await client.delete(base, params={"force": "true"})
        assert response.status_code == 200
        assert response.json() == {
            "settlement_id": settlement["id"],
            "deleted": True,
            "warnings": [],
        }

        assert (await client.get(base)).status_code == 404

    async def test_clone_without_previous(self, client: AsyncClient, seeded):
        settlement = await _commit(client)

        response = await client.post(f"/api/v1/settlements/{settlement['id']}/clone-deductions")

        assert response.status_code == 404


class TestErrorMapping:
    """Engine errors map to HTTP status codes."""

    async def test_empty_selection_is_400(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/settlements", json={**SETTLEMENT_PAYLOAD, "load_ids": []}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_unknown_driver_is_404(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/settlements", json={**SETTLEMENT_PAYLOAD, "driver_id": "ghost"}
        )
        assert response.status_code == 404

    async def test_inverted_period_is_400(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/settlements",
            json={**SETTLEMENT_PAYLOAD, "period_start": "2024-02-01", "period_end": "2024-01-01"},
        )
        assert response.status_code == 400

    async def test_double_claim_is_400(self, client: AsyncClient, seeded):
        await _commit(client)

        response = await client.post("/api/v1/settlements", json=SETTLEMENT_PAYLOAD)

        assert response.status_code == 400

    async def test_zero_adjustment_is_400(self, client: AsyncClient, seeded):
        settlement = await _commit(client)

        response = await client.post(
            f"/api/v1/settlements/{settlement['id']}/deductions",
            json={"category": "Tolls", "amount": "0"},
        )

        assert response.status_code == 400

    async def test_missing_settlement_is_404(self, client: AsyncClient):
        response = await client.get("/api/v1/settlements/missing")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestDriverEndpoints:
    async def test_eligible_loads(self, client: AsyncClient, seeded):
        response = await client.get(
            "/api/v1/drivers/drv-company/eligible-loads",
            params={"period_start": "2024-01-01", "period_end": "2024-01-31", "descending": "true"},
        )

        assert response.status_code == 200
        assert [load["id"] for load in response.json()["items"]] == ["load-b", "load-a"]

    async def test_ytd(self, client: AsyncClient, seeded):
        settlement = await _commit(client)
        await client.post(
            f"/api/v1/settlements/{settlement['id']}/mark-paid", json={"paid_on": "2024-02-02"}
        )

        response = await client.get("/api/v1/drivers/drv-company/ytd", params={"year": 2024})

        assert response.status_code == 200
        data = response.json()
        assert data["settlement_count"] == 1
        assert Decimal(data["gross_ytd"]) == Decimal("1300")
        assert Decimal(data["net_ytd"]) == Decimal("1250")


class TestLinkAuditEndpoints:
    async def test_scan_and_repair(self, client: AsyncClient, seeded):
        await _commit(client)

        response = await client.get("/api/v1/link-audit")
        assert response.status_code == 200
        assert response.json()["consistent"] is True

        response = await client.post("/api/v1/link-audit/repair")
        assert response.status_code == 200
        assert response.json()["repaired"] == 0
