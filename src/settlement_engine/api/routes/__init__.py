"""API routes."""

from settlement_engine.api.routes.drivers import router as drivers_router
from settlement_engine.api.routes.health import router as health_router
from settlement_engine.api.routes.maintenance import router as maintenance_router
from settlement_engine.api.routes.settlements import router as settlements_router

__all__ = ["settlements_router", "drivers_router", "maintenance_router", "health_router"]
