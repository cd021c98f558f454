"""Shared fixtures for FlowTrack tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio

from tests.fixtures.sample_data import ORDER_ID, ROUTE


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def temp_db_path() -> AsyncGenerator[Path, None]:
    """Create temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        yield db_path


@pytest_asyncio.fixture
async def test_database(temp_db_path: Path):
    """Initialized test database."""
    from flowtrack.database.connection import Database

    db = Database(temp_db_path)
    await db.connect()
    yield db
    await db.close()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def bottleneck_config():
    """Default BottleneckConfig, isolated from the environment."""
    from flowtrack.config import BottleneckConfig

    return BottleneckConfig(_env_file=None)


@pytest.fixture
def test_config(temp_db_path, bottleneck_config):
    """Complete test Config."""
    from flowtrack.config import Config, TrackingConfig

    return Config(
        tracking=TrackingConfig(_env_file=None, db_path=temp_db_path),
        bottleneck=bottleneck_config,
    )


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def routes(test_database):
    """RouteRegistry seeded with the five-stage film route for ORDER_ID."""
    from flowtrack.readers.route_registry import RouteRegistry

    registry = RouteRegistry(test_database)
    await registry.register_route(ORDER_ID, ROUTE)
    return registry


@pytest.fixture
def plans(test_database):
    from flowtrack.readers.bom import BomRegistry

    return BomRegistry(test_database)


@pytest.fixture
def recorder(test_database, routes):
    from flowtrack.flow.recorder import MaterialFlowRecorder

    return MaterialFlowRecorder(test_database, routes)


@pytest.fixture
def tracker(test_database, routes, recorder):
    from flowtrack.flow.transfers import ProcessTransferTracker

    return ProcessTransferTracker(test_database, routes, recorder)


@pytest.fixture
def analytics(routes, recorder, tracker, plans, bottleneck_config):
    from flowtrack.analytics.engine import ProcessChainAnalytics

    return ProcessChainAnalytics(routes, recorder, tracker, config=bottleneck_config, bom_source=plans)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def make_flow(recorder):
    """Factory recording one flow for ORDER_ID with sensible defaults."""
    from flowtrack.models.material_flow import MaterialInput, MaterialOutput

    async def _make(
        stage: str,
        input_qty,
        good=None,
        rework=None,
        waste=None,
        material: str = "PET_FILM",
        cost_per_unit="0",
        order_id: str = ORDER_ID,
        hours: Optional[float] = None,
        recorded_at: Optional[datetime] = None,
        **kwargs,
    ):
        recorded_at = recorded_at or datetime.now(timezone.utc)
        started_at = recorded_at - timedelta(hours=hours) if hours is not None else None
        return await recorder.record_flow(
            order_id,
            stage,
            MaterialInput(
                material_type=material,
                quantity=Decimal(str(input_qty)),
                cost_per_unit=Decimal(str(cost_per_unit)),
            ),
            MaterialOutput(
                good_quantity=Decimal(str(good)) if good is not None else None,
                rework_quantity=Decimal(str(rework)) if rework is not None else None,
                waste_quantity=Decimal(str(waste)) if waste is not None else None,
            ),
            started_at=started_at,
            recorded_at=recorded_at,
            **kwargs,
        )

    return _make
