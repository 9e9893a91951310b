"""Shared fixtures for the production control test-suite."""

from typing import Callable, List

import pytest

from production_control import ProductionService
from production_control.domain import ProductionLine, WorkOrder
from production_control.storage import ProductionDatabase


@pytest.fixture
def service() -> ProductionService:
    """In-memory service with the default six-stage pipeline."""
    return ProductionService()


@pytest.fixture
def sqlite_service(tmp_path):
    """Service persisted to a throw-away SQLite file."""
    service = ProductionService(ProductionDatabase(str(tmp_path / "production.sqlite3")))
    yield service
    service.close()


@pytest.fixture
def fill_line() -> Callable[[ProductionService, ProductionLine, int], List[WorkOrder]]:
    """Place ``count`` pending orders on a line without going through the allocator."""

    def _fill(service: ProductionService, line: ProductionLine, count: int) -> List[WorkOrder]:
        placed = []
        for index in range(count):
            order = service.create_order(f"FILL-{line.name}-{index}", "Filler Co")
            with service.store.transaction():
                stored = service.store.orders.get(order.id)
                stored.line_id = line.id
                service.store.orders.upsert(stored.id, stored)
            placed.append(stored)
        return placed

    return _fill
