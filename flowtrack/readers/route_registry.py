"""Route registry: the ordered stage chain of each order.

The chain is owned by the order/route side of the application; the tracking
core only reads it. ``register_route`` exists so that side (and tests) can
publish a route into the shared store.
"""

from __future__ import annotations

import logging
from typing import Optional

from flowtrack.database.connection import Database
from flowtrack.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class RouteRegistry:
    """SQLite-backed lookup of per-order stage sequences."""

    def __init__(self, db: Database):
        self.db = db

    async def register_route(self, order_id: str, stages: list[str]) -> list[str]:
        """Replace the route of an order with ``stages`` (in order)."""
        cleaned = [s.strip() for s in stages]
        if not order_id or not cleaned or any(not s for s in cleaned):
            raise ValidationError("Route needs an order id and at least one non-empty stage")
        if len(set(cleaned)) != len(cleaned):
            raise ValidationError(f"Route for order {order_id} repeats a stage: {cleaned}")

        async with self.db.transaction():
            await self.db.execute_write_no_commit(
                "DELETE FROM order_routes WHERE order_id = ?", [order_id]
            )
            await self.db.executemany_no_commit(
                "INSERT INTO order_routes (order_id, position, stage) VALUES (?, ?, ?)",
                [(order_id, pos, stage) for pos, stage in enumerate(cleaned)],
            )
        logger.info("Registered route for order %s: %s", order_id, " -> ".join(cleaned))
        return cleaned

    async def get_route(self, order_id: str) -> list[str]:
        """Return the ordered stage list, or raise NotFoundError for unknown orders."""
        rows = await self.db.execute_read(
            "SELECT stage FROM order_routes WHERE order_id = ? ORDER BY position",
            [order_id],
        )
        if not rows:
            raise NotFoundError(f"Order {order_id} has no registered route")
        return [row["stage"] for row in rows]

    async def list_routes(self) -> dict[str, list[str]]:
        """Every registered route, keyed by order id."""
        rows = await self.db.execute_read(
            "SELECT order_id, stage FROM order_routes ORDER BY order_id, position"
        )
        routes: dict[str, list[str]] = {}
        for row in rows:
            routes.setdefault(row["order_id"], []).append(row["stage"])
        return routes

    async def require_stage(self, order_id: str, stage: str) -> list[str]:
        """Return the route after checking ``stage`` belongs to it."""
        route = await self.get_route(order_id)
        if stage not in route:
            raise NotFoundError(f"Stage {stage} is not part of the route for order {order_id}")
        return route

    async def previous_stage(self, order_id: str, stage: str) -> Optional[str]:
        """Stage immediately before ``stage`` in the route, None for the first stage."""
        route = await self.require_stage(order_id, stage)
        index = route.index(stage)
        return route[index - 1] if index > 0 else None
