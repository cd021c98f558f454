"""BOM reference data used only for plan-vs-actual comparison.

Like the route registry, plans are owned by the order/BOM side of the
application. ``register_plan`` lets that side publish the planned finished
quantity of an order into the shared store.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol, Union

from flowtrack.database.connection import Database
from flowtrack.exceptions import ValidationError

logger = logging.getLogger(__name__)


class BomSource(Protocol):
    """Read-only source of planned finished quantities per order."""

    async def planned_quantity(self, order_id: str) -> Optional[Decimal]:
        ...


class BomRegistry:
    """SQLite-backed BomSource."""

    def __init__(self, db: Database):
        self.db = db

    async def register_plan(
        self, order_id: str, planned_quantity: Union[Decimal, int, str], unit: Optional[str] = None
    ) -> Decimal:
        """Create or replace the planned quantity of an order."""
        try:
            quantity = Decimal(str(planned_quantity))
        except InvalidOperation as exc:
            raise ValidationError(f"planned_quantity is not a number: {planned_quantity!r}") from exc
        if not order_id:
            raise ValidationError("Plan needs an order id")
        if not quantity.is_finite() or quantity <= 0:
            raise ValidationError(f"planned_quantity must be > 0, got {planned_quantity!r}")

        await self.db.execute_write(
            """
            INSERT INTO order_plans (order_id, planned_quantity, unit) VALUES (?, ?, ?)
            ON CONFLICT(order_id) DO UPDATE
            SET planned_quantity = excluded.planned_quantity, unit = excluded.unit,
                updated_at = CURRENT_TIMESTAMP
            """,
            [order_id, str(quantity), unit],
        )
        logger.info("Registered plan for order %s: %s %s", order_id, quantity, unit or "")
        return quantity

    async def planned_quantity(self, order_id: str) -> Optional[Decimal]:
        rows = await self.db.execute_read(
            "SELECT planned_quantity FROM order_plans WHERE order_id = ?", [order_id]
        )
        return Decimal(rows[0]["planned_quantity"]) if rows else None
