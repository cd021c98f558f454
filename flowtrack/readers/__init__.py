"""Read-only collaborators consumed by the tracking core."""

from flowtrack.readers.bom import BomRegistry, BomSource
from flowtrack.readers.route_registry import RouteRegistry

__all__ = ["BomRegistry", "BomSource", "RouteRegistry"]
