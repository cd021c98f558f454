"""Process chain analytics: chain yield, bottlenecks, readiness and continuity."""

from flowtrack.analytics.engine import ProcessChainAnalytics

__all__ = ["ProcessChainAnalytics"]
