"""HTTP surface for the flow tracking engine."""
