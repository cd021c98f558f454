"""Durable store for flow records and transfers."""
