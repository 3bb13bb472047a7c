"""Observability helpers (Prometheus metrics)."""
