"""Prometheus metrics shared by the gateway components."""
