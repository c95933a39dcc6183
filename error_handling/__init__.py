"""Failure isolation for upstream calls."""
