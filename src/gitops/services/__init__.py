"""Operator-side services."""
