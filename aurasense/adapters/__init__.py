"""Condition-specific adapters built on the core engine."""
