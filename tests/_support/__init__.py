"""Shared test helpers (clocks, time constructors)."""
