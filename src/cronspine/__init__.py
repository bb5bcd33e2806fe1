"""
cronspine - check-in monitoring for scheduled jobs.

Jobs report ``in_progress`` / ``ok`` / ``error`` check-ins; cronspine tracks
each monitor's expected timeline, detects missed and overrunning runs, and
emits ``Degraded`` / ``Recovered`` transitions once failure or recovery
thresholds are crossed.

- cronspine.core: errors, logging, settings, connections, retry, rate limiting
- cronspine.monitors: schedule evaluation, store, ingestor, sweep, thresholds
- cronspine.api: FastAPI transport
- cronspine.cli: Typer command line
"""

__version__ = "0.1.0"
