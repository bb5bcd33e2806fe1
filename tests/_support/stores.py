"""Store doubles that lose races or fail on demand."""

from __future__ import annotations

from cronspine.core.errors import StoreUnavailableError
from cronspine.monitors.models import Mutation
from cronspine.monitors.store import MonitorStore


class RacingStore(MonitorStore):
    """Store whose first ``races`` CAS calls lose to a competing writer."""

    def __init__(self, conn, races: int = 1) -> None:
        super().__init__(conn)
        self.races = races
        self.cas_calls = 0

    def cas(self, slug, environment, expected_version, mutation):
        self.cas_calls += 1
        if self.races > 0:
            self.races -= 1
            current = self.require(slug, environment)
            super().cas(slug, environment, current.version, Mutation(monitor=current))
        return super().cas(slug, environment, expected_version, mutation)


class BrokenRunsStore(MonitorStore):
    """Run reads fail for the given slugs."""

    def __init__(self, conn, broken: set[str]) -> None:
        super().__init__(conn)
        self.broken = broken

    def get_run(self, slug, environment, expected_at):
        if slug in self.broken:
            raise StoreUnavailableError("disk I/O error").with_context(slug=slug, environment=environment)
        return super().get_run(slug, environment, expected_at)
