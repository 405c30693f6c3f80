from __future__ import annotations

from datetime import datetime
from typing import Protocol

from rebalancer.domain.models import Fixture, ReferenceEvent, ReferenceOdds


class FixtureProvider(Protocol):
    async def fetch_fixture(self, fixture_id: int) -> Fixture | None: ...


class ReferenceOddsProvider(Protocol):
    async def list_upcoming_events(self, after: datetime, before: datetime) -> list[ReferenceEvent]: ...

    async def fetch_event_odds(self, event_id: int, home_name: str, away_name: str) -> ReferenceOdds | None: ...
