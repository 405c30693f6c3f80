from __future__ import annotations

import logging
from datetime import timedelta

from rebalancer.data.fuzzy import token_set_ratio
from rebalancer.domain.errors import UnmappableMarket
from rebalancer.domain.models import MappingResult, ReferenceOdds
from rebalancer.ports.providers import FixtureProvider, ReferenceOddsProvider
from rebalancer.utils.config_loader import MappingSettings

logger = logging.getLogger(__name__)


class ExternalOddsResolver:
    """
    Maps an on-chain market id (which is the fixture id) to a reference event.

    Resolved mappings and known-unmappable ids are both remembered for the life
    of this object. Provider outages are not remembered: a TransientNetwork
    error propagates and the next cycle tries again.
    """

    def __init__(
        self,
        fixtures: FixtureProvider,
        reference: ReferenceOddsProvider,
        settings: MappingSettings | None = None,
    ):
        self.fixtures = fixtures
        self.reference = reference
        self.settings = settings or MappingSettings()
        self._cache: dict[int, MappingResult] = {}
        self._unmappable: set[int] = set()

    def is_unmappable(self, market_id: int) -> bool:
        return int(market_id) in self._unmappable

    def cached(self, market_id: int) -> MappingResult | None:
        return self._cache.get(int(market_id))

    def invalidate(self, market_id: int) -> None:
        """Forget both the positive and negative entry for one market."""
        market_id = int(market_id)
        self._cache.pop(market_id, None)
        self._unmappable.discard(market_id)

    def clear(self) -> None:
        self._cache.clear()
        self._unmappable.clear()

    def _mark_unmappable(self, market_id: int, reason: str) -> None:
        logger.warning(f"[{market_id}] Marking as unmappable: {reason}")
        self._unmappable.add(market_id)

    async def resolve(self, market_id: int) -> MappingResult | None:
        market_id = int(market_id)
        if market_id in self._cache:
            return self._cache[market_id]
        if market_id in self._unmappable:
            return None

        fixture = await self.fixtures.fetch_fixture(market_id)
        if fixture is None or not fixture.home_name or not fixture.away_name:
            self._mark_unmappable(market_id, "fixture metadata unavailable")
            return None

        after = fixture.kickoff - timedelta(hours=self.settings.window_before_hours)
        before = fixture.kickoff + timedelta(hours=self.settings.window_after_hours)
        candidates = await self.reference.list_upcoming_events(after, before)
        if not candidates:
            self._mark_unmappable(market_id, "no reference events around kickoff")
            return None

        wanted = f"{fixture.home_name} {fixture.away_name}"
        best = None
        best_score = -1
        for event in candidates:
            score = token_set_ratio(wanted, event.name)
            if score > best_score:
                best, best_score = event, score

        if best is None or best_score < self.settings.min_confidence:
            self._mark_unmappable(
                market_id,
                f"best candidate '{best.name if best else None}' scored {best_score} "
                f"< {self.settings.min_confidence}",
            )
            return None

        result = MappingResult(
            market_id=market_id,
            event_id=best.event_id,
            home_name=fixture.home_name,
            away_name=fixture.away_name,
            score=best_score,
        )
        logger.info(
            f"[{market_id}] Mapped '{fixture.home_name} vs {fixture.away_name}' "
            f"to event {best.event_id} '{best.name}' (score {best_score})"
        )
        self._cache[market_id] = result
        return result

    async def require(self, market_id: int) -> MappingResult:
        """Like resolve(), but raises UnmappableMarket instead of returning None."""
        result = await self.resolve(market_id)
        if result is None:
            raise UnmappableMarket(market_id, "no confident reference event")
        return result

    async def fetch_odds(self, mapping: MappingResult) -> ReferenceOdds | None:
        return await self.reference.fetch_event_odds(mapping.event_id, mapping.home_name, mapping.away_name)
