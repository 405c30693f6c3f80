import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime

import httpx

from rebalancer.data.http import request_json, retry_async
from rebalancer.domain.models import Fixture
from rebalancer.utils.config_loader import load_http_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FootballConfig:
    base_url: str
    api_key: str
    requests_per_minute: int
    min_interval_seconds: float
    timeout_seconds: float
    retry_attempts: int
    retry_base_delay_seconds: float


def load_football_config(config: dict, api_key: str) -> FootballConfig:
    f = (config.get("football") or {}) if isinstance(config, dict) else {}
    http = load_http_settings(config if isinstance(config, dict) else {})
    return FootballConfig(
        base_url=str(f.get("base_url", "https://v3.football.api-sports.io")),
        api_key=api_key,
        requests_per_minute=int(f.get("requests_per_minute", 450)),
        min_interval_seconds=float(f.get("min_interval_seconds", 0.15)),
        timeout_seconds=http.timeout_seconds,
        retry_attempts=http.retry_attempts,
        retry_base_delay_seconds=http.retry_base_delay_seconds,
    )


class RateLimiter:
    """
    Reservoir of `per_minute` requests refilled every minute, plus a minimum
    spacing between consecutive requests. Callers are served one at a time.
    """

    def __init__(self, per_minute: int, min_interval: float, clock=time.monotonic):
        self.per_minute = max(1, int(per_minute))
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._lock = asyncio.Lock()
        self._window_start = clock()
        self._used = 0
        self._last = float("-inf")

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if now - self._window_start >= 60.0:
                self._window_start = now
                self._used = 0
            if self._used >= self.per_minute:
                wait = 60.0 - (now - self._window_start)
                logger.info(f"Fixture API reservoir empty; waiting {wait:.1f}s")
                await asyncio.sleep(max(0.0, wait))
                self._window_start = self._clock()
                self._used = 0
            gap = self._clock() - self._last
            if gap < self.min_interval:
                await asyncio.sleep(self.min_interval - gap)
            self._last = self._clock()
            self._used += 1


def _parse_kickoff(raw: str) -> datetime:
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


class FootballClient:
    """Fixture metadata from API-Football (`/fixtures?id=...`)."""

    def __init__(self, cfg: FootballConfig, client: httpx.AsyncClient | None = None):
        self.cfg = cfg
        self.client = client or httpx.AsyncClient(timeout=cfg.timeout_seconds)
        self.limiter = RateLimiter(cfg.requests_per_minute, cfg.min_interval_seconds)

    def _headers(self) -> dict[str, str]:
        host = self.cfg.base_url.split("://", 1)[-1].rstrip("/")
        return {"x-apisports-key": self.cfg.api_key, "x-apisports-host": host}

    async def _get(self, path: str, params: dict) -> dict:
        async def _call() -> dict:
            await self.limiter.acquire()
            data = await request_json(
                self.client,
                "GET",
                f"{self.cfg.base_url.rstrip('/')}{path}",
                params=params,
                headers=self._headers(),
            )
            return data

        return await retry_async(
            _call,
            attempts=self.cfg.retry_attempts,
            base_delay=self.cfg.retry_base_delay_seconds,
            label=f"API-Football {path}",
        )

    async def fetch_fixture(self, fixture_id: int) -> Fixture | None:
        data = await self._get("/fixtures", {"id": int(fixture_id)})
        rows = data.get("response") or []
        if not rows:
            logger.warning(f"No fixture found in API-Football for id {fixture_id}")
            return None

        row = rows[0]
        teams = row.get("teams") or {}
        fixture = row.get("fixture") or {}
        goals = row.get("goals") or {}
        kickoff_raw = fixture.get("date")
        if not kickoff_raw:
            logger.warning(f"Fixture {fixture_id} has no kickoff date")
            return None

        return Fixture(
            fixture_id=int(fixture.get("id") or fixture_id),
            home_name=str((teams.get("home") or {}).get("name") or ""),
            away_name=str((teams.get("away") or {}).get("name") or ""),
            kickoff=_parse_kickoff(str(kickoff_raw)),
            status=str((fixture.get("status") or {}).get("short") or ""),
            score=(goals.get("home"), goals.get("away")) if goals else None,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
