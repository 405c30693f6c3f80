import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import httpx

from rebalancer.data.fuzzy import ratio
from rebalancer.data.http import check_response, request_json, retry_async
from rebalancer.domain.errors import TransientNetwork
from rebalancer.domain.models import ReferenceEvent, ReferenceOdds
from rebalancer.utils.config_loader import load_http_settings

logger = logging.getLogger(__name__)

MATCH_ODDS_MARKET_NAMES = ("Match Odds", "Full Time Result", "Moneyline")
_USER_AGENT = "amm-rebalancer/1.0"


@dataclass(frozen=True)
class MatchbookConfig:
    base_url: str
    username: str
    password: str
    sport_id: int
    per_page: int
    price_depth: int
    session_ttl_seconds: float
    timeout_seconds: float
    retry_attempts: int
    retry_base_delay_seconds: float


def load_matchbook_config(config: dict, username: str, password: str) -> MatchbookConfig:
    m = (config.get("matchbook") or {}) if isinstance(config, dict) else {}
    http = load_http_settings(config if isinstance(config, dict) else {})
    return MatchbookConfig(
        base_url=str(m.get("base_url", "https://api.matchbook.com")),
        username=username,
        password=password,
        sport_id=int(m.get("sport_id", 15)),
        per_page=int(m.get("per_page", 100)),
        price_depth=int(m.get("price_depth", 3)),
        session_ttl_seconds=float(m.get("session_ttl_seconds", 5.5 * 3600)),
        timeout_seconds=http.timeout_seconds,
        retry_attempts=http.retry_attempts,
        retry_base_delay_seconds=http.retry_base_delay_seconds,
    )


class MatchbookSession:
    """
    Owns the Matchbook session token and knows when it expires.

    The token is fetched lazily and refreshed once it is older than `ttl_seconds`
    or after the API rejects it (see `invalidate`).
    """

    def __init__(self, client: httpx.AsyncClient, cfg: MatchbookConfig, clock=time.monotonic):
        self.client = client
        self.cfg = cfg
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0

    @property
    def is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def _login(self) -> str:
        logger.info("Authenticating with Matchbook API...")
        data = await request_json(
            self.client,
            "POST",
            f"{self.cfg.base_url.rstrip('/')}/bpapi/rest/security/session",
            json={"username": self.cfg.username, "password": self.cfg.password},
            headers={"accept": "application/json", "content-type": "application/json", "User-Agent": _USER_AGENT},
        )
        token = data.get("session-token")
        if not token:
            raise RuntimeError("Matchbook login failed: session-token not found in response")
        self._token = str(token)
        self._expires_at = self._clock() + self.cfg.session_ttl_seconds
        logger.info("Authenticated with Matchbook")
        return self._token

    async def token(self) -> str:
        if self.is_valid:
            return self._token  # type: ignore[return-value]
        return await self._login()


def _best_back_price(runner: dict) -> Decimal | None:
    backs = [p for p in (runner.get("prices") or []) if p.get("side") == "back" and p.get("decimal-odds") is not None]
    if not backs:
        return None
    return max(Decimal(str(p["decimal-odds"])) for p in backs)


def extract_three_way_odds(event: dict, home_name: str, away_name: str) -> ReferenceOdds | None:
    """
    Pull (home, draw, away) decimal odds out of a Matchbook event payload.

    The draw runner is found by name; the two remaining runners are assigned to
    home and away by fuzzy similarity to the fixture's team names.
    """
    event_id = event.get("id")
    markets = event.get("markets") or []
    market = next((m for m in markets if m.get("name") in MATCH_ODDS_MARKET_NAMES), None)
    if market is None:
        logger.warning(f"No match-odds market found for event {event_id}")
        return None

    runners = list(market.get("runners") or [])
    if len(runners) != 3:
        logger.warning(f"Market '{market.get('name')}' for event {event_id} does not have exactly 3 runners")
        return None

    draw_idx = next((i for i, r in enumerate(runners) if "DRAW" in str(r.get("name", "")).upper()), None)
    if draw_idx is None:
        logger.warning(f"No draw runner in market '{market.get('name')}' for event {event_id}")
        return None
    draw_runner = runners.pop(draw_idx)

    # Score both pairings together; look-alike names ("Man City", "Manchester United")
    # must never map both teams onto the same runner.
    first, second = (str(r.get("name", "")) for r in runners)
    straight = ratio(first, home_name) + ratio(second, away_name)
    swapped = ratio(second, home_name) + ratio(first, away_name)
    home_runner, away_runner = runners if straight >= swapped else runners[::-1]

    home = _best_back_price(home_runner)
    draw = _best_back_price(draw_runner)
    away = _best_back_price(away_runner)
    if home is None or draw is None or away is None:
        logger.warning(f"Event {event_id}: one or more runners has no back price")
        return None
    return ReferenceOdds((home, draw, away))


class MatchbookClient:
    """Reference odds from the Matchbook exchange."""

    def __init__(
        self,
        cfg: MatchbookConfig,
        client: httpx.AsyncClient | None = None,
        session: MatchbookSession | None = None,
    ):
        self.cfg = cfg
        self.client = client or httpx.AsyncClient(timeout=cfg.timeout_seconds)
        self.session = session or MatchbookSession(self.client, cfg)

    async def _get(self, path: str, params: dict) -> dict:
        url = f"{self.cfg.base_url.rstrip('/')}{path}"

        async def _call() -> dict:
            token = await self.session.token()
            headers = {"session-token": token, "accept": "application/json", "User-Agent": _USER_AGENT}
            try:
                resp = await self.client.get(url, params=params, headers=headers)
            except httpx.TransportError as e:
                raise TransientNetwork(f"GET {path} transport error: {type(e).__name__}: {e}") from e
            if resp.status_code == 401:
                # Expired server-side before our TTL; log in again on the retry.
                self.session.invalidate()
                raise TransientNetwork(f"GET {path} session rejected")
            check_response(resp)
            return resp.json()

        return await retry_async(
            _call,
            attempts=self.cfg.retry_attempts,
            base_delay=self.cfg.retry_base_delay_seconds,
            label=f"Matchbook {path}",
        )

    async def list_upcoming_events(self, after: datetime, before: datetime) -> list[ReferenceEvent]:
        params = {
            "sport-ids": self.cfg.sport_id,
            "per-page": self.cfg.per_page,
            "after": int(after.timestamp()),
            "before": int(before.timestamp()),
        }
        data = await self._get("/edge/rest/events", params)
        events = []
        for e in data.get("events") or []:
            if e.get("id") is None or not e.get("name"):
                continue
            start = None
            if e.get("start"):
                try:
                    start = datetime.fromisoformat(str(e["start"]).replace("Z", "+00:00"))
                except ValueError:
                    start = None
            events.append(ReferenceEvent(event_id=int(e["id"]), name=str(e["name"]), start=start))
        logger.info(
            f"Fetched {len(events)} Matchbook events between "
            f"{after.astimezone(timezone.utc).isoformat()} and {before.astimezone(timezone.utc).isoformat()}"
        )
        return events

    async def fetch_event_odds(self, event_id: int, home_name: str, away_name: str) -> ReferenceOdds | None:
        params = {"include-prices": "true", "odds-type": "DECIMAL", "price-depth": self.cfg.price_depth}
        event = await self._get(f"/edge/rest/events/{int(event_id)}", params)
        if not event or not event.get("markets"):
            logger.warning(f"Matchbook event {event_id} returned no markets")
            return None
        return extract_three_way_odds(event, home_name, away_name)

    async def aclose(self) -> None:
        await self.client.aclose()
