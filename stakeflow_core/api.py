"""
REST / HTTP API for a StakeFlow engine.

Built on ``aiohttp``.  Exposes the engine's query and command surfaces;
the engine stays the single owner of all state and every command runs
through its non-reentrant entry points.

Endpoints
---------
GET  /health                      Liveness + current tick
GET  /pool                        Pool state and issuance totals
GET  /schedule                    Emission schedule with period boundaries
GET  /position/{account}          Position, pending and previewed reward (?tick=)
GET  /events                      Recent engine events (?limit=, ?type=)
POST /pool/refresh                Catch the pool up   {"tick"?}
POST /stake/deposit               Deposit            {"account", "amount", "tick"?}
POST /stake/withdraw              Withdraw principal {"account", "amount", "tick"?}
POST /stake/withdraw_all          Close position     {"account", "tick"?}
POST /stake/compound              Compound pending   {"account", "tick"?}
POST /stake/emergency_withdraw    Principal only     {"account", "tick"?}
POST /token/approve               Allow custody pull {"account", "amount"}

Amounts and ticks are integers (token units / ticks).  When ``tick`` is
omitted the engine's tick source is used.

``/token/approve`` sets the allowance the engine's custody account may
pull from *account* on deposit; it is only served when a token ledger
is attached.

Errors
------
400  invalid amount, insufficient stake, malformed input
402  custody rejected the token transfer
409  re-entrant call

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header,
  compared with ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(engine, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable

from aiohttp import web

from stakeflow_core.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    ReentrancyError,
    StakingError,
    TransferFailedError,
)
from stakeflow_core.events import IssuanceRecord, RateChange, StakeEvent

if TYPE_CHECKING:
    from stakeflow_core.config import APIConfig
    from stakeflow_core.staking import StakingEngine
    from stakeflow_core.token import TokenLedger

logger = logging.getLogger("stakeflow_api")

_EVENT_TYPES = {
    "stake": StakeEvent,
    "rate_change": RateChange,
    "issuance": IssuanceRecord,
}


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int, rejecting fractions, booleans and junk."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise web.HTTPBadRequest(text=f"{name} must be an integer")
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _optional_tick(value: Any) -> int | None:
    if value is None or value == "":
        return None
    tick = _safe_int(value, "tick")
    if tick < 0:
        raise web.HTTPBadRequest(text="tick must be non-negative")
    return tick


async def _read_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except web.HTTPException:
        raise
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def _require_account(body: dict) -> str:
    account = body.get("account", "")
    if not isinstance(account, str) or not account:
        raise web.HTTPBadRequest(text="account required")
    return account


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST requests."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def build_middlewares(cfg: APIConfig | None) -> list:
    middlewares: list = []
    if cfg is None:
        return middlewares
    if cfg.rate_limit_rpm > 0:
        middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
    if cfg.api_key:
        middlewares.append(_make_api_key_middleware(cfg.api_key))
    return middlewares


class APIServer:
    """Thin aiohttp wrapper around a ``StakingEngine``."""

    def __init__(
        self,
        engine: StakingEngine,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
        token: TokenLedger | None = None,
    ):
        self.engine = engine
        self.token = token
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        max_body = self._api_config.max_body_bytes if self._api_config else 65_536
        app = web.Application(
            middlewares=build_middlewares(self._api_config),
            client_max_size=max_body,
        )
        self._register_routes(app)
        return app

    async def start(self) -> None:
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/pool", self._pool)
        app.router.add_get("/schedule", self._schedule)
        app.router.add_get("/position/{account}", self._position)
        app.router.add_get("/events", self._events)

        app.router.add_post("/pool/refresh", self._refresh)
        app.router.add_post("/stake/deposit", self._deposit)
        app.router.add_post("/stake/withdraw", self._withdraw)
        app.router.add_post("/stake/withdraw_all", self._withdraw_all)
        app.router.add_post("/stake/compound", self._compound)
        app.router.add_post("/stake/emergency_withdraw", self._emergency_withdraw)
        if self.token is not None:
            app.router.add_post("/token/approve", self._approve)

    def _run(self, command: Callable[..., Any], *args: Any) -> Any:
        """Invoke an engine command, mapping engine errors to HTTP errors."""
        try:
            return command(*args)
        except (InvalidAmountError, InsufficientBalanceError) as exc:
            raise web.HTTPBadRequest(text=str(exc)) from exc
        except TransferFailedError as exc:
            raise web.HTTPPaymentRequired(text=str(exc)) from exc
        except ReentrancyError as exc:
            raise web.HTTPConflict(text=str(exc)) from exc
        except StakingError as exc:
            logger.error(f"Engine error: {exc}")
            raise web.HTTPInternalServerError(text="Engine error") from exc
        except ValueError as exc:
            raise web.HTTPBadRequest(text=str(exc)) from exc

    # ── query handlers ───────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        state = self.engine.state
        return web.json_response({
            "ok": True,
            "last_update_tick": state.last_update_tick,
            "current_period": state.current_period,
            "total_staked": state.total_staked,
        })

    async def _pool(self, request: web.Request) -> web.Response:
        tick = _optional_tick(request.query.get("tick"))
        summary = self._run(self.engine.pool_summary, tick)
        return web.json_response(summary, dumps=_json_dumps)

    async def _schedule(self, _request: web.Request) -> web.Response:
        info = self.engine.schedule.to_dict(self.engine.pool.start_tick)
        return web.json_response(info, dumps=_json_dumps)

    async def _position(self, request: web.Request) -> web.Response:
        account = request.match_info["account"]
        tick = _optional_tick(request.query.get("tick"))
        pos = self.engine.position(account)
        result: dict[str, Any] = {"account": account, **pos.to_dict()}
        result["pending"] = self.engine.pending(account)
        try:
            result["preview_pending"] = self.engine.preview_pending(account, tick)
        except ValueError:
            # no tick given and no tick source: committed pending only
            result["preview_pending"] = result["pending"]
        if self.token is not None:
            result["wallet_balance"] = self.token.balance_of(account)
        return web.json_response(result, dumps=_json_dumps)

    async def _events(self, request: web.Request) -> web.Response:
        limit = _safe_int(request.query.get("limit", 100), "limit")
        limit = max(0, min(limit, 1000))
        kind_name = request.query.get("type", "")
        kind = None
        if kind_name:
            kind = _EVENT_TYPES.get(kind_name)
            if kind is None:
                raise web.HTTPBadRequest(
                    text=f"type must be one of: {', '.join(sorted(_EVENT_TYPES))}"
                )
        events = self.engine.events.recent(limit, kind)
        return web.json_response({
            "events": [e.to_dict() for e in events],
            "count": len(events),
            "total_emitted": self.engine.events.total_emitted,
        }, dumps=_json_dumps)

    # ── command handlers ─────────────────────────────────────────

    async def _refresh(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        tick = _optional_tick(body.get("tick"))
        result = self._run(self.engine.refresh, tick)
        return web.json_response({
            "status": "refreshed",
            "staking_reward": result.staking_reward,
            "others_reward": result.others_reward,
            "rate_changes": [c.to_dict() for c in result.rate_changes],
            "pool": self.engine.state.to_dict(),
        }, dumps=_json_dumps)

    async def _deposit(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_account(body)
        amount = _safe_int(body.get("amount", 0), "amount")
        tick = _optional_tick(body.get("tick"))
        pos = self._run(self.engine.deposit, account, amount, tick)
        return web.json_response({
            "status": "deposited",
            "account": account,
            "amount": amount,
            "position": pos.to_dict(),
        }, dumps=_json_dumps)

    async def _withdraw(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_account(body)
        amount = _safe_int(body.get("amount", 0), "amount")
        tick = _optional_tick(body.get("tick"))
        pos = self._run(self.engine.withdraw, account, amount, tick)
        return web.json_response({
            "status": "withdrawn",
            "account": account,
            "amount": amount,
            "position": pos.to_dict(),
        }, dumps=_json_dumps)

    async def _withdraw_all(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_account(body)
        tick = _optional_tick(body.get("tick"))
        payout = self._run(self.engine.withdraw_all, account, tick)
        return web.json_response({
            "status": "closed",
            "account": account,
            "payout": payout,
        }, dumps=_json_dumps)

    async def _compound(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_account(body)
        tick = _optional_tick(body.get("tick"))
        compounded = self._run(self.engine.harvest_and_compound, account, tick)
        return web.json_response({
            "status": "compounded" if compounded else "nothing_pending",
            "account": account,
            "compounded": compounded,
            "position": self.engine.position(account).to_dict(),
        }, dumps=_json_dumps)

    async def _emergency_withdraw(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_account(body)
        tick = _optional_tick(body.get("tick"))
        returned = self._run(self.engine.emergency_withdraw, account, tick)
        logger.warning(f"Emergency withdraw via API for {account}")
        return web.json_response({
            "status": "emergency_withdrawn",
            "account": account,
            "returned": returned,
        }, dumps=_json_dumps)


    async def _approve(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        account = _require_account(body)
        amount = _safe_int(body.get("amount", 0), "amount")
        spender = self.engine.custody.address
        ok, msg = self.token.approve(account, spender, amount)
        if not ok:
            raise web.HTTPBadRequest(text=msg)
        logger.info(f"Allowance for {spender} from {account} set to {amount}")
        return web.json_response({
            "status": "approved",
            "account": account,
            "spender": spender,
            "allowance": self.token.allowance(account, spender),
        }, dumps=_json_dumps)


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)
