"""
REST / HTTP API server for TierStake.

Built on ``aiohttp``; every handler is a thin adapter over the engine's
controller, admin console and query interface.

Endpoints
---------
GET  /health                           Liveness + ledger summary
GET  /status                           Parameters and global stats
GET  /tiers                            All tiers
GET  /tiers/{tier_id}                  One tier
GET  /tiers/{tier_id}/stats            Tier stats (average stake size)
GET  /stats                            Global stats
GET  /users/{address}                  User stats
GET  /users/{address}/stakes           All stakes (``?active=1`` for active only)
GET  /users/{address}/stakes/{index}   Stake details
GET  /users/{address}/tiers/{tier_id}  Active stakes of a user in one tier
GET  /users/{address}/pending          Pending reward (``?index=`` for one stake)
GET  /users/{address}/estimate         ``?days=`` projected reward of active stakes
GET  /users/{address}/can_stake        ``?amount=&tier=`` eligibility dry-run
GET  /projection                       ``?amount=&tier=&days=&premium=``
GET  /audit                            ``?event=&actor=&since=`` committed records
POST /stake                            {"amount", "tier"}
POST /unstake                          {"index"}
POST /claim                            {"index"}
POST /claim_all                        {}
POST /emergency_unstake                {"index"}
POST /auto_compound/toggle             {"index"}
POST /auto_compound/all                {"enabled"}
POST /admin/...                        owner operations (see ``_register_routes``)

Security
--------
- Mutating requests are signed: ``X-Public-Key`` (hex, uncompressed
  secp256k1) and ``X-Signature`` (hex, over the raw body).  The caller is
  the address derived from the key.  Only low-s signatures verify, and
  a given (key, body) pair is accepted once, so clients put a ``nonce``
  in the body.
- Optional API key on POST endpoints via ``X-API-Key``, compared with
  ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).
- Amounts are integer base units, as JSON numbers or decimal strings.

Usage:
    api = APIServer(engine, host="127.0.0.1", port=8080, api_config=cfg.api)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from collections import OrderedDict, defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from tierstake_core.errors import (
    ErrorKind,
    InvalidTier,
    StakeNotFound,
    StakingError,
)
from tierstake_core.events import EventType
from tierstake_core.wallet import derive_address, verify_signature

if TYPE_CHECKING:
    from tierstake_core.config import APIConfig
    from tierstake_core.engine import StakingEngine

logger = logging.getLogger("tierstake_api")

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.ARITHMETIC: 400,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.STATE: 409,
    ErrorKind.CAPACITY: 409,
    ErrorKind.EXTERNAL: 502,
    ErrorKind.INVARIANT: 500,
}

# admin parameter name -> AdminConsole setter
_PARAM_SETTERS = {
    "emergency_fee_bps": "set_emergency_fee",
    "compound_fee_bps": "set_compound_fee",
    "max_stakes_per_user": "set_max_stakes_per_user",
    "claim_cooldown": "set_claim_cooldown",
    "min_compound_amount": "set_min_compound_amount",
    "max_premium_users": "set_max_premium_users",
    "reward_start": "set_reward_start",
}

_MAX_SEEN_REQUESTS = 100_000


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int, rejecting floats, bools and non-numeric input."""
    if isinstance(value, bool) or isinstance(value, float):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _units(value: Any, name: str = "amount") -> int:
    """Base-unit amount from a JSON int or a decimal-digit string."""
    if isinstance(value, str) and not value.isdigit():
        raise web.HTTPBadRequest(text=f"{name} must be a whole number of base units")
    return _safe_int(value, name)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes", "on")
    return bool(value)


def _require(body: dict, *names: str) -> None:
    missing = [n for n in names if n not in body]
    if missing:
        raise web.HTTPBadRequest(text=f"missing field(s): {', '.join(missing)}")


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)


def _ok(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_json_dumps)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Per-IP token-bucket rate limiter."""

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
        bucket[0] = min(float(self._rpm), bucket[0] + (now - bucket[1]) * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        if not bucket.allow(request.remote or "unknown"):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """Require ``X-API-Key`` on POST/PUT/DELETE (header only, never query params)."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """CORS headers for explicitly listed origins; ``*`` is ignored."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = (
                "Content-Type, X-API-Key, X-Public-Key, X-Signature"
            )
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def _make_error_middleware():
    """Turn ledger rejections into JSON responses keyed by error kind."""

    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except StakingError as e:
            if isinstance(e, (StakeNotFound, InvalidTier)):
                status = 404
            else:
                status = _STATUS_BY_KIND.get(e.kind, 400)
            if status >= 500:
                logger.error(f"{request.method} {request.path}: {e.code}: {e.message}")
            else:
                logger.info(f"{request.method} {request.path} rejected: {e.code}")
            return _ok(e.to_dict(), status=status)

    return error_middleware


class APIServer:
    """Thin aiohttp wrapper around a ``StakingEngine``."""

    def __init__(
        self,
        engine: StakingEngine,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.engine = engine
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._seen_requests: OrderedDict[str, None] = OrderedDict()
        self.started_at = time.time()

    @property
    def require_signatures(self) -> bool:
        return self._api_config is None or self._api_config.require_signatures

    # ── lifecycle ────────────────────────────────────────────────

    def make_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536

        if self._api_config is not None:
            cfg = self._api_config
            max_body = cfg.max_body_bytes
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))
        middlewares.append(_make_error_middleware())

        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        r = app.router
        r.add_get("/health", self._health)
        r.add_get("/status", self._status)
        # Queries
        r.add_get("/tiers", self._tiers)
        r.add_get("/tiers/{tier_id}", self._tier)
        r.add_get("/tiers/{tier_id}/stats", self._tier_stats)
        r.add_get("/stats", self._global_stats)
        r.add_get("/users/{address}", self._user_stats)
        r.add_get("/users/{address}/stakes", self._user_stakes)
        r.add_get("/users/{address}/stakes/{index}", self._stake_details)
        r.add_get("/users/{address}/tiers/{tier_id}", self._stakes_by_tier)
        r.add_get("/users/{address}/pending", self._pending)
        r.add_get("/users/{address}/estimate", self._estimate)
        r.add_get("/users/{address}/can_stake", self._can_stake)
        r.add_get("/projection", self._projection)
        r.add_get("/audit", self._audit)
        # User operations
        r.add_post("/stake", self._stake)
        r.add_post("/unstake", self._unstake)
        r.add_post("/claim", self._claim)
        r.add_post("/claim_all", self._claim_all)
        r.add_post("/emergency_unstake", self._emergency_unstake)
        r.add_post("/auto_compound/toggle", self._toggle_auto_compound)
        r.add_post("/auto_compound/all", self._set_auto_compound_all)
        # Owner operations
        r.add_post("/admin/tier/update", self._admin_update_tier)
        r.add_post("/admin/tier/add", self._admin_add_tier)
        r.add_post("/admin/tier/premium_bonus", self._admin_premium_bonus)
        r.add_post("/admin/premium_user", self._admin_premium_user)
        r.add_post("/admin/param", self._admin_param)
        r.add_post("/admin/reward_pool", self._admin_reward_pool)
        r.add_post("/admin/withdraw_rewards", self._admin_withdraw_rewards)
        r.add_post("/admin/pause", self._admin_pause)
        r.add_post("/admin/unpause", self._admin_unpause)
        r.add_post("/admin/ownership/transfer", self._admin_transfer_ownership)
        r.add_post("/admin/ownership/accept", self._admin_accept_ownership)
        r.add_post("/admin/log_level", self._admin_log_level)

    # ── request authentication ───────────────────────────────────

    async def _authenticate(self, request: web.Request) -> tuple[str, dict]:
        """Returns ``(caller_address, body)`` for a signed POST."""
        raw = await request.read()
        try:
            body = json.loads(raw) if raw else {}
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="JSON body must be an object")

        if not self.require_signatures:
            caller = body.get("caller", "")
            if not isinstance(caller, str) or not caller:
                raise web.HTTPBadRequest(text="caller required")
            return caller, body

        pub_hex = request.headers.get("X-Public-Key", "")
        sig_hex = request.headers.get("X-Signature", "")
        if not pub_hex or not sig_hex:
            raise web.HTTPUnauthorized(text="X-Public-Key and X-Signature required")
        try:
            pub, sig = bytes.fromhex(pub_hex), bytes.fromhex(sig_hex)
        except ValueError:
            raise web.HTTPUnauthorized(text="Malformed signature headers")
        if not verify_signature(pub, raw, sig):
            raise web.HTTPUnauthorized(text="Invalid signature")
        request_id = hashlib.sha256(pub + raw).hexdigest()
        if request_id in self._seen_requests:
            raise web.HTTPConflict(text="Replayed request")
        self._seen_requests[request_id] = None
        if len(self._seen_requests) > _MAX_SEEN_REQUESTS:
            self._seen_requests.popitem(last=False)
        return derive_address(pub), body

    # ── health / status ──────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        with self.engine.boundary.read() as state:
            body = {
                "ok": True,
                "paused": state.params.paused,
                "tiers": state.tiers.total_tiers,
                "stakes": len(state.ledger.stakes),
                "last_time": state.last_time,
            }
        body["uptime"] = int(time.time() - self.started_at)
        return _ok(body)

    async def _status(self, _request: web.Request) -> web.Response:
        return _ok(self.engine.status())

    # ── queries ──────────────────────────────────────────────────

    async def _tiers(self, _request: web.Request) -> web.Response:
        return _ok({"tiers": [t.to_dict() for t in self.engine.queries.list_tiers()]})

    async def _tier(self, request: web.Request) -> web.Response:
        tier_id = _safe_int(request.match_info["tier_id"], "tier_id")
        return _ok(self.engine.queries.get_tier(tier_id).to_dict())

    async def _tier_stats(self, request: web.Request) -> web.Response:
        tier_id = _safe_int(request.match_info["tier_id"], "tier_id")
        return _ok(self.engine.queries.get_tier_stats(tier_id))

    async def _global_stats(self, _request: web.Request) -> web.Response:
        return _ok(self.engine.queries.get_global_stats())

    async def _user_stats(self, request: web.Request) -> web.Response:
        return _ok(self.engine.queries.get_user_stats(request.match_info["address"]))

    async def _user_stakes(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        q = self.engine.queries
        if _flag(request.query.get("active", "")):
            stakes, indices = q.get_user_active_stakes(address)
            return _ok({"address": address, "indices": indices,
                        "stakes": [s.to_dict() for s in stakes]})
        return _ok({"address": address,
                    "stakes": [s.to_dict() for s in q.get_user_stakes(address)]})

    async def _stake_details(self, request: web.Request) -> web.Response:
        index = _safe_int(request.match_info["index"], "index")
        return _ok(self.engine.queries.get_stake_details(request.match_info["address"], index))

    async def _stakes_by_tier(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        tier_id = _safe_int(request.match_info["tier_id"], "tier_id")
        indices, amounts = self.engine.queries.get_stakes_by_tier(address, tier_id)
        return _ok({"address": address, "tier": tier_id,
                    "indices": indices, "amounts": amounts})

    async def _pending(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        q = self.engine.queries
        if "index" in request.query:
            index = _safe_int(request.query["index"], "index")
            return _ok({"address": address, "index": index,
                        "pending_reward": q.pending_reward(address, index),
                        "time_until_unlock": q.time_until_unlock(address, index)})
        return _ok({"address": address, "pending_reward": q.total_pending_rewards(address)})

    async def _estimate(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        days = _safe_int(request.query.get("days", "30"), "days")
        if days < 0:
            raise web.HTTPBadRequest(text="days must be non-negative")
        return _ok({"address": address, "days": days,
                    "estimate": self.engine.queries.estimate_rewards_for_period(address, days)})

    async def _can_stake(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        amount = _units(request.query.get("amount", "0"))
        tier_id = _safe_int(request.query.get("tier", "0"), "tier")
        ok, reason = self.engine.queries.can_user_stake(address, amount, tier_id)
        return _ok({"address": address, "can_stake": ok, "reason": reason})

    async def _projection(self, request: web.Request) -> web.Response:
        amount = _units(request.query.get("amount", "0"))
        tier_id = _safe_int(request.query.get("tier", "0"), "tier")
        days = _safe_int(request.query.get("days", "365"), "days")
        premium = _flag(request.query.get("premium", ""))
        if days < 0:
            raise web.HTTPBadRequest(text="days must be non-negative")
        reward = self.engine.queries.projected_reward(amount, tier_id, days, premium)
        return _ok({"amount": amount, "tier": tier_id, "days": days,
                    "premium": premium, "reward": reward})

    async def _audit(self, request: web.Request) -> web.Response:
        event_type = None
        if name := request.query.get("event"):
            try:
                event_type = EventType(name)
            except ValueError:
                raise web.HTTPBadRequest(text=f"unknown event type {name!r}")
        since = _safe_int(request.query.get("since", "0"), "since")
        events = self.engine.audit.filter(event_type, request.query.get("actor"), since)
        return _ok({"events": [e.to_dict() for e in events]})

    # ── user operations ──────────────────────────────────────────

    async def _stake(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "amount", "tier")
        stake = self.engine.controller.stake(
            caller, _units(body["amount"]), _safe_int(body["tier"], "tier"),
        )
        return _ok({"status": "staked", "stake": stake.to_dict()})

    async def _unstake(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "index")
        result = self.engine.controller.unstake(caller, _safe_int(body["index"], "index"))
        return _ok({"status": "unstaked", **result.to_dict()})

    async def _claim(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "index")
        result = self.engine.controller.claim(caller, _safe_int(body["index"], "index"))
        return _ok({"status": "claimed", **result.to_dict()})

    async def _claim_all(self, request: web.Request) -> web.Response:
        caller, _body = await self._authenticate(request)
        result = self.engine.controller.claim_all(caller)
        return _ok({"status": "claimed", **result.to_dict()})

    async def _emergency_unstake(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "index")
        result = self.engine.controller.emergency_unstake(caller, _safe_int(body["index"], "index"))
        return _ok({"status": "emergency_unstaked", **result.to_dict()})

    async def _toggle_auto_compound(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "index")
        index = _safe_int(body["index"], "index")
        enabled = self.engine.controller.toggle_auto_compound(caller, index)
        return _ok({"index": index, "auto_compound": enabled})

    async def _set_auto_compound_all(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "enabled")
        changed = self.engine.controller.set_auto_compound_all(caller, _flag(body["enabled"]))
        return _ok({"auto_compound": _flag(body["enabled"]), "changed": changed})

    # ── owner operations ─────────────────────────────────────────

    async def _admin_update_tier(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "tier", "lock_duration", "reward_rate", "min_stake",
                 "max_stake", "tier_cap", "name")
        tier = self.engine.admin.update_tier(
            caller,
            _safe_int(body["tier"], "tier"),
            _safe_int(body["lock_duration"], "lock_duration"),
            _safe_int(body["reward_rate"], "reward_rate"),
            _units(body["min_stake"], "min_stake"),
            _units(body["max_stake"], "max_stake"),
            _units(body["tier_cap"], "tier_cap"),
            _flag(body.get("active", True)),
            str(body["name"]),
        )
        return _ok(tier.to_dict())

    async def _admin_add_tier(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "lock_duration", "reward_rate", "min_stake", "max_stake",
                 "tier_cap", "name")
        tier = self.engine.admin.add_tier(
            caller,
            _safe_int(body["lock_duration"], "lock_duration"),
            _safe_int(body["reward_rate"], "reward_rate"),
            _units(body["min_stake"], "min_stake"),
            _units(body["max_stake"], "max_stake"),
            _units(body["tier_cap"], "tier_cap"),
            str(body["name"]),
            premium_bonus=_safe_int(body.get("premium_bonus", 0), "premium_bonus"),
        )
        return _ok(tier.to_dict(), status=201)

    async def _admin_premium_bonus(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "tier", "bonus")
        tier = self.engine.admin.set_premium_bonus(
            caller, _safe_int(body["tier"], "tier"), _safe_int(body["bonus"], "bonus"),
        )
        return _ok(tier.to_dict())

    async def _admin_premium_user(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "user", "premium")
        changed = self.engine.admin.set_premium_user(
            caller, str(body["user"]), _flag(body["premium"]),
        )
        return _ok({"user": body["user"], "premium": _flag(body["premium"]), "changed": changed})

    async def _admin_param(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "name", "value")
        setter = _PARAM_SETTERS.get(body["name"])
        if setter is None:
            raise web.HTTPBadRequest(text=f"unknown parameter {body['name']!r}")
        value = _units(body["value"], body["name"])
        getattr(self.engine.admin, setter)(caller, value)
        return _ok({"name": body["name"], "value": value})

    async def _admin_reward_pool(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "amount", "duration")
        rate = self.engine.admin.set_reward_pool(
            caller, _units(body["amount"]), _safe_int(body["duration"], "duration"),
        )
        return _ok({"reward_per_second": rate})

    async def _admin_withdraw_rewards(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "amount")
        amount = _units(body["amount"])
        self.engine.admin.emergency_withdraw_rewards(caller, amount)
        return _ok({"status": "withdrawn", "amount": amount})

    async def _admin_pause(self, request: web.Request) -> web.Response:
        caller, _body = await self._authenticate(request)
        self.engine.admin.pause(caller)
        return _ok({"paused": True})

    async def _admin_unpause(self, request: web.Request) -> web.Response:
        caller, _body = await self._authenticate(request)
        self.engine.admin.unpause(caller)
        return _ok({"paused": False})

    async def _admin_transfer_ownership(self, request: web.Request) -> web.Response:
        caller, body = await self._authenticate(request)
        _require(body, "new_owner")
        self.engine.admin.transfer_ownership(caller, str(body["new_owner"]))
        return _ok({"pending_owner": body["new_owner"]})

    async def _admin_accept_ownership(self, request: web.Request) -> web.Response:
        caller, _body = await self._authenticate(request)
        self.engine.admin.accept_ownership(caller)
        return _ok({"owner": caller})

    async def _admin_log_level(self, request: web.Request) -> web.Response:
        """POST /admin/log_level — change logging level at runtime (owner only)."""
        caller, body = await self._authenticate(request)
        if caller != self.engine.owner:
            raise web.HTTPForbidden(text="owner only")
        level = str(body.get("level", "INFO")).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if level not in valid_levels:
            raise web.HTTPBadRequest(text=f"Invalid level. Use one of: {sorted(valid_levels)}")
        logging.getLogger().setLevel(getattr(logging, level))
        logger.warning(f"Log level set to {level} by {caller}")
        return _ok({"status": "ok", "level": level})
