# =============================================================================
# Rate Limit Manager: shared provider budget with a priority queue
# =============================================================================
#
# Every LLM call in the process goes through one RateLimitManager. It owns
# the only cross-session mutable state in the system:
#   - fixed-window counters (requests/minute, tokens/minute, requests/day)
#   - per-user daily allowances
#   - the queue of requests waiting for budget
#
# DISPATCH RULES:
# 1. A request runs immediately only if nothing is queued and every budget
#    (concurrency, minute, tokens, day) allows it.
# 2. Otherwise it is queued. The queue is served by effective priority
#    (high > medium > low), then by arrival order (FIFO within a tier).
# 3. Starvation bound: each time a queued request is overtaken by a later
#    arrival, its bypass count grows. After `starvation_bound` bypasses it
#    is promoted one tier, so a low request waits behind at most
#    2 × starvation_bound overtakes.
# 4. A queued request not granted within max_wait_time is removed and fails
#    with QueueTimeout. It is never dispatched late.
#
# RETRIES: provider 429s (RateLimited) release the slot, wait Retry-After if
# the provider sent one or else min(base · 2^attempt, cap), and re-acquire a
# slot through the same rules. 5xx (ServiceOverloaded) uses the same loop
# with the delay multiplied by overload_backoff_multiplier. Each retry spends
# budget like any other request.
#
# CONCURRENCY: all mutation happens under a single asyncio.Lock. A dispatcher
# coroutine grants queued requests whenever a slot is released or a window
# rolls over; it exits when the queue drains.
# =============================================================================

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import logging
import math
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Literal, TypeVar

from app.config import settings
from app.models.domain import RateLimitStatus, WindowUsage
from app.services.errors import (
    QueueTimeout,
    RateLimited,
    ServiceOverloaded,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Priority = Literal["high", "medium", "low"]

PRIORITY_RANK: dict[str, int] = {"high": 0, "medium": 1, "low": 2}
_RANK_NAMES = {rank: name for name, rank in PRIORITY_RANK.items()}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitConfig:
    """Budget, queue and retry parameters for one RateLimitManager."""

    requests_per_minute: int = 3
    tokens_per_minute: int = 15000
    requests_per_day: int = 12000
    per_user_daily_limit: int | None = None  # None → requests_per_day // 10
    max_concurrent_requests: int = 2
    max_queue_size: int = 50
    starvation_bound: int = 5
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 30.0
    overload_backoff_multiplier: float = 4.0
    minute_window_seconds: float = 60.0
    day_window_seconds: float = 24 * 60 * 60.0

    @classmethod
    def from_settings(cls) -> RateLimitConfig:
        return cls(
            requests_per_minute=settings.rate_limit_rpm,
            tokens_per_minute=settings.rate_limit_tpm,
            requests_per_day=settings.rate_limit_rpd,
            per_user_daily_limit=settings.rate_limit_per_user_daily,
            max_concurrent_requests=settings.rate_limit_max_concurrent,
            max_queue_size=settings.rate_limit_max_queue_size,
            starvation_bound=settings.rate_limit_starvation_bound,
            max_retries=settings.rate_limit_max_retries,
            backoff_base_seconds=settings.rate_limit_backoff_base_seconds,
            backoff_cap_seconds=settings.rate_limit_backoff_cap_seconds,
            overload_backoff_multiplier=settings.rate_limit_overload_multiplier,
        )

    @property
    def user_daily_limit(self) -> int:
        if self.per_user_daily_limit is not None:
            return self.per_user_daily_limit
        return max(1, self.requests_per_day // 10)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff for retry `attempt` (0-based): min(base·2^k, cap)."""
    return min(base * (2 ** attempt), cap)


# ---------------------------------------------------------------------------
# Internal State
# ---------------------------------------------------------------------------


@dataclass
class _Window:
    """A fixed window whose counters reset once `length` seconds elapse."""

    length: float
    started_at: float
    requests: int = 0
    tokens: int = 0

    def expired(self, now: float) -> bool:
        return now - self.started_at >= self.length

    def roll(self, now: float) -> bool:
        if not self.expired(now):
            return False
        self.started_at = now
        self.requests = 0
        self.tokens = 0
        return True

    def resets_in(self, now: float) -> float:
        return max(0.0, self.started_at + self.length - now)


@dataclass
class _UserUsage:
    day_started: float
    requests_today: int = 0
    tokens_used: int = 0
    last_request_at: float = 0.0


@dataclass
class _QueuedRequest:
    id: str
    user_id: str
    priority: str
    rank: int
    seq: int
    estimated_tokens: int
    enqueued_at: float
    grant: asyncio.Future
    bypassed: int = 0

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.rank, self.seq)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class RateLimitManager:
    """
    Arbitrates a scarce provider request budget across users and sessions.

    Construct once per process (see get_rate_limit_manager) and pass the
    handle to anything that calls the provider.
    """

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        self.config = config or RateLimitConfig.from_settings()
        now = time.monotonic()
        self._minute = _Window(self.config.minute_window_seconds, now)
        self._day = _Window(self.config.day_window_seconds, now)
        self._users: dict[str, _UserUsage] = {}
        self._queue: list[_QueuedRequest] = []
        self._seq = itertools.count()
        self._active = 0
        self._circuit_open = False
        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._dispatcher: asyncio.Task | None = None

        logger.info(
            "Initialized RateLimitManager (rpm=%d, tpm=%d, rpd=%d, "
            "concurrency=%d, queue=%d)",
            self.config.requests_per_minute,
            self.config.tokens_per_minute,
            self.config.requests_per_day,
            self.config.max_concurrent_requests,
            self.config.max_queue_size,
        )

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def execute_with_rate_limit(
        self,
        user_id: str,
        task: Callable[[], Awaitable[T]],
        *,
        priority: Priority = "medium",
        estimated_tokens: int = 2000,
        max_wait_time: float | None = None,
    ) -> T:
        """
        Run `task` once budget allows, retrying provider 429/5xx responses.

        Args:
            user_id: Caller identity for per-user daily allowances and
                queue-position lookups.
            task: Zero-argument coroutine factory issuing ONE provider call.
                Called again on every retry.
            priority: "high", "medium" or "low".
            estimated_tokens: Tokens charged against the per-minute budget.
            max_wait_time: Seconds a queued attempt may wait for a slot
                (default settings.rate_limit_default_max_wait_seconds).

        Raises:
            RateLimited: Daily allowance spent, or the provider kept
                answering 429 after max_retries retries.
            ServiceOverloaded: Queue full, circuit breaker open, or the
                provider kept answering 5xx.
            QueueTimeout: Waited longer than max_wait_time in the queue.
        """
        if priority not in PRIORITY_RANK:
            raise ValueError(
                f"Unknown priority '{priority}'. "
                f"Supported: {sorted(PRIORITY_RANK)}"
            )
        wait = (
            max_wait_time if max_wait_time is not None
            else settings.rate_limit_default_max_wait_seconds
        )

        attempt = 0
        while True:
            await self._acquire(user_id, priority, estimated_tokens, wait)
            try:
                return await task()
            except (RateLimited, ServiceOverloaded) as exc:
                if attempt >= self.config.max_retries:
                    raise self._retries_exhausted(exc, attempt) from exc
                delay = self._retry_delay(exc, attempt)
                logger.warning(
                    "Provider %s for user %s, retry %d/%d in %.2fs",
                    exc.code, user_id, attempt + 1, self.config.max_retries, delay,
                )
            finally:
                await self._release()

            await asyncio.sleep(delay)
            attempt += 1

    def get_rate_limit_status(self) -> RateLimitStatus:
        """Read-only snapshot of budgets, queue and recommendations."""
        now = time.monotonic()
        cfg = self.config
        minute_requests = 0 if self._minute.expired(now) else self._minute.requests
        minute_tokens = 0 if self._minute.expired(now) else self._minute.tokens
        day_requests = 0 if self._day.expired(now) else self._day.requests

        status = RateLimitStatus(
            requests_per_minute=_usage(minute_requests, cfg.requests_per_minute),
            tokens_per_minute=_usage(minute_tokens, cfg.tokens_per_minute),
            requests_per_day=_usage(day_requests, cfg.requests_per_day),
            queue_length=len(self._queue),
            active_requests=self._active,
            estimated_wait_time_ms=self._estimated_wait_ms(now),
            circuit_breaker_open=self._circuit_open,
        )
        status.recommendations = _recommendations(status)
        return status

    def get_queue_position(self, user_id: str) -> int:
        """1-based position of the user's first queued request, or -1."""
        ordered = sorted(self._queue, key=lambda e: e.sort_key)
        for position, entry in enumerate(ordered, 1):
            if entry.user_id == user_id:
                return position
        return -1

    def update_config(self, **changes) -> None:
        """Replace config fields, e.g. after upgrading the provider tier."""
        self.config = dataclasses.replace(self.config, **changes)
        self._minute.length = self.config.minute_window_seconds
        self._day.length = self.config.day_window_seconds
        self._wakeup.set()
        logger.info("Rate limit config updated: %s", changes)

    def set_circuit_breaker(self, enabled: bool) -> None:
        """While open, requests that would have to queue are rejected."""
        self._circuit_open = enabled
        logger.warning("Circuit breaker %s", "opened" if enabled else "closed")

    def cleanup_usage(self) -> int:
        """Drop per-user usage idle for more than a day window. Returns count."""
        cutoff = time.monotonic() - self.config.day_window_seconds
        stale = [u for u, usage in self._users.items() if usage.last_request_at < cutoff]
        for user_id in stale:
            del self._users[user_id]
        return len(stale)

    async def shutdown(self) -> None:
        """Stop the dispatcher and fail every queued request."""
        async with self._lock:
            for entry in self._queue:
                if not entry.grant.done():
                    entry.grant.set_exception(
                        ServiceOverloaded("Rate limiter shutting down.")
                    )
            self._queue.clear()
            dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is not None:
            dispatcher.cancel()

    # -----------------------------------------------------------------------
    # Slot acquisition / release
    # -----------------------------------------------------------------------

    async def _acquire(
        self,
        user_id: str,
        priority: str,
        estimated_tokens: int,
        max_wait_time: float,
    ) -> None:
        async with self._lock:
            now = time.monotonic()
            self._roll_windows(now)
            self._check_user_allowance(user_id, now)

            if not self._queue and self._has_budget(estimated_tokens):
                self._reserve(user_id, estimated_tokens, now)
                return

            if self._circuit_open or len(self._queue) >= self.config.max_queue_size:
                raise ServiceOverloaded()

            entry = _QueuedRequest(
                id=uuid.uuid4().hex[:9],
                user_id=user_id,
                priority=priority,
                rank=PRIORITY_RANK[priority],
                seq=next(self._seq),
                estimated_tokens=estimated_tokens,
                enqueued_at=now,
                grant=asyncio.get_running_loop().create_future(),
            )
            self._queue.append(entry)
            logger.info(
                "Queued request %s (user=%s, priority=%s, queue_length=%d)",
                entry.id, user_id, priority, len(self._queue),
            )
            self._ensure_dispatcher()
            self._wakeup.set()

        try:
            await asyncio.wait_for(asyncio.shield(entry.grant), timeout=max_wait_time)
        except asyncio.TimeoutError:
            async with self._lock:
                if entry.grant.done() and not entry.grant.cancelled():
                    # Granted while the timeout fired: the slot is ours
                    entry.grant.result()
                    return
                self._discard(entry)
            logger.warning(
                "Request %s (user=%s) timed out after %.1fs in queue",
                entry.id, user_id, max_wait_time,
            )
            raise QueueTimeout(
                f"Request waited more than {max_wait_time:.0f}s in the queue."
            ) from None
        except asyncio.CancelledError:
            async with self._lock:
                if entry.grant.done() and not entry.grant.cancelled() \
                        and entry.grant.exception() is None:
                    self._active -= 1
                    self._wakeup.set()
                else:
                    self._discard(entry)
            raise

    async def _release(self) -> None:
        async with self._lock:
            self._active = max(0, self._active - 1)
            self._wakeup.set()

    def _discard(self, entry: _QueuedRequest) -> None:
        if entry in self._queue:
            self._queue.remove(entry)
        if not entry.grant.done():
            entry.grant.cancel()

    # -----------------------------------------------------------------------
    # Dispatcher
    # -----------------------------------------------------------------------

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.get_running_loop().create_task(
                self._dispatch_loop()
            )

    async def _dispatch_loop(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                self._roll_windows(now)
                self._grant_ready(now)
                if not self._queue:
                    self._dispatcher = None
                    return
                timeout = self._next_capacity_in(now)
                self._wakeup.clear()

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    def _grant_ready(self, now: float) -> None:
        """Grant queued requests in priority order while budget remains."""
        while self._queue:
            entry = min(self._queue, key=lambda e: e.sort_key)
            if not self._has_budget(entry.estimated_tokens):
                return

            self._queue.remove(entry)
            self._account_overtakes(entry)
            self._reserve(entry.user_id, entry.estimated_tokens, now)
            entry.grant.set_result(None)
            logger.info(
                "Dispatched request %s (user=%s, priority=%s, waited=%.2fs)",
                entry.id, entry.user_id, entry.priority, now - entry.enqueued_at,
            )

    def _account_overtakes(self, dispatched: _QueuedRequest) -> None:
        """Bump bypass counts of earlier arrivals and promote starved ones."""
        bound = self.config.starvation_bound
        for waiting in self._queue:
            if waiting.seq > dispatched.seq:
                continue
            waiting.bypassed += 1
            if bound > 0 and waiting.bypassed >= bound and waiting.rank > 0:
                waiting.rank -= 1
                waiting.bypassed = 0
                logger.info(
                    "Promoted starved request %s (user=%s) to %s priority",
                    waiting.id, waiting.user_id, _RANK_NAMES[waiting.rank],
                )

    def _next_capacity_in(self, now: float) -> float | None:
        """Seconds until a window rollover could free budget, or None."""
        waits = []
        cfg = self.config
        if self._minute.requests >= cfg.requests_per_minute or (
            self._minute.tokens > 0
            and self._minute.tokens >= cfg.tokens_per_minute
        ) or self._queue_blocked_on_tokens():
            waits.append(self._minute.resets_in(now))
        if self._day.requests >= cfg.requests_per_day:
            waits.append(self._day.resets_in(now))
        if not waits:
            return None  # Only concurrency is exhausted: wait for a release
        return max(min(waits), 0.001)

    def _queue_blocked_on_tokens(self) -> bool:
        if not self._queue:
            return False
        head = min(self._queue, key=lambda e: e.sort_key)
        return not self._fits_tokens(head.estimated_tokens)

    # -----------------------------------------------------------------------
    # Budget accounting
    # -----------------------------------------------------------------------

    def _roll_windows(self, now: float) -> None:
        if self._minute.roll(now):
            logger.debug("Minute window rolled over")
        self._day.roll(now)

    def _fits_tokens(self, estimated_tokens: int) -> bool:
        # The first request of a window always fits, however large
        return (
            self._minute.tokens == 0
            or self._minute.tokens + estimated_tokens <= self.config.tokens_per_minute
        )

    def _has_budget(self, estimated_tokens: int) -> bool:
        cfg = self.config
        return (
            self._active < cfg.max_concurrent_requests
            and self._minute.requests < cfg.requests_per_minute
            and self._day.requests < cfg.requests_per_day
            and self._fits_tokens(estimated_tokens)
        )

    def _reserve(self, user_id: str, estimated_tokens: int, now: float) -> None:
        self._minute.requests += 1
        self._minute.tokens += estimated_tokens
        self._day.requests += 1
        self._active += 1

        usage = self._users.get(user_id)
        if usage is None:
            usage = self._users[user_id] = _UserUsage(day_started=now)
        usage.requests_today += 1
        usage.tokens_used += estimated_tokens
        usage.last_request_at = now

    def _check_user_allowance(self, user_id: str, now: float) -> None:
        usage = self._users.get(user_id)
        if usage is None:
            return
        if now - usage.day_started >= self.config.day_window_seconds:
            usage.day_started = now
            usage.requests_today = 0
            usage.tokens_used = 0
        if usage.requests_today >= self.config.user_daily_limit:
            raise RateLimited(
                "Daily rate limit exceeded. Please try again tomorrow.",
                retry_after=self.config.day_window_seconds - (now - usage.day_started),
            )

    # -----------------------------------------------------------------------
    # Retry policy
    # -----------------------------------------------------------------------

    def _retry_delay(self, exc: Exception, attempt: int) -> float:
        cfg = self.config
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            return max(0.0, exc.retry_after)
        delay = backoff_delay(attempt, cfg.backoff_base_seconds, cfg.backoff_cap_seconds)
        if isinstance(exc, ServiceOverloaded):
            delay = min(delay * cfg.overload_backoff_multiplier, cfg.backoff_cap_seconds)
        return delay

    def _retries_exhausted(self, exc: Exception, attempt: int) -> Exception:
        cfg = self.config
        suggested = backoff_delay(
            attempt + 1, cfg.backoff_base_seconds, cfg.backoff_cap_seconds,
        )
        if isinstance(exc, RateLimited):
            return RateLimited(
                f"Provider rate limit persisted after {attempt} retries.",
                retry_after=exc.retry_after or suggested,
            )
        return ServiceOverloaded(
            f"Provider unavailable after {attempt} retries.",
            retry_after=exc.retry_after or suggested,
        )

    # -----------------------------------------------------------------------
    # Introspection helpers
    # -----------------------------------------------------------------------

    def _estimated_wait_ms(self, now: float) -> int:
        if not self._queue:
            return 0
        per_request = self.config.minute_window_seconds / max(
            self.config.requests_per_minute, 1,
        )
        wait = len(self._queue) * per_request
        if self._minute.requests >= self.config.requests_per_minute:
            wait += self._minute.resets_in(now)
        return int(math.ceil(wait * 1000))


def _usage(used: int, limit: int) -> WindowUsage:
    return WindowUsage(used=used, limit=limit, remaining=max(0, limit - used))


def _recommendations(status: RateLimitStatus) -> list[str]:
    """Human-readable hints derived from a status snapshot."""
    hints: list[str] = []
    if status.circuit_breaker_open:
        hints.append("Circuit breaker open. New requests are not being queued.")
    if status.requests_per_day.remaining < 100:
        hints.append(
            "Approaching daily limit. Consider upgrading to a higher provider tier."
        )
    if status.queue_length > 10:
        minutes = math.ceil(status.estimated_wait_time_ms / 1000 / 60)
        hints.append(f"High demand detected. Expected wait time: {minutes} minutes.")
    if status.requests_per_minute.remaining == 0:
        hints.append("Rate limit reached. Requests are being queued.")
    if status.queue_length == 0 and status.requests_per_minute.remaining > 0:
        hints.append("API ready for immediate processing.")
    return hints


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_manager: RateLimitManager | None = None


def get_rate_limit_manager() -> RateLimitManager:
    """Process-wide RateLimitManager, built from settings on first use."""
    global _manager
    if _manager is None:
        _manager = RateLimitManager()
    return _manager
