"""Request orchestration: caching, duplicate suppression, retries, timeouts and transport fallback.

Every logical request goes through :meth:`RequestOrchestrator.execute`:

1. fresh cache entries answer reads without touching the network;
2. identical calls inside one fingerprint window share a single in-flight
   task, so each transport sees at most one round-trip per duplicate;
3. the preferred transport is tried with exponential backoff for retryable
   failures, racing each attempt against a timeout;
4. once retries are exhausted the other transport gets exactly one attempt;
5. once every caller of a shared task has been cancelled, the task and its
   transport call are cancelled as well.

All state lives on one event loop and is only mutated between suspension
points.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stylesync._cache import CacheStats, CacheStore
from stylesync._constants import (
    HEADER_IF_NONE_MATCH,
    HEADER_REMOVAL_DATE,
    HEADER_WARNING,
    KNOWN_TRANSPORTS,
)
from stylesync._fingerprint import cache_key, fingerprint
from stylesync._operations import Operation, OperationRegistry
from stylesync._redact import redact_for_log
from stylesync._transport import Transport
from stylesync.config import SyncConfig
from stylesync.events import EventBus, NotificationType
from stylesync.exceptions import (
    ConfigError,
    FailureOutcome,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    StyleSyncError,
    is_retryable,
)
from stylesync.models.requests import RequestOptions
from stylesync.models.responses import TransportResponse

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _PendingOperation:
    """An in-flight logical request shared by every duplicate caller."""

    fingerprint: str
    operation: str
    task: asyncio.Task[Any] | None = None
    cancelled: bool = False
    waiters: int = 0
    attempted: list[str] = field(default_factory=list)

    def note_attempt(self, transport_name: str) -> None:
        if transport_name not in self.attempted:
            self.attempted.append(transport_name)


@dataclass(slots=True)
class _RetryState:
    attempt: int = 0
    last_error: StyleSyncError | None = None
    delay: float = 0.0


@dataclass(slots=True)
class _Counters:
    successes: dict[str, int] = field(default_factory=dict)
    failures: dict[str, int] = field(default_factory=dict)
    cache_hits: int = 0
    dedup_hits: int = 0
    retries: int = 0
    fallbacks: int = 0
    primary_faults: int = 0


class OrchestratorStats(BaseModel):
    """Snapshot of orchestrator counters."""

    model_config = ConfigDict(frozen=True)

    successes: dict[str, int] = Field(default_factory=dict)
    failures: dict[str, int] = Field(default_factory=dict)
    cache_hits: int = 0
    dedup_hits: int = 0
    retries: int = 0
    fallbacks: int = 0
    pending: int = 0
    preferred_transport: str
    demoted: bool = False


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # Callers may all have gone away; keep asyncio from reporting the error as unretrieved.
    if not task.cancelled():
        task.exception()


class RequestOrchestrator:
    """Deduplicating, caching, retrying front for the two transports.

    Parameters
    ----------
    config
        Defaults for timeouts, retries, cache and demotion policy.
    primary
        Transport tried first (normally :class:`~stylesync._transport.RestTransport`).
    fallback
        Optional secondary transport used once after the primary is exhausted.
    cache
        Response cache; built from *config* when omitted.
    events
        Notification channel for deprecation and demotion notices.
    registry
        Operation definitions; the built-in set when omitted.
    clock
        Wall clock used for fingerprint time buckets.
    """

    def __init__(
        self,
        config: SyncConfig,
        primary: Transport,
        fallback: Transport | None = None,
        *,
        cache: CacheStore | None = None,
        events: EventBus | None = None,
        registry: OperationRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if fallback is not None and fallback.name == primary.name:
            raise ConfigError(f"primary and fallback transports share the name {primary.name!r}")
        for transport in (primary, fallback):
            if transport is not None and transport.name not in KNOWN_TRANSPORTS:
                raise ConfigError(
                    f"Unknown transport name {transport.name!r}, expected one of {sorted(KNOWN_TRANSPORTS)}"
                )
        self._config = config
        self._primary = primary
        self._fallback = fallback
        if cache is None:
            cache = CacheStore(
                ttl=config.cache_ttl,
                max_size=config.cache_max_size,
                enabled=config.cache_enabled,
            )
        self._cache = cache
        self._events = events or EventBus()
        self._registry = registry or OperationRegistry()
        self._clock = clock
        self._pending: dict[str, _PendingOperation] = {}
        self._counters = _Counters()
        self._demoted = False
        self._deprecation_warnings: set[str] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def preferred_transport(self) -> str:
        if self._demoted and self._fallback is not None:
            return self._fallback.name
        return self._primary.name

    @property
    def demoted(self) -> bool:
        return self._demoted

    @property
    def deprecation_warnings(self) -> list[str]:
        return sorted(self._deprecation_warnings)

    @property
    def stats(self) -> OrchestratorStats:
        counters = self._counters
        return OrchestratorStats(
            successes=dict(counters.successes),
            failures=dict(counters.failures),
            cache_hits=counters.cache_hits,
            dedup_hits=counters.dedup_hits,
            retries=counters.retries,
            fallbacks=counters.fallbacks,
            pending=len(self._pending),
            preferred_transport=self.preferred_transport,
            demoted=self._demoted,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        operation_name: str,
        payload: Any = None,
        options: RequestOptions | Mapping[str, Any] | None = None,
    ) -> Any:
        """Run *operation_name* with *payload* and return the response data.

        Raises the classified :class:`~stylesync.exceptions.StyleSyncError`
        on failure. Retryable failures that exhausted every transport carry
        ``outcome`` (``exhausted`` or ``both_failed``) and
        ``attempted_transports``.
        """
        if not isinstance(operation_name, str) or not operation_name.strip():
            raise ConfigError("operation name must be a non-empty string")
        operation = self._registry.get(operation_name.strip())
        opts = self._resolve_options(options)

        cacheable = opts.cacheable if opts.cacheable is not None else operation.is_read
        cacheable = cacheable and self._cache.enabled

        # Building the primary request validates path parameters up front.
        resource = operation.request_for(self._primary.name, payload)
        key = cache_key(resource.resource if resource is not None else operation.name, payload)

        if cacheable and not opts.skip_cache:
            entry = self._cache.get(key)
            if entry is not None:
                self._counters.cache_hits += 1
                _logger.debug("Cache hit for %s", operation.name)
                return entry.value

        fp = fingerprint(operation.name, payload, window=self._config.fingerprint_window, now=self._clock())
        pending = self._pending.get(fp)
        if pending is not None and pending.task is not None:
            self._counters.dedup_hits += 1
            _logger.debug("Deduplicating %s (%s)", operation.name, fp[:12])
            return await self._await_pending(pending)

        pending = _PendingOperation(fingerprint=fp, operation=operation.name)
        self._pending[fp] = pending
        pending.task = asyncio.create_task(
            self._run(pending, operation, payload, key, cacheable, opts),
            name=f"stylesync:{operation.name}",
        )
        pending.task.add_done_callback(_consume_exception)
        return await self._await_pending(pending)

    def cancel_request(self, operation_name: str, payload: Any = None) -> int:
        """Forget in-flight calls of *operation_name*.

        With *payload* only the matching call (current fingerprint window) is
        dropped, otherwise every pending call of that operation. The
        transport call itself is not interrupted, but its completion no
        longer touches the cache. Returns the number of calls dropped.
        """
        if payload is not None:
            fp = fingerprint(operation_name, payload, window=self._config.fingerprint_window, now=self._clock())
            doomed = [fp] if fp in self._pending else []
        else:
            doomed = [fp for fp, pending in self._pending.items() if pending.operation == operation_name]
        for fp in doomed:
            pending = self._pending.pop(fp)
            pending.cancelled = True
            _logger.debug("Request cancelled: %s (%s)", operation_name, fp[:12])
        return len(doomed)

    def clear_pending(self) -> None:
        for pending in self._pending.values():
            pending.cancelled = True
        self._pending.clear()
        _logger.debug("All pending requests cleared")

    def invalidate_cache(self, pattern: str | None = None) -> int:
        return self._cache.invalidate(pattern)

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def enable_cache(self) -> None:
        self._cache.enable()

    def disable_cache(self) -> None:
        self._cache.disable()

    def reset_transport_preference(self) -> None:
        """Prefer the primary transport again after a demotion."""
        if self._demoted:
            _logger.info("Transport %s restored as preferred transport", self._primary.name)
        self._demoted = False
        self._counters.primary_faults = 0

    def reset_stats(self) -> None:
        self._counters = _Counters()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve_options(self, options: RequestOptions | Mapping[str, Any] | None) -> RequestOptions:
        if options is None:
            return RequestOptions()
        if isinstance(options, RequestOptions):
            return options
        return RequestOptions.model_validate(dict(options))

    async def _await_pending(self, pending: _PendingOperation) -> Any:
        """Await the shared task; the last caller to be cancelled aborts it."""
        task = pending.task
        assert task is not None  # noqa: S101
        pending.waiters += 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if pending.waiters == 1 and not task.done():
                _logger.debug("Aborting %s (%s), no callers left", pending.operation, pending.fingerprint[:12])
                pending.cancelled = True
                if self._pending.get(pending.fingerprint) is pending:
                    del self._pending[pending.fingerprint]
                task.cancel()
            raise
        finally:
            pending.waiters -= 1

    def _transport_order(self, operation: Operation) -> list[Transport]:
        candidates = [self._primary] if self._fallback is None else [self._primary, self._fallback]
        if self._demoted:
            candidates.reverse()
        return [transport for transport in candidates if operation.supports(transport.name)]

    def _record_success(self, transport: Transport) -> None:
        successes = self._counters.successes
        successes[transport.name] = successes.get(transport.name, 0) + 1

    def _record_failure(self, transport: Transport, error: StyleSyncError) -> None:
        failures = self._counters.failures
        failures[transport.name] = failures.get(transport.name, 0) + 1
        if transport is not self._primary or not is_retryable(error):
            return
        self._counters.primary_faults += 1
        threshold = self._config.demotion_threshold
        if (
            threshold > 0
            and not self._demoted
            and self._fallback is not None
            and self._counters.primary_faults > threshold
        ):
            self._demoted = True
            _logger.warning(
                "Transport %s demoted after %d failures; preferring %s",
                transport.name,
                self._counters.primary_faults,
                self._fallback.name,
            )
            self._events.emit(
                NotificationType.TRANSPORT_DEMOTED,
                transport=transport.name,
                preferred=self._fallback.name,
                failures=self._counters.primary_faults,
            )

    def _note_deprecation(self, path: str, response: TransportResponse) -> None:
        if path in self._deprecation_warnings:
            return
        self._deprecation_warnings.add(path)
        removal_date = response.header(HEADER_REMOVAL_DATE)
        warning = response.header(HEADER_WARNING)
        _logger.warning("Endpoint %s is deprecated (removal: %s) %s", path, removal_date or "unscheduled", warning or "")
        self._events.emit(
            NotificationType.API_DEPRECATED,
            path=path,
            removal_date=removal_date,
            warning=warning,
        )

    def _backoff(self, attempt: int, error: StyleSyncError) -> float:
        delay = self._config.retry_delay * (2**attempt)
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return delay

    async def _run(
        self,
        pending: _PendingOperation,
        operation: Operation,
        payload: Any,
        key: str,
        cacheable: bool,
        opts: RequestOptions,
    ) -> Any:
        try:
            return await self._execute_with_fallback(pending, operation, payload, key, cacheable, opts)
        finally:
            if self._pending.get(pending.fingerprint) is pending:
                del self._pending[pending.fingerprint]

    async def _execute_with_fallback(
        self,
        pending: _PendingOperation,
        operation: Operation,
        payload: Any,
        key: str,
        cacheable: bool,
        opts: RequestOptions,
    ) -> Any:
        order = self._transport_order(operation)
        if not order:
            raise ConfigError(f"No transport can execute {operation.name}")
        first = order[0]
        second = order[1] if len(order) > 1 else None

        max_retries = opts.max_retries if opts.max_retries is not None else self._config.max_retries
        timeout = opts.timeout if opts.timeout is not None else self._config.timeout
        use_fallback = opts.use_fallback if opts.use_fallback is not None else self._config.use_fallback

        headers: dict[str, str] = {}
        if cacheable:
            etag = self._cache.etag_for(key)
            if etag:
                headers[HEADER_IF_NONE_MATCH] = etag

        _logger.debug("Executing %s via %s %s", operation.name, first.name, redact_for_log(payload))

        try:
            return await self._attempt_with_retries(
                first, pending, operation, payload, key, cacheable, headers, max_retries, timeout
            )
        except StyleSyncError as exc:
            last_error = exc

        last_error.attempted_transports = tuple(pending.attempted)
        if not is_retryable(last_error):
            raise last_error

        last_error.outcome = FailureOutcome.EXHAUSTED
        if use_fallback and second is not None:
            self._counters.fallbacks += 1
            _logger.debug("Falling back to %s for %s", second.name, operation.name)
            try:
                return await self._attempt_once(second, pending, operation, payload, key, cacheable, {}, timeout)
            except StyleSyncError as fallback_exc:
                _logger.debug("Fallback %s also failed for %s: %s", second.name, operation.name, fallback_exc)
                last_error.outcome = FailureOutcome.BOTH_FAILED
                last_error.fallback_error = fallback_exc
                last_error.attempted_transports = tuple(pending.attempted)

        raise last_error

    async def _attempt_with_retries(
        self,
        transport: Transport,
        pending: _PendingOperation,
        operation: Operation,
        payload: Any,
        key: str,
        cacheable: bool,
        headers: dict[str, str],
        max_retries: int,
        timeout: float,
    ) -> Any:
        state = _RetryState()
        while True:
            try:
                result = await self._attempt_once(
                    transport, pending, operation, payload, key, cacheable, headers, timeout
                )
            except StyleSyncError as exc:
                state.last_error = exc
                if not is_retryable(exc) or state.attempt >= max_retries:
                    raise
                state.delay = self._backoff(state.attempt, exc)
                state.attempt += 1
                self._counters.retries += 1
                _logger.debug(
                    "%s failed via %s (attempt %d/%d), retrying in %.2fs: %s",
                    operation.name,
                    transport.name,
                    state.attempt,
                    max_retries + 1,
                    state.delay,
                    exc,
                )
                await asyncio.sleep(state.delay)
            else:
                if state.attempt > 0:
                    _logger.debug("%s succeeded on attempt %d", operation.name, state.attempt + 1)
                return result

    async def _attempt_once(
        self,
        transport: Transport,
        pending: _PendingOperation,
        operation: Operation,
        payload: Any,
        key: str,
        cacheable: bool,
        headers: dict[str, str],
        timeout: float,
    ) -> Any:
        planned = operation.request_for(transport.name, payload)
        if planned is None:
            raise ConfigError(f"{operation.name} is not available on {transport.name}")
        pending.note_attempt(transport.name)

        try:
            response = await asyncio.wait_for(
                transport.send(planned.method, planned.path, planned.body, dict(headers) or None),
                timeout,
            )
        except TimeoutError as exc:
            error = RequestTimeoutError(
                f"{operation.name} timed out after {timeout}s via {transport.name}",
                path=planned.path,
            )
            self._record_failure(transport, error)
            raise error from exc
        except StyleSyncError as exc:
            self._record_failure(transport, exc)
            raise

        if response.deprecated:
            self._note_deprecation(planned.path, response)

        if response.not_modified:
            entry = self._cache.get_stale(key)
            if entry is None:
                # Nothing to revalidate; the next attempt goes out unconditionally.
                headers.pop(HEADER_IF_NONE_MATCH, None)
                error = ServerError(
                    f"{operation.name} answered 304 without a cached representation",
                    status_code=304,
                    path=planned.path,
                )
                self._record_failure(transport, error)
                raise error
            self._record_success(transport)
            if not pending.cancelled:
                self._cache.touch(key)
            return entry.value

        self._record_success(transport)
        if pending.cancelled:
            return response.body

        if cacheable:
            self._cache.set(key, response.body, etag=response.etag)
        if operation.invalidates and not operation.is_read:
            self._cache.invalidate(operation.invalidates)
        return response.body
