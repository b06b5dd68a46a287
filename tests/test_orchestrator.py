from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

import pytest

from stylesync._cache import CacheStore
from stylesync.config import SyncConfig
from stylesync.events import EventBus, Notification, NotificationType
from stylesync.exceptions import (
    ConfigError,
    FailureOutcome,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    ValidationFailedError,
)
from stylesync.models.requests import RequestOptions
from stylesync.models.responses import TransportResponse
from stylesync.orchestrator import RequestOrchestrator


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _ok(body: Any = None, status: int = 200, **headers: str) -> TransportResponse:
    return TransportResponse(status=status, headers=dict(headers), body=body)


class _FakeTransport:
    """Replays scripted outcomes; the last one repeats forever.

    An outcome is a TransportResponse or a zero-argument callable returning
    one or returning an exception to raise.
    """

    def __init__(self, name: str, *outcomes: Any, delay: float = 0.0) -> None:
        self.name = name
        self.delay = delay
        self.calls: list[tuple[str, str, Any, dict[str, str] | None]] = []
        self.cancelled = 0
        self._outcomes = list(outcomes) or [_ok({"ok": True})]

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        self.calls.append((method, path, body, dict(headers) if headers else None))
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _server_error() -> ServerError:
    return ServerError("upstream unavailable", status_code=503)


def _network_error() -> NetworkError:
    return NetworkError("connection refused")


def _make(
    primary: _FakeTransport,
    fallback: _FakeTransport | None = None,
    *,
    cache_clock: Callable[[], float] | None = None,
    events: EventBus | None = None,
    **config: Any,
) -> RequestOrchestrator:
    config.setdefault("retry_delay", 0.0)
    config.setdefault("timeout", 1.0)
    cfg = SyncConfig(**config)
    cache = CacheStore(ttl=cfg.cache_ttl, max_size=cfg.cache_max_size, clock=cache_clock or _Clock())
    return RequestOrchestrator(cfg, primary, fallback, cache=cache, events=events, clock=_Clock())


@pytest.mark.asyncio
async def test_concurrent_identical_calls_share_one_round_trip() -> None:
    rest = _FakeTransport("rest", _ok({"saved": True}), delay=0.05)
    orchestrator = _make(rest)

    results = await asyncio.gather(
        *(orchestrator.execute("save_settings", {"menu_background": "#000"}) for _ in range(5))
    )

    assert len(rest.calls) == 1
    assert results == [{"saved": True}] * 5
    assert orchestrator.stats.dedup_hits == 4
    assert orchestrator.pending_count == 0


@pytest.mark.asyncio
async def test_payload_key_order_does_not_defeat_dedup() -> None:
    rest = _FakeTransport("rest", _ok({"saved": True}), delay=0.05)
    orchestrator = _make(rest)

    await asyncio.gather(
        orchestrator.execute("update_settings", {"a": 1, "b": 2}),
        orchestrator.execute("update_settings", {"b": 2, "a": 1}),
    )

    assert len(rest.calls) == 1


@pytest.mark.asyncio
async def test_fresh_cache_entry_served_until_ttl_expires() -> None:
    cache_clock = _Clock(0.0)
    rest = _FakeTransport("rest", _ok({"menu_background": "#111"}))
    orchestrator = _make(rest, cache_clock=cache_clock, cache_ttl=60.0)

    first = await orchestrator.execute("get_settings")
    cache_clock.now = 59.9
    second = await orchestrator.execute("get_settings")

    assert first == second == {"menu_background": "#111"}
    assert len(rest.calls) == 1
    assert orchestrator.stats.cache_hits == 1

    cache_clock.now = 60.0
    await orchestrator.execute("get_settings")
    assert len(rest.calls) == 2


@pytest.mark.asyncio
async def test_cached_value_is_isolated_from_caller_mutation() -> None:
    rest = _FakeTransport("rest", _ok({"menu_background": "#111"}))
    orchestrator = _make(rest)

    first = await orchestrator.execute("get_settings")
    first["menu_background"] = "#fff"

    assert await orchestrator.execute("get_settings") == {"menu_background": "#111"}


@pytest.mark.asyncio
async def test_skip_cache_forces_round_trip() -> None:
    rest = _FakeTransport("rest", _ok({"v": 1}))
    orchestrator = _make(rest)

    await orchestrator.execute("get_settings")
    await orchestrator.execute("get_settings", options=RequestOptions(skip_cache=True))

    assert len(rest.calls) == 2


@pytest.mark.asyncio
async def test_retry_bound_then_single_fallback_attempt() -> None:
    rest = _FakeTransport("rest", _server_error)
    ajax = _FakeTransport("ajax", _server_error)
    orchestrator = _make(rest, ajax, max_retries=2, demotion_threshold=0)

    with pytest.raises(ServerError) as exc_info:
        await orchestrator.execute("save_settings", {"menu_background": "#000"})

    exc = exc_info.value
    assert len(rest.calls) == 3
    assert len(ajax.calls) == 1
    assert exc.outcome == FailureOutcome.BOTH_FAILED
    assert exc.attempted_transports == ("rest", "ajax")
    assert isinstance(exc.fallback_error, ServerError)
    assert exc.fallback_error is not exc
    assert orchestrator.stats.retries == 2
    assert orchestrator.stats.failures == {"rest": 3, "ajax": 1}
    assert orchestrator.pending_count == 0


@pytest.mark.asyncio
async def test_exhausted_without_fallback_transport() -> None:
    rest = _FakeTransport("rest", _network_error)
    orchestrator = _make(rest, max_retries=1)

    with pytest.raises(NetworkError) as exc_info:
        await orchestrator.execute("get_settings")

    assert len(rest.calls) == 2
    assert exc_info.value.outcome == FailureOutcome.EXHAUSTED
    assert exc_info.value.attempted_transports == ("rest",)


@pytest.mark.asyncio
async def test_use_fallback_option_disables_fallback() -> None:
    rest = _FakeTransport("rest", _network_error)
    ajax = _FakeTransport("ajax")
    orchestrator = _make(rest, ajax, max_retries=0)

    with pytest.raises(NetworkError) as exc_info:
        await orchestrator.execute("get_settings", options={"use_fallback": False})

    assert ajax.calls == []
    assert exc_info.value.outcome == FailureOutcome.EXHAUSTED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error_factory",
    [
        lambda: PermissionDeniedError("nonce expired", status_code=403),
        lambda: NotFoundError("no such theme"),
        lambda: ValidationFailedError("bad color", problems=["menu_background: invalid"]),
    ],
)
async def test_terminal_errors_neither_retry_nor_fall_back(error_factory: Callable[[], Exception]) -> None:
    rest = _FakeTransport("rest", error_factory)
    ajax = _FakeTransport("ajax")
    orchestrator = _make(rest, ajax, max_retries=3)

    with pytest.raises(type(error_factory())) as exc_info:
        await orchestrator.execute("save_settings", {"menu_background": "nope"})

    assert len(rest.calls) == 1
    assert ajax.calls == []
    assert exc_info.value.outcome is None
    assert orchestrator.stats.retries == 0


@pytest.mark.asyncio
async def test_fallback_success_uses_action_request_shape() -> None:
    rest = _FakeTransport("rest", _network_error)
    ajax = _FakeTransport("ajax", _ok({"saved": True}))
    orchestrator = _make(rest, ajax, max_retries=2, demotion_threshold=0)

    result = await orchestrator.execute("save_settings", {"menu_background": "#000"})

    assert result == {"saved": True}
    method, path, body, _headers = ajax.calls[0]
    assert (method, path) == ("POST", "mas_v2_save_settings")
    assert body == {"settings": {"menu_background": "#000"}}
    stats = orchestrator.stats
    assert stats.fallbacks == 1
    assert stats.retries == 2
    assert stats.successes == {"ajax": 1}


@pytest.mark.asyncio
async def test_operation_without_action_never_falls_back() -> None:
    rest = _FakeTransport("rest", _network_error)
    ajax = _FakeTransport("ajax")
    orchestrator = _make(rest, ajax, max_retries=0)

    with pytest.raises(NetworkError) as exc_info:
        await orchestrator.execute("list_backups")

    assert ajax.calls == []
    assert exc_info.value.outcome == FailureOutcome.EXHAUSTED


@pytest.mark.asyncio
async def test_attempt_timeout_is_classified_and_retried() -> None:
    rest = _FakeTransport("rest", _ok({"late": True}), delay=0.2)
    orchestrator = _make(rest)

    with pytest.raises(RequestTimeoutError) as exc_info:
        await orchestrator.execute(
            "get_settings",
            options=RequestOptions(timeout=0.01, max_retries=1, use_fallback=False),
        )

    assert len(rest.calls) == 2
    assert exc_info.value.outcome == FailureOutcome.EXHAUSTED


@pytest.mark.asyncio
async def test_retry_after_hint_raises_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    delays: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("stylesync.orchestrator.asyncio.sleep", _fake_sleep)
    rest = _FakeTransport(
        "rest",
        lambda: RateLimitedError("slow down", retry_after=2.5),
        _ok({"saved": True}),
    )
    orchestrator = _make(rest, retry_delay=0.5)

    assert await orchestrator.execute("save_settings", {"x": 1}) == {"saved": True}
    assert delays == [2.5]


@pytest.mark.asyncio
async def test_backoff_doubles_per_attempt(monkeypatch: pytest.MonkeyPatch) -> None:
    delays: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("stylesync.orchestrator.asyncio.sleep", _fake_sleep)
    rest = _FakeTransport("rest", _server_error)
    orchestrator = _make(rest, retry_delay=0.5, max_retries=3)

    with pytest.raises(ServerError):
        await orchestrator.execute("save_settings", {"x": 1})

    assert delays == [0.5, 1.0, 2.0]


@pytest.mark.asyncio
async def test_primary_demoted_after_threshold() -> None:
    events = EventBus()
    seen: list[Notification] = []
    events.subscribe(seen.append, NotificationType.TRANSPORT_DEMOTED)
    rest = _FakeTransport("rest", _network_error)
    ajax = _FakeTransport("ajax", _ok({"saved": True}))
    orchestrator = _make(rest, ajax, events=events, max_retries=0, demotion_threshold=1)

    await orchestrator.execute("save_settings", {"n": 1})
    assert orchestrator.preferred_transport == "rest"
    await orchestrator.execute("save_settings", {"n": 2})
    assert orchestrator.preferred_transport == "ajax"
    assert len(seen) == 1
    assert seen[0].data["transport"] == "rest"

    await orchestrator.execute("save_settings", {"n": 3})
    assert len(rest.calls) == 2
    assert len(ajax.calls) == 3

    orchestrator.reset_transport_preference()
    assert orchestrator.preferred_transport == "rest"
    assert not orchestrator.stats.demoted


@pytest.mark.asyncio
async def test_successful_write_invalidates_matching_reads() -> None:
    rest = _FakeTransport("rest", _ok({"menu_background": "#111"}))
    orchestrator = _make(rest)

    await orchestrator.execute("get_settings")
    await orchestrator.execute("get_themes")
    assert len(orchestrator.cache) == 2

    await orchestrator.execute("save_settings", {"menu_background": "#222"})

    assert len(orchestrator.cache) == 1
    await orchestrator.execute("get_settings")
    assert [call[1] for call in rest.calls] == ["/settings", "/themes", "/settings", "/settings"]


@pytest.mark.asyncio
async def test_cancelled_request_completion_does_not_touch_cache() -> None:
    rest = _FakeTransport("rest", _ok({"menu_background": "#111"}), delay=0.05)
    orchestrator = _make(rest)

    task = asyncio.create_task(orchestrator.execute("get_settings"))
    await asyncio.sleep(0.01)
    assert orchestrator.pending_count == 1

    assert orchestrator.cancel_request("get_settings") == 1
    assert orchestrator.pending_count == 0

    assert await task == {"menu_background": "#111"}
    assert len(orchestrator.cache) == 0


@pytest.mark.asyncio
async def test_cancelling_last_caller_aborts_transport_call() -> None:
    rest = _FakeTransport("rest", _ok({"menu_background": "#111"}), delay=0.2)
    orchestrator = _make(rest)

    task = asyncio.create_task(orchestrator.execute("get_settings"))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0.01)

    assert rest.cancelled == 1
    assert orchestrator.pending_count == 0
    assert len(orchestrator.cache) == 0


@pytest.mark.asyncio
async def test_cancelling_one_duplicate_keeps_shared_call_alive() -> None:
    rest = _FakeTransport("rest", _ok({"saved": True}), delay=0.05)
    orchestrator = _make(rest)

    first = asyncio.create_task(orchestrator.execute("save_settings", {"menu_background": "#000"}))
    second = asyncio.create_task(orchestrator.execute("save_settings", {"menu_background": "#000"}))
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second == {"saved": True}
    assert first.cancelled()
    assert rest.cancelled == 0
    assert len(rest.calls) == 1


@pytest.mark.asyncio
async def test_clear_pending_drops_all_bookkeeping() -> None:
    rest = _FakeTransport("rest", _ok({}), delay=0.05)
    orchestrator = _make(rest)

    tasks = [
        asyncio.create_task(orchestrator.execute("save_settings", {"n": 1})),
        asyncio.create_task(orchestrator.execute("save_settings", {"n": 2})),
    ]
    await asyncio.sleep(0.01)
    assert orchestrator.pending_count == 2

    orchestrator.clear_pending()
    assert orchestrator.pending_count == 0
    await asyncio.gather(*tasks)


@pytest.mark.asyncio
async def test_not_modified_revalidates_stale_entry() -> None:
    cache_clock = _Clock(0.0)
    rest = _FakeTransport("rest", _ok({"v": 1}, ETag='"abc"'), _ok(status=304))
    orchestrator = _make(rest, cache_clock=cache_clock, cache_ttl=10.0)

    assert await orchestrator.execute("get_settings") == {"v": 1}
    cache_clock.now = 30.0

    assert await orchestrator.execute("get_settings") == {"v": 1}
    assert rest.calls[1][3] == {"If-None-Match": '"abc"'}
    # Revalidated entry is fresh again.
    assert await orchestrator.execute("get_settings") == {"v": 1}
    assert len(rest.calls) == 2


@pytest.mark.asyncio
async def test_deprecation_header_warns_once_per_path() -> None:
    events = EventBus()
    rest = _FakeTransport(
        "rest",
        _ok({}, **{"X-API-Deprecated": "true", "X-API-Removal-Date": "2027-01-01"}),
    )
    orchestrator = _make(rest, events=events)

    await orchestrator.execute("get_settings")
    await orchestrator.execute("get_settings", options=RequestOptions(skip_cache=True))

    notices = [n for n in events.history if n.type == NotificationType.API_DEPRECATED]
    assert len(notices) == 1
    assert notices[0].data["removal_date"] == "2027-01-01"
    assert orchestrator.deprecation_warnings == ["/settings"]


@pytest.mark.asyncio
async def test_unknown_or_empty_operation_rejected() -> None:
    orchestrator = _make(_FakeTransport("rest"))

    with pytest.raises(ConfigError):
        await orchestrator.execute("explode_everything")
    with pytest.raises(ConfigError):
        await orchestrator.execute("   ")


@pytest.mark.asyncio
async def test_missing_path_parameter_fails_before_sending() -> None:
    rest = _FakeTransport("rest")
    orchestrator = _make(rest)

    with pytest.raises(ValidationFailedError) as exc_info:
        await orchestrator.execute("apply_theme", {})

    assert rest.calls == []
    assert exc_info.value.problems == ["theme_id: required"]


@pytest.mark.asyncio
async def test_path_parameters_are_rendered() -> None:
    rest = _FakeTransport("rest")
    orchestrator = _make(rest)

    await orchestrator.execute("get_theme", {"theme_id": "dark"})
    await orchestrator.execute("list_backups", {"limit": 5})

    assert rest.calls[0][:3] == ("GET", "/themes/dark", None)
    assert rest.calls[1][:3] == ("GET", "/backups?limit=5", None)


@pytest.mark.asyncio
async def test_disable_cache_clears_and_bypasses() -> None:
    rest = _FakeTransport("rest", _ok({"v": 1}))
    orchestrator = _make(rest)

    await orchestrator.execute("get_settings")
    orchestrator.disable_cache()
    await orchestrator.execute("get_settings")

    assert len(rest.calls) == 2
    assert orchestrator.cache_stats().size == 0

    orchestrator.enable_cache()
    await orchestrator.execute("get_settings")
    await orchestrator.execute("get_settings")
    assert len(rest.calls) == 3


def test_transports_must_have_distinct_names() -> None:
    with pytest.raises(ConfigError):
        RequestOrchestrator(SyncConfig(), _FakeTransport("rest"), _FakeTransport("rest"))


def test_transport_names_must_select_a_request_shape() -> None:
    with pytest.raises(ConfigError, match="Unknown transport name 'grpc'"):
        RequestOrchestrator(SyncConfig(), _FakeTransport("grpc"))
    with pytest.raises(ConfigError, match="Unknown transport name 'legacy'"):
        RequestOrchestrator(SyncConfig(), _FakeTransport("rest"), _FakeTransport("legacy"))
