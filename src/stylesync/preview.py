"""Debounced live preview.

Rapid settings edits are coalesced into one preview request after a quiet
period. Every submission bumps a generation counter; only a response that
belongs to the newest generation may write the stylesheet.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

from stylesync._constants import DEFAULT_PREVIEW_STYLE_ELEMENT_ID, FALLBACK_COLOR_SELECTORS
from stylesync._redact import redact_for_log
from stylesync.events import EventBus, NotificationType
from stylesync.exceptions import ConfigError, GenerationError, RateLimitedError
from stylesync.models.preview import PreviewResult, PreviewStats
from stylesync.models.requests import RequestOptions

if TYPE_CHECKING:
    from stylesync.orchestrator import RequestOrchestrator

_logger = logging.getLogger(__name__)


class StyleElement:
    """The single stylesheet previews are written to.

    Every write replaces the whole content; there is never more than one
    preview stylesheet.
    """

    def __init__(self, element_id: str = DEFAULT_PREVIEW_STYLE_ELEMENT_ID) -> None:
        self.element_id = element_id
        self._css = ""
        self.write_count = 0

    @property
    def css(self) -> str:
        return self._css

    def replace(self, css: str) -> None:
        self._css = css
        self.write_count += 1

    def clear(self) -> None:
        self.replace("")


class PreviewGenerator(Protocol):
    async def generate(self, settings: Mapping[str, Any]) -> PreviewResult:
        ...


def build_fallback_css(settings: Mapping[str, Any]) -> str:
    """Minimal stylesheet built from the color settings that are present."""
    lines = ["/* Fallback preview: stylesheet generation failed */"]
    for key, selector in FALLBACK_COLOR_SELECTORS.items():
        value = settings.get(key)
        if not isinstance(value, str) or not value.strip():
            continue
        prop = "color" if key.endswith("_text_color") else "background"
        lines.append(f"{selector} {{ {prop}: {value.strip()} !important; }}")
    return "\n".join(lines) + "\n"


class RemotePreviewGenerator:
    """Asks the server to render the stylesheet via the ``generate_preview`` operation."""

    def __init__(self, orchestrator: RequestOrchestrator, *, options: RequestOptions | None = None) -> None:
        self._orchestrator = orchestrator
        # Previews are always fresh and a failed one is superseded by the next edit.
        self._options = options or RequestOptions(cacheable=False, max_retries=0)

    async def generate(self, settings: Mapping[str, Any]) -> PreviewResult:
        data = await self._orchestrator.execute("generate_preview", {"settings": dict(settings)}, self._options)
        if isinstance(data, str):
            return PreviewResult(css=data)
        if isinstance(data, Mapping) and isinstance(data.get("css"), str):
            return PreviewResult(css=data["css"], fallback=bool(data.get("fallback", False)))
        raise GenerationError("Preview response carried no stylesheet", details={"response": data})


class LocalPreviewGenerator:
    """Renders previews in-process.

    ``render`` failures raising :class:`GenerationError` degrade to
    :func:`build_fallback_css`. Calls closer together than ``min_interval``
    seconds are refused with :class:`RateLimitedError`.
    """

    def __init__(
        self,
        render: Callable[[Mapping[str, Any]], str],
        *,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._render = render
        self._min_interval = min_interval
        self._clock = clock
        self._last_call: float | None = None

    async def generate(self, settings: Mapping[str, Any]) -> PreviewResult:
        now = self._clock()
        if self._last_call is not None:
            elapsed = now - self._last_call
            if elapsed < self._min_interval:
                raise RateLimitedError(
                    "Too many preview requests",
                    retry_after=self._min_interval - elapsed,
                )
        self._last_call = now

        try:
            css = self._render(settings)
        except GenerationError:
            _logger.debug("Preview generation failed, using fallback stylesheet", exc_info=True)
            return PreviewResult(css=build_fallback_css(settings), fallback=True)
        return PreviewResult(css=css)


class PreviewDebouncer:
    """Coalesces settings edits into debounced preview requests.

    Must be used from a running event loop.
    """

    def __init__(
        self,
        generator: PreviewGenerator,
        sink: StyleElement | None = None,
        *,
        delay: float = 0.5,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if delay < 0:
            raise ConfigError(f"preview delay must be >= 0, got {delay}")
        self._generator = generator
        self._sink = sink or StyleElement()
        self._delay = delay
        self._events = events or EventBus()
        self._clock = clock

        self._settings: dict[str, Any] = {}
        self._generation = 0
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None

        self._request_count = 0
        self._cancelled_count = 0
        self._error_count = 0
        self._discarded_count = 0
        self._rate_limited_count = 0
        self._last_update_time: float | None = None

    @property
    def sink(self) -> StyleElement:
        return self._sink

    @property
    def delay(self) -> float:
        return self._delay

    @delay.setter
    def delay(self, value: float) -> None:
        if value < 0:
            raise ConfigError(f"preview delay must be >= 0, got {value}")
        self._delay = value

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def settings(self) -> dict[str, Any]:
        """Accumulated settings the next preview will be rendered from."""
        return dict(self._settings)

    @property
    def stats(self) -> PreviewStats:
        return PreviewStats(
            request_count=self._request_count,
            cancelled_count=self._cancelled_count,
            error_count=self._error_count,
            discarded_count=self._discarded_count,
            rate_limited_count=self._rate_limited_count,
            last_update_time=self._last_update_time,
            is_active=self.is_active(),
            generation=self._generation,
        )

    def reset_stats(self) -> None:
        self._request_count = 0
        self._cancelled_count = 0
        self._error_count = 0
        self._discarded_count = 0
        self._rate_limited_count = 0
        self._last_update_time = None

    def submit(self, settings_delta: Mapping[str, Any]) -> None:
        """Merge *settings_delta* and (re)start the debounce timer."""
        loop = asyncio.get_running_loop()
        self._settings.update(settings_delta)
        self._generation += 1
        self._cancel_timer()
        self._cancel_task()
        self._timer = loop.call_later(self._delay, self._fire, self._generation)
        _logger.debug("Preview generation %d scheduled in %.3fs", self._generation, self._delay)

    def cancel(self) -> None:
        """Abort the in-flight request and drop the pending timer without touching the stylesheet."""
        self._cancel_timer()
        self._cancel_task()
        # Anything still on its way back belongs to a superseded generation now.
        self._generation += 1

    def is_active(self) -> bool:
        """Whether a preview request is currently awaiting its response."""
        return self._task is not None and not self._task.done()

    def is_pending(self) -> bool:
        """Whether a debounce timer is waiting or a request is in flight."""
        return self._timer is not None or self.is_active()

    def clear(self) -> None:
        """Cancel, forget the accumulated settings and empty the stylesheet."""
        self.cancel()
        self._settings.clear()
        self._sink.clear()
        self._events.emit(NotificationType.PREVIEW_CLEARED, generation=self._generation)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _fire(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._request(generation, dict(self._settings)),
            name=f"stylesync:preview:{generation}",
        )

    async def _request(self, generation: int, settings: dict[str, Any]) -> None:
        self._request_count += 1
        started = self._clock()
        _logger.debug("Requesting preview generation %d %s", generation, redact_for_log(settings))
        try:
            result = await self._generator.generate(settings)
        except asyncio.CancelledError:
            self._cancelled_count += 1
            _logger.debug("Preview generation %d cancelled", generation)
            raise
        except RateLimitedError:
            self._rate_limited_count += 1
            _logger.debug("Preview generation %d rate limited, dropped", generation)
            return
        except Exception as exc:
            if generation != self._generation:
                self._discarded_count += 1
                return
            self._error_count += 1
            _logger.debug("Preview generation %d failed", generation, exc_info=True)
            self._events.emit(
                NotificationType.PREVIEW_ERROR,
                error=str(exc),
                kind=str(getattr(exc, "kind", "unknown")),
                generation=generation,
            )
            return

        if generation != self._generation:
            self._discarded_count += 1
            _logger.debug("Discarding stale preview generation %d (current %d)", generation, self._generation)
            return

        duration = self._clock() - started
        self._sink.replace(result.css)
        self._last_update_time = self._clock()
        self._events.emit(
            NotificationType.PREVIEW_UPDATED,
            css_length=len(result.css),
            duration=duration,
            fallback=result.fallback,
            generation=generation,
        )
