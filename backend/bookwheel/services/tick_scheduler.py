"""
Frame scheduling for carousel animations.

A TickScheduler supplies a monotonic clock and a one-shot "call me on the next
frame" primitive. Animation builds a duration-bounded, eased interpolation on
top of it: each frame runs to completion before the next one is requested,
and a cancelled animation never fires again.
"""
from abc import ABC, abstractmethod
from typing import Callable, Optional, List, Tuple
import asyncio
import logging

from bookwheel.utils.timing import now_ms

logger = logging.getLogger(__name__)

FrameCallback = Callable[[float], None]
Easing = Callable[[float], float]


class FrameHandle:
    """Pending frame request; cancel() guarantees the callback will not run."""

    def __init__(self, canceller: Optional[Callable[[], None]] = None):
        self._canceller = canceller
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._canceller is not None:
            self._canceller()


class TickScheduler(ABC):
    """Clock + next-frame primitive an animation is driven by."""

    @abstractmethod
    def now_ms(self) -> float:
        """Monotonic time in milliseconds."""

    @abstractmethod
    def request_frame(self, callback: FrameCallback) -> FrameHandle:
        """Schedule callback(timestamp_ms) for the next frame."""

    def animate(
        self,
        duration_ms: float,
        easing: Easing,
        on_progress: Callable[[float, float], None],
        on_complete: Optional[Callable[[], None]] = None,
    ) -> "Animation":
        """Start an eased animation; on_progress receives (eased, raw) progress."""
        animation = Animation(self, duration_ms, easing, on_progress, on_complete)
        animation.start()
        return animation


class Animation:
    def __init__(
        self,
        scheduler: TickScheduler,
        duration_ms: float,
        easing: Easing,
        on_progress: Callable[[float, float], None],
        on_complete: Optional[Callable[[], None]] = None,
    ):
        if duration_ms <= 0:
            raise ValueError(f"Animation duration must be positive (got {duration_ms})")
        self.scheduler = scheduler
        self.duration_ms = duration_ms
        self.easing = easing
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.start_ms = 0.0
        self.finished = False
        self.cancelled = False
        self._handle: Optional[FrameHandle] = None

    @property
    def active(self) -> bool:
        return not (self.finished or self.cancelled)

    def start(self) -> None:
        self.start_ms = self.scheduler.now_ms()
        self._handle = self.scheduler.request_frame(self._frame)

    def cancel(self) -> None:
        if not self.active:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _frame(self, timestamp_ms: float) -> None:
        if not self.active:
            return
        elapsed = timestamp_ms - self.start_ms
        progress = min(max(elapsed / self.duration_ms, 0.0), 1.0)
        self.on_progress(self.easing(progress), progress)

        if progress < 1:
            self._handle = self.scheduler.request_frame(self._frame)
            return

        self.finished = True
        self._handle = None
        if self.on_complete is not None:
            self.on_complete()


class AsyncioTickScheduler(TickScheduler):
    """Frames on an asyncio event loop at a fixed interval (the server's refresh rate)."""

    def __init__(self, interval_ms: float = 16.0, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.interval_ms = interval_ms
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> float:
        return self.loop.time() * 1000

    def request_frame(self, callback: FrameCallback) -> FrameHandle:
        timer = self.loop.call_later(
            self.interval_ms / 1000,
            lambda: callback(self.now_ms()),
        )
        return FrameHandle(timer.cancel)


class SteppedTickScheduler(TickScheduler):
    """
    Manually advanced clock for headless runs and tests.

    advance() moves time forward one frame interval at a time, running whatever
    frames were requested before each step.
    """

    def __init__(self, frame_ms: float = 16.0, start_ms: Optional[float] = None):
        self.frame_ms = frame_ms
        self._now = now_ms() if start_ms is None else start_ms
        self._pending: List[Tuple[FrameCallback, FrameHandle]] = []

    def now_ms(self) -> float:
        return self._now

    def request_frame(self, callback: FrameCallback) -> FrameHandle:
        handle = FrameHandle()
        self._pending.append((callback, handle))
        return handle

    @property
    def pending_frames(self) -> int:
        return sum(1 for _, handle in self._pending if not handle.cancelled)

    def step(self) -> int:
        """Advance one frame and run the frames due; returns how many ran."""
        self._now += self.frame_ms
        due, self._pending = self._pending, []
        ran = 0
        for callback, handle in due:
            if handle.cancelled:
                continue
            ran += 1
            callback(self._now)
        return ran

    def advance(self, duration_ms: float) -> None:
        target = self._now + duration_ms
        while self._now + self.frame_ms <= target:
            self.step()

    def run_until_idle(self, max_frames: int = 100_000) -> int:
        """Step until no frame is pending; returns the number of steps taken."""
        steps = 0
        while self.pending_frames and steps < max_frames:
            self.step()
            steps += 1
        if self.pending_frames:
            logger.warning("Frames still pending after %d steps", steps)
        return steps
