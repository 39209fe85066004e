"""
Spin animation for the carousel wheel.

The wheel always rotates forward, covers a randomized 270-320 degrees plus the
offset to the target, and lands exactly on the target card.
"""
from typing import Callable, Optional
from dataclasses import dataclass
import enum
import logging
import math
import random

from bookwheel.services.tick_scheduler import TickScheduler, Animation

logger = logging.getLogger(__name__)

DEFAULT_SPIN_DURATION_MS = 4000.0
SELECTION_ANGLE = 40.0  # Point under the pointer where index 0 rests
MIN_ROTATION_DEG = 270.0
ROTATION_JITTER_DEG = 50.0


def carousel_ease(t: float) -> float:
    """Sine ease-in-out: slow start, speeds up, then settles."""
    return -(math.cos(math.pi * t) - 1) / 2


class SpinPhase(str, enum.Enum):
    IDLE = "idle"
    SPINNING = "spinning"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SpinState:
    angle: float
    phase: SpinPhase
    target_index: int


@dataclass(frozen=True)
class SpinPlan:
    target_index: int
    start_angle: float
    target_angle: float
    duration_ms: float

    @property
    def total_rotation(self) -> float:
        return self.target_angle - self.start_angle


class SpinController:
    """
    idle -> spinning -> stopped, and stopped -> spinning on re-spin.

    One controller per carousel. Frames come from the injected TickScheduler;
    reset() and a new spin cancel the pending frame before anything else runs.
    """

    def __init__(
        self,
        item_count: int,
        scheduler: TickScheduler,
        spin_duration_ms: float = DEFAULT_SPIN_DURATION_MS,
        selection_angle: float = SELECTION_ANGLE,
        on_spin_complete: Optional[Callable[[int], None]] = None,
        rng: Optional[random.Random] = None,
        initial_angle: float = 0.0,
    ):
        self.item_count = item_count
        self.scheduler = scheduler
        self.spin_duration_ms = spin_duration_ms
        self.selection_angle = selection_angle
        self.on_spin_complete = on_spin_complete
        self._rng = rng or random.Random()

        self.angle = initial_angle
        self.phase = SpinPhase.IDLE
        self.target_index = 0
        self.plan: Optional[SpinPlan] = None
        self._animation: Optional[Animation] = None

    @property
    def state(self) -> SpinState:
        return SpinState(angle=self.angle, phase=self.phase, target_index=self.target_index)

    @property
    def spinning(self) -> bool:
        return self.phase == SpinPhase.SPINNING

    def set_item_count(self, item_count: int) -> None:
        """Pool size changed; applies to the next spin."""
        self.item_count = item_count

    def angle_for_index(self, index: int) -> float:
        """Resting angle that puts `index` under the pointer."""
        return self.selection_angle - index * (360.0 / self.item_count)

    def start_spin(self, target_index: int) -> Optional[SpinPlan]:
        """Spin forward to land on target_index. Returns None while already spinning."""
        if self.phase == SpinPhase.SPINNING:
            logger.debug("Spin request for index %d ignored: already spinning", target_index)
            return None
        if self.item_count <= 0:
            raise ValueError("Cannot spin an empty wheel")
        if not 0 <= target_index < self.item_count:
            raise ValueError(
                f"Target index {target_index} out of range for {self.item_count} item(s)"
            )

        self._cancel_animation()

        base_angle = self.angle_for_index(target_index)
        min_rotation = MIN_ROTATION_DEG + self._rng.random() * ROTATION_JITTER_DEG

        # Next occurrence of base_angle at least min_rotation ahead
        turns = math.ceil((self.angle + min_rotation - base_angle) / 360.0)
        target_angle = base_angle + turns * 360.0

        self.plan = SpinPlan(
            target_index=target_index,
            start_angle=self.angle,
            target_angle=target_angle,
            duration_ms=self.spin_duration_ms,
        )
        self.target_index = target_index
        self.phase = SpinPhase.SPINNING
        logger.debug(
            "Spin to index %d: %.1f -> %.1f deg over %.0fms",
            target_index,
            self.plan.start_angle,
            target_angle,
            self.spin_duration_ms,
        )

        self._animation = self.scheduler.animate(
            self.spin_duration_ms,
            carousel_ease,
            self._on_progress,
            self._on_complete,
        )
        return self.plan

    def _on_progress(self, eased: float, progress: float) -> None:
        plan = self.plan
        self.angle = plan.start_angle + plan.total_rotation * eased

    def _on_complete(self) -> None:
        # Exact landing, no floating-point residue from the interpolation
        self.angle = self.plan.target_angle
        self.phase = SpinPhase.STOPPED
        self._animation = None
        if self.on_spin_complete is not None:
            self.on_spin_complete(self.target_index)

    def _cancel_animation(self) -> None:
        if self._animation is not None:
            self._animation.cancel()
            self._animation = None

    def reset(self) -> None:
        """Cancel any in-flight spin and go back to idle at angle 0."""
        self._cancel_animation()
        self.angle = 0.0
        self.phase = SpinPhase.IDLE
        self.target_index = 0
        self.plan = None

    def dispose(self) -> None:
        self.reset()
        self.on_spin_complete = None
