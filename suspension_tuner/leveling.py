"""Closed-loop auto-leveling for the four-corner rig.

A session runs two phases on one asyncio task:

1. **Polarity detection** - each corner in turn is nudged by the test
   movement while the others hold still, and the roll/pitch response decides
   whether its ``reversed`` flag is wrong. Corners are never tested together:
   they share a single orientation sensor.
2. **Convergence** - bounded proportional steps drive all four trims toward
   level until the tolerance is met or the iteration budget runs out.

Settle waits go through the injected ``sleep`` and are independent of any
network timeout.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import LevelingConfig
from .core.models import ACTUATOR_ORDER, ActuatorKey, ActuatorState, TelemetrySample
from .core.protocols import ActuatorWriter, Calibrator, SleepType, SnapshotSource
from .errors import (
    ConvergenceExhausted,
    DeviceError,
    LevelingError,
    SessionInProgress,
)

LOGGER = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = (
    "Auto level failed - the vehicle is too unlevel for auto level to correct"
)

# (roll coefficient, pitch coefficient) of each corner's effect on the body.
_COUPLING: Dict[ActuatorKey, Tuple[int, int]] = {
    ActuatorKey.FRONT_LEFT: (1, -1),
    ActuatorKey.FRONT_RIGHT: (-1, -1),
    ActuatorKey.REAR_LEFT: (1, 1),
    ActuatorKey.REAR_RIGHT: (-1, 1),
}

_EXPECTED_SIGN: Dict[ActuatorKey, int] = {
    ActuatorKey.FRONT_LEFT: 1,
    ActuatorKey.FRONT_RIGHT: -1,
    ActuatorKey.REAR_LEFT: 1,
    ActuatorKey.REAR_RIGHT: -1,
}


class LevelingPhase(str, Enum):
    IDLE = "idle"
    DETECTING_POLARITY = "detecting_polarity"
    CONVERGING = "converging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (LevelingPhase.SUCCEEDED, LevelingPhase.FAILED)


@dataclass(frozen=True, slots=True)
class ActuatorWrite:
    key: ActuatorKey
    parameter: str
    value: Any


@dataclass(slots=True)
class Session:
    phase: LevelingPhase = LevelingPhase.IDLE
    iteration: int = 0
    detected_polarity: Dict[ActuatorKey, bool] = field(default_factory=dict)
    status_message: str = ""
    actuators: Dict[ActuatorKey, ActuatorState] = field(default_factory=dict)
    writes: List[ActuatorWrite] = field(default_factory=list)
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.phase == LevelingPhase.SUCCEEDED

    def trims(self) -> Dict[ActuatorKey, int]:
        return {key: state.trim for key, state in self.actuators.items()}


# ----------------------------------------------------------------------
# Control law
# ----------------------------------------------------------------------
def polarity_response(
    key: ActuatorKey, delta_roll: float, delta_pitch: float
) -> Tuple[float, int]:
    """Return ``(actual_change, expected_sign)`` for a raised corner."""

    roll_coefficient, pitch_coefficient = _COUPLING[key]
    actual_change = roll_coefficient * delta_roll + pitch_coefficient * delta_pitch
    return actual_change, _EXPECTED_SIGN[key]


def is_reversed_response(
    key: ActuatorKey,
    delta_roll: float,
    delta_pitch: float,
    threshold: float = 1.0,
) -> bool:
    """Whether the corner moved opposite to what a positive trim should do.

    Uses a noise band rather than zero: only a product below ``-threshold``
    counts as a reversal.
    """

    actual_change, expected_sign = polarity_response(key, delta_roll, delta_pitch)
    return expected_sign * actual_change < -threshold


def step_corrections(roll: float, pitch: float, step: float) -> Tuple[float, float]:
    """Cap the per-iteration correction at ``step`` degrees on each axis."""

    roll_adjustment = min(abs(roll), step) * _sign(roll)
    pitch_adjustment = min(abs(pitch), step) * _sign(pitch)
    return roll_adjustment, pitch_adjustment


def trim_deltas(roll_adjustment: float, pitch_adjustment: float) -> Dict[ActuatorKey, float]:
    return {
        key: roll_coefficient * roll_adjustment + pitch_coefficient * pitch_adjustment
        for key, (roll_coefficient, pitch_coefficient) in _COUPLING.items()
    }


def clamp_trim(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))


def round_trim(value: float) -> int:
    """Round half-up; the device only stores whole degrees."""

    return int(math.floor(value + 0.5))


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _orientation(sample: TelemetrySample) -> Tuple[float, float]:
    return sample.roll or 0.0, sample.pitch or 0.0


# ----------------------------------------------------------------------
# Controller
# ----------------------------------------------------------------------
class AutoLevelController:
    """Runs at most one leveling session (or manual calibration) at a time."""

    def __init__(
        self,
        accessor: SnapshotSource,
        actuators: ActuatorWriter,
        *,
        config: Optional[LevelingConfig] = None,
        sleep: SleepType = asyncio.sleep,
        calibrator: Optional[Calibrator] = None,
        on_update: Optional[Callable[[Session], None]] = None,
    ) -> None:
        self._accessor = accessor
        self._actuators = actuators
        self._config = config or LevelingConfig()
        self._sleep = sleep
        self._calibrator = calibrator
        self._on_update = on_update

        self._session: Optional[Session] = None
        self._task: Optional[asyncio.Task[Session]] = None
        self._calibrating = False

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def phase(self) -> LevelingPhase:
        if self._session is None:
            return LevelingPhase.IDLE
        return self._session.phase

    @property
    def busy(self) -> bool:
        return self._session is not None or self._calibrating

    def start(
        self, initial_states: Optional[Mapping[ActuatorKey, ActuatorState]] = None
    ) -> asyncio.Task[Session]:
        """Begin a session; raises :class:`SessionInProgress` if busy."""

        self._ensure_idle()
        session = Session()
        self._session = session
        self._task = asyncio.create_task(self._run_session(session, initial_states))
        return self._task

    async def run(
        self, initial_states: Optional[Mapping[ActuatorKey, ActuatorState]] = None
    ) -> Session:
        return await self.start(initial_states)

    async def cancel(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def set_level(self, servo: Optional[str] = None) -> None:
        """Manual "set as level": re-zero the sensor at the current attitude."""

        if self._calibrator is None:
            raise LevelingError("No calibrator configured")

        self._ensure_idle()
        self._calibrating = True
        try:
            LOGGER.info("Calibrating %s", servo or "orientation sensor")
            await self._calibrator.calibrate(servo)
            self._invalidate_snapshot()
            await self._sleep(self._config.calibration_display_seconds)
        finally:
            self._calibrating = False

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def _ensure_idle(self) -> None:
        if self._calibrating:
            raise SessionInProgress("Calibration in progress")
        if self._session is not None:
            raise SessionInProgress(
                f"Auto level already running ({self._session.phase.value})"
            )

    async def _run_session(
        self,
        session: Session,
        initial_states: Optional[Mapping[ActuatorKey, ActuatorState]],
    ) -> Session:
        cfg = self._config
        try:
            try:
                self._transition(
                    session,
                    LevelingPhase.DETECTING_POLARITY,
                    "Detecting servo directions...",
                )
                session.actuators = await self._load_states(initial_states)
                await self._detect_polarity(session)
                converged = await self._converge(session)
            except asyncio.CancelledError:
                self._transition(session, LevelingPhase.FAILED, "Auto level cancelled")
                raise
            except DeviceError as exc:
                LOGGER.warning("Auto level aborted: %s", exc)
                session.error = exc
                self._transition(session, LevelingPhase.FAILED, f"Auto level error: {exc}")
                display = cfg.error_display_seconds
            except Exception as exc:
                LOGGER.exception("Auto level failed unexpectedly")
                session.error = exc
                self._transition(session, LevelingPhase.FAILED, "Auto level error")
                display = cfg.error_display_seconds
            else:
                if converged:
                    self._transition(session, LevelingPhase.SUCCEEDED, "Level achieved!")
                    display = cfg.success_display_seconds
                else:
                    session.error = ConvergenceExhausted(EXHAUSTED_MESSAGE)
                    self._transition(session, LevelingPhase.FAILED, EXHAUSTED_MESSAGE)
                    display = cfg.failure_display_seconds

            await self._sleep(display)
            return session
        finally:
            if self._session is session:
                self._session = None

    async def _load_states(
        self, initial_states: Optional[Mapping[ActuatorKey, ActuatorState]]
    ) -> Dict[ActuatorKey, ActuatorState]:
        if initial_states is None:
            initial_states = await self._actuators.read_all()

        states: Dict[ActuatorKey, ActuatorState] = {}
        for key in ACTUATOR_ORDER:
            state = initial_states.get(key)
            states[key] = state.copy() if state is not None else ActuatorState(key=key)
        return states

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    async def _detect_polarity(self, session: Session) -> None:
        cfg = self._config
        limit = cfg.max_adjustment

        for key in ACTUATOR_ORDER:
            state = session.actuators[key]
            self._status(session, f"Testing {key.value}...")

            baseline = await self._accessor.snapshot()
            original_trim = round_trim(clamp_trim(state.trim, limit))
            # Near the upper bound the test goes down instead, mirrored below.
            direction = 1 if original_trim + cfg.test_movement <= limit else -1
            test_trim = round_trim(
                clamp_trim(original_trim + direction * cfg.test_movement, limit)
            )

            try:
                await self._write(session, key, "trim", test_trim)
                await self._sleep(cfg.detection_settle_seconds)
                probe = await self._accessor.snapshot()
            except DeviceError:
                await self._restore_after_failure(session, key, original_trim)
                raise

            base_roll, base_pitch = _orientation(baseline)
            probe_roll, probe_pitch = _orientation(probe)
            delta_roll = direction * (probe_roll - base_roll)
            delta_pitch = direction * (probe_pitch - base_pitch)

            reversed_response = is_reversed_response(
                key, delta_roll, delta_pitch, cfg.polarity_threshold
            )
            session.detected_polarity[key] = state.reversed != reversed_response
            LOGGER.info(
                "Polarity test %s: droll=%.2f dpitch=%.2f reversed=%s",
                key.value,
                delta_roll,
                delta_pitch,
                session.detected_polarity[key],
            )

            await self._write(session, key, "trim", original_trim)
            await self._sleep(cfg.restore_settle_seconds)

        changed = [
            key
            for key in ACTUATOR_ORDER
            if session.detected_polarity[key] != session.actuators[key].reversed
        ]
        if changed:
            self._status(session, "Applying reverse settings...")
            for key in changed:
                await self._write(
                    session, key, "reversed", session.detected_polarity[key]
                )

        await self._sleep(cfg.polarity_apply_settle_seconds)

    async def _converge(self, session: Session) -> bool:
        cfg = self._config
        self._transition(session, LevelingPhase.CONVERGING, "Starting auto-level...")

        while session.iteration < cfg.max_iterations:
            roll, pitch = _orientation(await self._accessor.snapshot())
            if abs(roll) < cfg.level_tolerance and abs(pitch) < cfg.level_tolerance:
                return True

            self._status(
                session,
                f"Adjusting... ({session.iteration + 1}/{cfg.max_iterations})",
            )
            roll_adjustment, pitch_adjustment = step_corrections(
                roll, pitch, cfg.adjustment_step
            )
            for key, delta in trim_deltas(roll_adjustment, pitch_adjustment).items():
                current = session.actuators[key].trim
                new_trim = round_trim(clamp_trim(current + delta, cfg.max_adjustment))
                if new_trim != current:
                    await self._write(session, key, "trim", new_trim)

            await self._sleep(cfg.converge_settle_seconds)
            session.iteration += 1

        return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _write(
        self, session: Session, key: ActuatorKey, parameter: str, value: Any
    ) -> None:
        try:
            await self._actuators.write(key.value, parameter, value)
        finally:
            # Whether or not the device applied it, cached readings predate the move.
            self._invalidate_snapshot()
        setattr(session.actuators[key], parameter, value)
        session.writes.append(ActuatorWrite(key, parameter, value))

    async def _restore_after_failure(
        self, session: Session, key: ActuatorKey, trim: int
    ) -> None:
        # The failed step may have been the test write itself, which the device
        # can still have applied, so restore regardless of the local mirror.
        try:
            await self._write(session, key, "trim", trim)
        except DeviceError as exc:
            LOGGER.warning("Could not restore %s trim to %d: %s", key.value, trim, exc)

    def _invalidate_snapshot(self) -> None:
        invalidate = getattr(self._accessor, "invalidate", None)
        if callable(invalidate):
            invalidate()

    def _transition(self, session: Session, phase: LevelingPhase, message: str) -> None:
        previous = session.phase
        session.phase = phase
        if phase.terminal:
            session.finished_at = time.monotonic()
        LOGGER.info(
            "Auto level phase %s -> %s (%s)", previous.value, phase.value, message
        )
        self._status(session, message)

    def _status(self, session: Session, message: str) -> None:
        session.status_message = message
        LOGGER.debug("Auto level: %s", message)
        if self._on_update is not None:
            try:
                self._on_update(session)
            except Exception:
                LOGGER.exception("Auto level status listener failed")
