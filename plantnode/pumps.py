# plantnode/pumps.py
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from .settings import DEFAULT_ON_S, DEFAULT_SOAK_S
from . import master_log

logger = logging.getLogger(__name__)


class Relay(Protocol):
    def set(self, on: bool) -> None: ...


class PumpState(str, enum.Enum):
    IDLE = "idle"
    WATERING = "watering"
    SOAKING = "soaking"


@dataclass(frozen=True)
class PumpCycleConfig:
    on_duration: float = DEFAULT_ON_S      # seconds with the relay closed
    soak_duration: float = DEFAULT_SOAK_S  # seconds to let the water settle

    def __post_init__(self):
        if self.on_duration <= 0:
            raise ValueError("on_duration must be > 0")
        if self.soak_duration < 0:
            raise ValueError("soak_duration must be >= 0")


class PumpController:
    """
    Timed IDLE -> WATERING -> SOAKING -> IDLE cycle for one relay-driven pump.

    Only start() leaves IDLE. tick() advances the cycle from absolute entry
    timestamps, so calling it more or less often never changes how long the
    relay stays on. Each automatic transition takes the scheduled boundary
    as the next entry time; a late tick walks through every transition that
    is already due, in order.
    """

    def __init__(
        self,
        relay: Relay,
        config: PumpCycleConfig = PumpCycleConfig(),
        name: str = "water",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.relay = relay
        self.config = config
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = PumpState.IDLE
        self._entered_at: Optional[float] = None
        self._cycles = 0
        self.relay.set(False)

    @property
    def state(self) -> PumpState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state is PumpState.IDLE

    def start(self) -> bool:
        """
        Request a watering cycle. Returns False (and changes nothing) unless
        the pump is IDLE.
        """
        with self._lock:
            if self._state is not PumpState.IDLE:
                logger.debug("Pump '%s' busy (%s), start ignored", self.name, self._state.value)
                return False
            self._entered_at = self._clock()
            self._state = PumpState.WATERING
            self.relay.set(True)
            self._cycles += 1
        logger.info("Pump '%s' cycle started: WATERING", self.name)
        self._log_transition("pumps.PumpController.start")
        return True

    def tick(self) -> PumpState:
        transitions = []
        with self._lock:
            now = self._clock()
            while True:
                if self._state is PumpState.WATERING:
                    boundary = self._entered_at + self.config.on_duration
                    if now < boundary:
                        break
                    self._state = PumpState.SOAKING
                    self._entered_at = boundary
                    self.relay.set(False)
                elif self._state is PumpState.SOAKING:
                    boundary = self._entered_at + self.config.soak_duration
                    if now < boundary:
                        break
                    self._state = PumpState.IDLE
                    self._entered_at = None
                else:
                    break
                transitions.append(self._state)
            state = self._state

        for new_state in transitions:
            if new_state is PumpState.SOAKING:
                logger.info("Pump '%s' watering finished, now SOAKING", self.name)
            else:
                logger.info("Pump '%s' soak complete, cycle finished", self.name)
            self._log_transition("pumps.PumpController.tick", new_state)
        return state

    def stop(self) -> None:
        """Abort any running cycle: relay off, back to IDLE."""
        with self._lock:
            was = self._state
            self.relay.set(False)
            self._state = PumpState.IDLE
            self._entered_at = None
        if was is not PumpState.IDLE:
            logger.warning("Pump '%s' stopped during %s", self.name, was.value)
            self._log_transition("pumps.PumpController.stop", note=f"aborted={was.value}")

    def status(self) -> Dict[str, Any]:
        with self._lock:
            elapsed = None
            if self._entered_at is not None:
                elapsed = max(0.0, self._clock() - self._entered_at)
            return {
                "pump": self.name,
                "state": self._state.value,
                "seconds_in_state": elapsed,
                "on_seconds": self.config.on_duration,
                "soak_seconds": self.config.soak_duration,
                "cycles": self._cycles,
            }

    def _log_transition(
        self,
        source: str,
        state: Optional[PumpState] = None,
        note: Optional[str] = None,
    ) -> None:
        master_log.record(
            "pump_state",
            source=source,
            pump_state=(state or self._state).value,
            on_seconds=self.config.on_duration,
            soak_seconds=self.config.soak_duration,
            note=note,
        )
