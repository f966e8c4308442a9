# plantnode/indicator.py
from __future__ import annotations

import time
from typing import Callable

from .pumps import Relay
from .settings import DEFAULT_BLINK_S


class BlinkingLed:
    """
    Non-blocking status LED: update() toggles the output every `period`
    seconds while enabled. Driven from the control loop tick.
    """

    def __init__(
        self,
        output: Relay,
        period: float = DEFAULT_BLINK_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        if period <= 0:
            raise ValueError("period must be > 0")
        self.output = output
        self.period = period
        self._clock = clock
        self._enabled = False
        self._lit = False
        self._toggled_at = 0.0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        self._toggled_at = self._clock()

    def stop(self) -> None:
        self._enabled = False
        self._lit = False
        self.output.set(False)

    def update(self) -> None:
        if not self._enabled:
            return
        now = self._clock()
        if now - self._toggled_at >= self.period:
            self._toggled_at = now
            self._lit = not self._lit
            self.output.set(self._lit)
