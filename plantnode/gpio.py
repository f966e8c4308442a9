# plantnode/gpio.py
from __future__ import annotations

import logging

import lgpio

from .settings import CHIP

logger = logging.getLogger(__name__)


class DigitalOutput:
    """
    One claimed GPIO output line (pump relay, status LED).

    The chip handle stays open for the lifetime of the object; close()
    drives the line to its inactive level before releasing it.
    """

    def __init__(self, pin: int, active_high: bool = True, chip: int = CHIP):
        self.pin = pin
        self.active_high = active_high
        self._handle = lgpio.gpiochip_open(chip)
        self._on = False
        lgpio.gpio_claim_output(self._handle, pin, self._level_for_state(False))

    def _level_for_state(self, on: bool) -> int:
        """
        Map logical state to the GPIO level.

        active_high=False is for relay boards wired ACTIVE-LOW.
        """
        return int(on) if self.active_high else int(not on)

    def set(self, on: bool) -> None:
        lgpio.gpio_write(self._handle, self.pin, self._level_for_state(on))
        self._on = on

    @property
    def is_on(self) -> bool:
        return self._on

    def close(self) -> None:
        if self._handle is None:
            return
        try:
            self.set(False)
        finally:
            lgpio.gpiochip_close(self._handle)
            self._handle = None
