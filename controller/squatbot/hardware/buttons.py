"""Debounced drink buttons and their feedback LEDs."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from ..config import ButtonSettings
from ..state import ButtonLevel, LedMode
from .gpio import HIGH, LOW, OutputPin, PinFactory

logger = logging.getLogger(__name__)

PressCallback = Callable[[], None]


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


@dataclass
class ButtonState:
    min_hold_duration_ms: float
    press_started_at: Optional[int] = None


@dataclass
class LedState:
    id: int
    pin: OutputPin
    mode: LedMode = LedMode.OFF
    task: Optional[asyncio.Task[None]] = None


class HardwareIOController:
    """Turns raw button levels into press events and drives the LEDs.

    A press counts when the button is released after being held for at least
    ``min_hold_duration_ms`` while the controller is enabled. Disabling only
    gates the callback; a press already in progress is still tracked.
    """

    def __init__(
        self,
        buttons: Iterable[ButtonSettings],
        pins: PinFactory,
        *,
        min_hold_duration_ms: float = 100.0,
        debug: bool = False,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.enabled = False
        self.debug = debug
        self._clock = clock
        self._buttons: Dict[int, ButtonState] = {}
        self._leds: Dict[int, LedState] = {}
        self._callbacks: Dict[int, PressCallback] = {}

        logger.info("Setting up buttons...")
        for cfg in buttons:
            self._buttons[cfg.id] = ButtonState(min_hold_duration_ms=min_hold_duration_ms)
            pin = pins.input(cfg.button_gpio)
            pin.watch(lambda level, button_id=cfg.id: self.handle_sample(button_id, ButtonLevel(level)))
            self._leds[cfg.id] = LedState(id=cfg.id, pin=pins.output(cfg.led_gpio, initial=LOW))

    # ------------------------------------------------------------------
    # Buttons
    # ------------------------------------------------------------------

    def on_press(self, button_id: int, callback: PressCallback) -> None:
        """Subscribe the press handler of a button, replacing any previous one."""
        self._button(button_id)
        self._callbacks[button_id] = callback

    def button_state(self, button_id: int) -> ButtonState:
        return self._button(button_id)

    def handle_sample(self, button_id: int, level: ButtonLevel, now: Optional[int] = None) -> None:
        """Feed one level sample; ``now`` is in integer milliseconds."""
        state = self._button(button_id)
        now = self._clock() if now is None else now
        if self.debug:
            logger.debug("button %d: %s (enabled=%s)", button_id, level.name, self.enabled)

        if level is ButtonLevel.PRESSED:
            state.press_started_at = now
            return

        started = state.press_started_at
        state.press_started_at = None
        if started is None:
            logger.debug("button %d: release without press, ignoring", button_id)
            return
        if not self.enabled:
            logger.debug("button %d: released, but not enabled", button_id)
            return

        held_ms = now - started
        if held_ms < state.min_hold_duration_ms:
            logger.debug("button %d: released too early (%d ms), cancelling press", button_id, held_ms)
            return

        logger.info("button %d: pressed and released", button_id)
        callback = self._callbacks.get(button_id)
        if callback:
            callback()

    def _button(self, button_id: int) -> ButtonState:
        try:
            return self._buttons[button_id]
        except KeyError:
            raise ValueError(f"unknown button {button_id}") from None

    # ------------------------------------------------------------------
    # LEDs
    # ------------------------------------------------------------------

    def led_state(self, led_id: int) -> LedState:
        try:
            return self._leds[led_id]
        except KeyError:
            raise ValueError(f"unknown LED {led_id}") from None

    async def led_on(self, led_id: int) -> None:
        led = self.led_state(led_id)
        await self._supersede(led)
        await self._write(led, HIGH)

    async def led_off(self, led_id: int) -> None:
        led = self.led_state(led_id)
        await self._supersede(led)
        await self._write(led, LOW)

    async def leds_off(self) -> None:
        logger.info("All LEDs off")
        for led_id in self._leds:
            await self.led_off(led_id)

    async def blink_once(self, led_id: int, duration_ms: float = 300) -> None:
        """On, wait, off. Returns after the whole cycle.

        A continuous blink started during the cycle wins: the trailing off is
        skipped instead of cancelling it.
        """
        await self.led_on(led_id)
        await asyncio.sleep(duration_ms / 1000)
        led = self.led_state(led_id)
        if led.task is None:
            await self._write(led, LOW)

    async def blink_continuous(self, led_id: int, duration_ms: float = 300) -> None:
        """Start blinking with period ``2 * duration_ms`` and return immediately."""
        led = self.led_state(led_id)
        logger.info("LED #%d blink continuous", led_id)
        await self._supersede(led)
        # no await between here and the assignment: one schedule per LED
        led.mode = LedMode.BLINK_CONTINUOUS
        led.task = asyncio.create_task(self._blink_loop(led, duration_ms / 1000), name=f"led{led_id}-blink")

    async def stop_continuous(self, led_id: int) -> None:
        led = self.led_state(led_id)
        logger.info("LED #%d blink continuous STOP", led_id)
        if led.task is None:
            return
        await self._cancel_blink(led)
        await self._write(led, LOW)
        logger.info("LED #%d blink continuous: timer cleared", led_id)

    async def close(self) -> None:
        for led in self._leds.values():
            await self._supersede(led)

    async def _blink_loop(self, led: LedState, half_period_s: float) -> None:
        try:
            while True:
                await led.pin.write(HIGH)
                await asyncio.sleep(half_period_s)
                await led.pin.write(LOW)
                await asyncio.sleep(half_period_s)
        except asyncio.CancelledError:
            # finish the current leg: never leave the LED lit after a stop
            await led.pin.write(LOW)
            raise

    async def _supersede(self, led: LedState) -> None:
        # a concurrent caller may install a new blink while we await the old one
        while led.task is not None:
            await self._cancel_blink(led)

    async def _cancel_blink(self, led: LedState) -> None:
        task = led.task
        if task is None:
            return
        led.task = None
        led.mode = LedMode.OFF
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _write(self, led: LedState, value: int) -> None:
        await led.pin.write(value)
        led.mode = LedMode.ON if value == HIGH else LedMode.OFF


__all__ = ["HardwareIOController", "ButtonState", "LedState", "PressCallback", "monotonic_ms"]
