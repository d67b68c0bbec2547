"""GPIO pin adapters over gpiozero devices.

On the Pi the devices use gpiozero's default pin factory. With
``ENABLE_HARDWARE=false`` they run on gpiozero's ``MockFactory`` so the same
code paths work on a bench machine and in tests.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import List, Optional, Protocol, Union

from gpiozero import DigitalInputDevice, DigitalOutputDevice
from gpiozero.exc import BadPinFactory
from gpiozero.pins.mock import MockFactory

logger = logging.getLogger(__name__)

LOW = 0
HIGH = 1

LevelCallback = Callable[[int], None]


class HardwareUnavailableError(RuntimeError):
    """Raised when real GPIO is requested but cannot be driven."""


class OutputPin(Protocol):
    gpio: int

    @property
    def value(self) -> int: ...

    async def write(self, value: int) -> None: ...

    def close(self) -> None: ...


class InputPin(Protocol):
    gpio: int

    def watch(self, callback: LevelCallback) -> None: ...

    def close(self) -> None: ...


class GpiozeroOutputPin:
    """Raw-level output on a gpiozero device; writes are immediate."""

    def __init__(self, gpio: int, initial: int = LOW, pin_factory=None) -> None:
        self.gpio = gpio
        self.device = DigitalOutputDevice(
            gpio, active_high=True, initial_value=bool(initial), pin_factory=pin_factory
        )

    @property
    def value(self) -> int:
        return int(self.device.value)

    async def write(self, value: int) -> None:
        self.device.value = value

    def close(self) -> None:
        self.device.close()


class GpiozeroInputPin:
    """Edge-watching input; gpiozero calls back from its own thread."""

    def __init__(self, gpio: int, bounce_ms: int = 30, pin_factory=None) -> None:
        self.gpio = gpio
        bounce_time = bounce_ms / 1000 if bounce_ms > 0 else None
        self.device = DigitalInputDevice(gpio, pull_up=False, bounce_time=bounce_time, pin_factory=pin_factory)

    def watch(self, callback: LevelCallback) -> None:
        """Must be called from the event loop the callback belongs to."""
        loop = asyncio.get_running_loop()
        # Hand edges over to the event loop so samples are processed in arrival order
        self.device.when_activated = lambda: loop.call_soon_threadsafe(callback, HIGH)
        self.device.when_deactivated = lambda: loop.call_soon_threadsafe(callback, LOW)

    def close(self) -> None:
        self.device.close()


class PinFactory:
    """Opens gpiozero pins, on real hardware or on a private mock factory."""

    def __init__(self, *, enable_hardware: bool, bounce_ms: int = 30) -> None:
        self.enable_hardware = enable_hardware
        self.bounce_ms = bounce_ms
        # None lets gpiozero pick its default factory (lgpio on a Pi 5)
        self.pin_factory: Optional[MockFactory] = None if enable_hardware else MockFactory()
        self._opened: List[Union[GpiozeroOutputPin, GpiozeroInputPin]] = []

    def output(self, gpio: int, initial: int = LOW) -> GpiozeroOutputPin:
        try:
            pin = GpiozeroOutputPin(gpio, initial, pin_factory=self.pin_factory)
        except BadPinFactory as e:
            raise HardwareUnavailableError(f"cannot drive GPIO{gpio}: {e}") from e
        self._opened.append(pin)
        return pin

    def input(self, gpio: int) -> GpiozeroInputPin:
        try:
            pin = GpiozeroInputPin(gpio, self.bounce_ms, pin_factory=self.pin_factory)
        except BadPinFactory as e:
            raise HardwareUnavailableError(f"cannot read GPIO{gpio}: {e}") from e
        self._opened.append(pin)
        return pin

    def opened(self, gpio: int) -> Union[GpiozeroOutputPin, GpiozeroInputPin]:
        for pin in self._opened:
            if pin.gpio == gpio:
                return pin
        raise KeyError(f"GPIO{gpio} is not open")

    def close_all(self) -> None:
        for pin in self._opened:
            try:
                pin.close()
            except Exception as e:
                logger.warning("Error closing GPIO%d: %s", pin.gpio, e)
        self._opened.clear()


__all__ = [
    "LOW",
    "HIGH",
    "HardwareUnavailableError",
    "OutputPin",
    "InputPin",
    "GpiozeroOutputPin",
    "GpiozeroInputPin",
    "PinFactory",
]
