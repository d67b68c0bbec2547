"""Hardware-host runtime: owns pumps, buttons, LEDs and the coordinator."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .config import Settings
from .hardware.buttons import HardwareIOController
from .hardware.gpio import PinFactory
from .hardware.pumps import ActuatorController
from .session_coordinator import SessionCoordinator

logger = logging.getLogger(__name__)


class ControllerCrashed(RuntimeError):
    """Raised when a runtime task failed and the process should restart."""


class ControllerRuntime:
    """Builds every hardware-side component from settings.

    A new instance starts from construction defaults; nothing is carried over
    between restarts.
    """

    def __init__(self, settings: Settings, *, pins: Optional[PinFactory] = None) -> None:
        self.settings = settings
        self.pins = pins or PinFactory(enable_hardware=settings.enable_hardware, bounce_ms=settings.button_bounce_ms)
        self.actuators = ActuatorController(
            settings.channels,
            self.pins,
            tube_volume_cl=settings.tube_volume_cl,
            debug=settings.debug,
        )
        self.hardware = HardwareIOController(
            settings.buttons,
            self.pins,
            min_hold_duration_ms=settings.min_hold_duration_ms,
            debug=settings.debug,
        )
        self.coordinator = SessionCoordinator(
            settings=settings,
            hardware=self.hardware,
            actuators=self.actuators,
            on_failure=self.fail,
        )
        self.failure: Optional[BaseException] = None
        self.quit_requested = False
        self._done = asyncio.Event()

    async def start(self) -> None:
        logger.info("Starting controller runtime (hardware=%s)", self.settings.enable_hardware)
        self.hardware.enabled = False
        await self.hardware.leds_off()
        for button in self.settings.buttons:
            await self.hardware.led_on(button.id)
        logger.info("Controller runtime ready: %d channels, %d buttons", len(self.actuators.channels()), len(self.settings.buttons))

    async def stop(self) -> None:
        logger.info("Stopping controller runtime")
        await self.coordinator.close()
        try:
            await self.hardware.close()
            await self.hardware.leds_off()
            await self.actuators.stop_all()
        except Exception as e:
            logger.warning("Error releasing hardware: %s", e)
        self.pins.close_all()
        logger.info("Controller runtime stopped")

    def fail(self, exc: BaseException) -> None:
        if self.failure is None:
            self.failure = exc
        self._done.set()

    def request_quit(self) -> None:
        logger.info("Quit requested")
        self.quit_requested = True
        self._done.set()

    async def wait_done(self) -> None:
        await self._done.wait()

    def status(self) -> Dict[str, Any]:
        return {
            "buttons_enabled": self.hardware.enabled,
            "last_event": self.coordinator.last_event.value if self.coordinator.last_event else None,
            "pumps": {channel.id: channel.dispensing for channel in self.actuators.channels()},
            "leds": {button.id: self.hardware.led_state(button.id).mode.value for button in self.settings.buttons},
        }


__all__ = ["ControllerRuntime", "ControllerCrashed"]
