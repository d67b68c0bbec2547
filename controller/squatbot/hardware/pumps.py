"""Pump control with a single-flight guarantee per dispensing channel."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..config import ChannelSettings
from .gpio import HIGH, LOW, OutputPin, PinFactory

logger = logging.getLogger(__name__)

DEFAULT_TUBE_VOLUME_CL = 50.0


class UnknownChannelError(KeyError):
    """Raised when a channel id is not configured."""


def dispense_duration_ms(dose_cl: float, flow_rate_ml_per_min: float) -> float:
    """Pump on-time for ``dose_cl`` centiliters at the calibrated flow rate."""
    return dose_cl * 10 / (flow_rate_ml_per_min / 60) * 1000


@dataclass
class Channel:
    id: str
    display_name: str
    contains_alcohol: bool
    flow_rate_ml_per_min: float
    pin: OutputPin
    dispensing: bool = False
    # bumped on every dispense/stop so a stale timer never ends a newer dispense
    generation: int = 0


class ActuatorController:
    """Owns the pumps. Pumps are active low: LOW runs the pump, HIGH stops it."""

    def __init__(
        self,
        channels: Iterable[ChannelSettings],
        pins: PinFactory,
        *,
        tube_volume_cl: float = DEFAULT_TUBE_VOLUME_CL,
        debug: bool = False,
    ) -> None:
        self.tube_volume_cl = tube_volume_cl
        self.debug = debug
        self._channels: Dict[str, Channel] = {}
        for cfg in channels:
            pin = pins.output(cfg.gpio, initial=HIGH)  # disabled by default
            self._channels[cfg.name] = Channel(
                id=cfg.name,
                display_name=cfg.display_name or cfg.name,
                contains_alcohol=cfg.contains_alcohol,
                flow_rate_ml_per_min=cfg.flow_rate_ml_per_min,
                pin=pin,
            )
            logger.info(
                "Channel: %s, %s, GPIO %d",
                cfg.name,
                "alcohol" if cfg.contains_alcohol else "no alcohol",
                cfg.gpio,
            )

    def channels(self) -> List[Channel]:
        return list(self._channels.values())

    def channel(self, channel_id: str) -> Channel:
        try:
            return self._channels[channel_id]
        except KeyError:
            raise UnknownChannelError(channel_id) from None

    def channel_at(self, index: int) -> Optional[Channel]:
        channels = self.channels()
        if 0 <= index < len(channels):
            return channels[index]
        return None

    async def dispense(self, channel_id: str, dose_cl: float) -> None:
        """Run the pump long enough to deliver ``dose_cl``; rejects reentry."""
        channel = self.channel(channel_id)
        duration_ms = dispense_duration_ms(dose_cl, channel.flow_rate_ml_per_min)

        if channel.dispensing:
            logger.warning("Already dispensing %s - rejecting new request for %.1f cl", channel.id, dose_cl)
            return

        logger.info("Dispensing %.1f cl of %s over %.0f ms", dose_cl, channel.id, duration_ms)
        channel.dispensing = True
        channel.generation += 1
        generation = channel.generation
        try:
            await channel.pin.write(LOW)
        except Exception:
            channel.dispensing = False
            raise

        await asyncio.sleep(duration_ms / 1000)

        if channel.generation != generation:
            if self.debug:
                logger.debug("Dispense of %s superseded before its timer ran out", channel.id)
            return
        try:
            await channel.pin.write(HIGH)
        finally:
            channel.dispensing = False
        logger.info("Dispensing %s finished", channel.id)

    async def stop(self, channel_id: str) -> None:
        """Stop the pump at once; a pending dispense timer becomes a no-op."""
        channel = self.channel(channel_id)
        logger.info("Stopping pump %s", channel.id)
        channel.generation += 1
        try:
            await channel.pin.write(HIGH)
        finally:
            channel.dispensing = False
        logger.info("Pump %s stopped", channel.id)

    async def stop_all(self) -> None:
        for channel in self.channels():
            await self.stop(channel.id)

    async def fill_on_start(self, channel_id: str) -> None:
        """Prime the tubing of a channel."""
        await self.dispense(channel_id, self.tube_volume_cl)

    async def empty_on_finish(self, channel_id: str) -> None:
        """Purge the tubing of a channel at the end of the day."""
        await self.dispense(channel_id, self.tube_volume_cl)

    async def toggle(self, index: int) -> bool:
        """Maintenance trigger by channel position. Returns True if a dispense ran."""
        channel = self.channel_at(index)
        if channel is None:
            logger.warning("No channel at index %d (have %d)", index, len(self._channels))
            return False
        if channel.dispensing:
            logger.info("Toggle %d: %s already dispensing, ignoring", index, channel.id)
            return False
        await self.dispense(channel.id, self.tube_volume_cl)
        return True


__all__ = ["ActuatorController", "Channel", "UnknownChannelError", "dispense_duration_ms"]
