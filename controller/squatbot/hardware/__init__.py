"""Hardware-side controllers: pumps, buttons and LEDs."""

from .buttons import HardwareIOController
from .gpio import HardwareUnavailableError, PinFactory
from .pumps import ActuatorController, UnknownChannelError

__all__ = [
    "ActuatorController",
    "HardwareIOController",
    "HardwareUnavailableError",
    "PinFactory",
    "UnknownChannelError",
]
