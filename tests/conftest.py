from __future__ import annotations

from typing import List

import pytest

from squatbot.config import ButtonSettings, ChannelSettings, GameConfig, Settings
from squatbot.hardware.gpio import PinFactory

# 6000 ml/min = 100 ml/s, so 0.1 cl runs a pump for 10 ms
FAST_FLOW = 6000.0


def make_settings(**overrides) -> Settings:
    values = dict(
        debug=False,
        enable_hardware=False,
        log_level="INFO",
        min_hold_duration_ms=100.0,
        drink_dose_cl=0.1,
        tube_volume_cl=0.1,
        game=GameConfig(),
        channels=[
            ChannelSettings(name="vodka", display_name="Vodka", contains_alcohol=True, gpio=17, flow_rate_ml_per_min=FAST_FLOW),
            ChannelSettings(name="juice", display_name="Juice", gpio=27, flow_rate_ml_per_min=FAST_FLOW),
        ],
        buttons=[
            ButtonSettings(id=1, button_gpio=5, led_gpio=7, channel="vodka"),
            ButtonSettings(id=2, button_gpio=6, led_gpio=8, channel="juice"),
        ],
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


def written(pin) -> List[int]:
    """Levels a mock-backed pin was driven to since it was opened."""
    return [int(change.state) for change in pin.device.pin.states[1:]]


def break_pin(pin) -> None:
    """Make every further write to ``pin`` fail like a lost driver."""
    pin.device.pin.function = "input"


@pytest.fixture
def pins():
    factory = PinFactory(enable_hardware=False)
    yield factory
    factory.close_all()
