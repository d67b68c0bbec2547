from __future__ import annotations

import asyncio

import pytest
from gpiozero.exc import PinSetInput

from squatbot.config import ChannelSettings
from squatbot.hardware.gpio import HIGH, LOW
from squatbot.hardware.pumps import ActuatorController, UnknownChannelError, dispense_duration_ms

from .conftest import FAST_FLOW, break_pin, written


@pytest.fixture
def pumps(settings, pins) -> ActuatorController:
    return ActuatorController(settings.channels, pins, tube_volume_cl=0.1)


def test_duration_converts_centiliters_at_flow_rate():
    # 50 cl = 500 ml at 109 ml/min
    assert dispense_duration_ms(50, 109) == pytest.approx(500 / (109 / 60) * 1000)
    assert dispense_duration_ms(1, 6000) == pytest.approx(100.0)


def test_pumps_start_disabled(pumps):
    for channel in pumps.channels():
        assert channel.pin.value == HIGH
        assert channel.dispensing is False


async def test_dispense_runs_pump_for_dose(pumps):
    channel = pumps.channel("vodka")
    task = asyncio.create_task(pumps.dispense("vodka", 0.5))
    await asyncio.sleep(0)

    assert channel.dispensing is True
    assert channel.pin.value == LOW

    await task
    assert channel.dispensing is False
    assert channel.pin.value == HIGH
    assert written(channel.pin) == [HIGH, LOW, HIGH]


async def test_dispense_rejects_reentry_without_state_change(pumps):
    channel = pumps.channel("vodka")
    task = asyncio.create_task(pumps.dispense("vodka", 0.5))
    await asyncio.sleep(0)
    history = list(written(channel.pin))

    await pumps.dispense("vodka", 5.0)

    assert written(channel.pin) == history
    assert channel.dispensing is True
    await task
    assert written(channel.pin) == [HIGH, LOW, HIGH]


async def test_channels_are_independent(pumps):
    first = asyncio.create_task(pumps.dispense("vodka", 0.5))
    second = asyncio.create_task(pumps.dispense("juice", 0.5))
    await asyncio.sleep(0)

    assert pumps.channel("vodka").dispensing
    assert pumps.channel("juice").dispensing
    await asyncio.gather(first, second)


async def test_stop_deasserts_immediately(pumps):
    channel = pumps.channel("juice")
    task = asyncio.create_task(pumps.dispense("juice", 10.0))
    await asyncio.sleep(0)

    await pumps.stop("juice")

    assert channel.dispensing is False
    assert channel.pin.value == HIGH
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def test_stale_timer_does_not_end_newer_dispense(pumps):
    channel = pumps.channel("vodka")
    old = asyncio.create_task(pumps.dispense("vodka", 0.2))  # 20 ms
    await asyncio.sleep(0)
    await pumps.stop("vodka")

    new = asyncio.create_task(pumps.dispense("vodka", 1.0))  # 100 ms
    await old

    assert channel.dispensing is True
    assert channel.pin.value == LOW
    await new
    assert channel.dispensing is False
    assert channel.pin.value == HIGH


async def test_drive_failure_propagates(pumps):
    channel = pumps.channel("vodka")
    break_pin(channel.pin)

    with pytest.raises(PinSetInput):
        await pumps.dispense("vodka", 0.1)
    assert channel.dispensing is False


async def test_unknown_channel_raises(pumps):
    with pytest.raises(UnknownChannelError):
        await pumps.dispense("absinthe", 1.0)


async def test_fill_and_empty_use_tube_volume(pins):
    pumps = ActuatorController(
        [ChannelSettings(name="rum", gpio=4, flow_rate_ml_per_min=FAST_FLOW)], pins, tube_volume_cl=0.2
    )
    loop = asyncio.get_running_loop()

    started = loop.time()
    await pumps.fill_on_start("rum")
    await pumps.empty_on_finish("rum")

    assert loop.time() - started >= 0.035
    assert written(pumps.channel("rum").pin) == [HIGH, LOW, HIGH, LOW, HIGH]


async def test_toggle_dispenses_when_idle(pumps):
    assert await pumps.toggle(1) is True
    assert written(pumps.channel("juice").pin) == [HIGH, LOW, HIGH]


async def test_toggle_is_noop_while_dispensing(pumps):
    task = asyncio.create_task(pumps.dispense("vodka", 0.5))
    await asyncio.sleep(0)

    assert await pumps.toggle(0) is False
    await task
    assert written(pumps.channel("vodka").pin) == [HIGH, LOW, HIGH]


async def test_toggle_out_of_range_is_ignored(pumps):
    assert await pumps.toggle(11) is False
