"""
Prime or purge the pump tubing
Run before opening (fill) and after closing (empty)
"""

import argparse
import asyncio
import logging
import sys

from .config import get_settings
from .hardware import ActuatorController, PinFactory, UnknownChannelError

logger = logging.getLogger(__name__)


async def run(action: str, names: list, simulate: bool) -> int:
    settings = get_settings()
    pins = PinFactory(enable_hardware=settings.enable_hardware and not simulate)
    pumps = ActuatorController(settings.channels, pins, tube_volume_cl=settings.tube_volume_cl)
    selected = names or [channel.id for channel in pumps.channels()]
    logger.debug("Priming action=%s channels=%s simulate=%s", action, selected, simulate)

    print(f"🔧 {action.title()} {len(selected)} channel(s) with {settings.tube_volume_cl:.0f} cl each")
    try:
        for name in selected:
            print(f"   → {name}")
            if action == "fill":
                await pumps.fill_on_start(name)
            else:
                await pumps.empty_on_finish(name)
    except UnknownChannelError as e:
        print(f"❌ Unknown channel: {e}")
        return 1
    finally:
        await pumps.stop_all()
        pins.close_all()

    print("✅ Done")
    return 0


def parse():
    ap = argparse.ArgumentParser(description="Fill or empty the SquatBot pump tubing")
    ap.add_argument("action", choices=["fill", "empty"])
    ap.add_argument("channels", nargs="*", help="Channel names (default: all)")
    ap.add_argument("--simulate", action="store_true", help="Use simulated pins")
    ap.add_argument("--log", default="info", choices=["debug", "info", "warn", "error"])
    return ap.parse_args()


def main() -> None:
    args = parse()
    lvl = dict(debug=logging.DEBUG, info=logging.INFO, warn=logging.WARNING, error=logging.ERROR)[args.log]
    logging.basicConfig(level=lvl, format="%(asctime)s | %(levelname)s | %(message)s")
    sys.exit(asyncio.run(run(args.action, args.channels, args.simulate)))


if __name__ == "__main__":
    main()
