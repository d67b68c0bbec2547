"""Top-level loop that restarts a crashed process unless debugging."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

RESTART_BACKOFF_S = 1.0


def run_with_restart(
    main: Callable[[], Coroutine[Any, Any, None]],
    *,
    debug: bool,
    name: str,
    backoff_s: float = RESTART_BACKOFF_S,
) -> int:
    """Run ``main`` in a fresh event loop until it returns normally.

    Every restart calls ``main`` again, so nothing survives from the crashed
    run. With ``debug`` set the first error ends the process instead.
    Returns the number of restarts.
    """
    restarts = 0
    running = True
    while running:
        try:
            asyncio.run(main())
            logger.info("Exiting %s. Have a nice day, bye-bye.", name)
            running = False
        except KeyboardInterrupt:
            logger.info("Exiting %s (interrupted). Bye-bye.", name)
            running = False
        except Exception:
            logger.exception("Error in %s main loop", name)
            if debug:
                raise
            restarts += 1
            logger.warning("Restarting %s (restart #%d) in %.1fs", name, restarts, backoff_s)
            time.sleep(backoff_s)
    return restarts


__all__ = ["run_with_restart"]
