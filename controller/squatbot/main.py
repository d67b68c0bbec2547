"""FastAPI entry-point for the SquatBot hardware host."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import psutil
import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .hardware.buttons import monotonic_ms
from .lifecycle import run_with_restart
from .logging_config import configure_logging
from .runtime import ControllerCrashed, ControllerRuntime
from .state import ButtonLevel

logger = logging.getLogger(__name__)

# maintenance keys: f1..f12 toggle channels 0..11
DEBUG_KEY_MAP = {f"f{number}": number - 1 for number in range(1, 13)}


class KeypressRequest(BaseModel):
    key: str


class ButtonPressRequest(BaseModel):
    hold_ms: float = Field(200.0, ge=0)


def create_app(settings: Settings, runtime: Optional[ControllerRuntime] = None) -> FastAPI:
    app = FastAPI(title="squatbot-controller", version="0.1.0")
    app.state.settings = settings
    app.state.runtime = runtime

    def current_runtime() -> ControllerRuntime:
        if app.state.runtime is None:
            raise RuntimeError("controller runtime not started")
        return app.state.runtime

    def start_toggle(index: int) -> JSONResponse:
        runtime = current_runtime()
        channel = runtime.actuators.channel_at(index)
        if channel is None:
            return JSONResponse({"status": "error", "message": f"No channel at index {index}"}, status_code=404)
        if channel.dispensing:
            logger.info("Toggle %d ignored: %s already dispensing", index, channel.id)
            return JSONResponse({"status": "busy", "channel": channel.id})
        runtime.coordinator.spawn(runtime.actuators.toggle(index), name=f"toggle-{channel.id}")
        return JSONResponse({"status": "dispensing", "channel": channel.id})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.on_event("startup")
    async def on_startup() -> None:
        if app.state.runtime is None:
            app.state.runtime = ControllerRuntime(settings)
        await app.state.runtime.start()
        logger.info("Application started successfully")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await current_runtime().stop()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", **current_runtime().status()})

    @app.get("/debug/performance")
    async def debug_performance() -> JSONResponse:
        """Get real-time CPU and memory usage."""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()

            return JSONResponse({
                "cpu_percent": round(cpu_percent, 1),
                "memory_percent": round(memory.percent, 1),
                "memory_used_mb": round(memory.used / (1024 * 1024), 1),
                "memory_total_mb": round(memory.total / (1024 * 1024), 1)
            })
        except Exception as e:
            logger.error(f"Performance monitoring error: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

    @app.post("/debug/keypress")
    async def debug_keypress(payload: KeypressRequest) -> JSONResponse:
        """Maintenance keys: f1..f12 toggle the matching channel."""
        key = payload.key.lower()
        if settings.debug:
            logger.debug("key pressed: %s", key)
        index = DEBUG_KEY_MAP.get(key)
        if index is None:
            return JSONResponse({"status": "ignored", "key": key})
        return start_toggle(index)

    @app.post("/debug/pumps/{index}/toggle")
    async def debug_pump_toggle(index: int) -> JSONResponse:
        return start_toggle(index)

    @app.post("/debug/pumps/{name}/stop")
    async def debug_pump_stop(name: str) -> JSONResponse:
        runtime = current_runtime()
        try:
            await runtime.actuators.stop(name)
        except KeyError:
            return JSONResponse({"status": "error", "message": f"Unknown channel {name}"}, status_code=404)
        return JSONResponse({"status": "stopped", "channel": name})

    @app.post("/debug/buttons/{button_id}")
    async def debug_button(button_id: int, payload: ButtonPressRequest) -> JSONResponse:
        """Simulate a press/release pair held for ``hold_ms``."""
        runtime = current_runtime()
        now = monotonic_ms()
        try:
            runtime.hardware.handle_sample(button_id, ButtonLevel.PRESSED, now=now)
            runtime.hardware.handle_sample(button_id, ButtonLevel.RELEASED, now=now + int(payload.hold_ms))
        except ValueError as e:
            return JSONResponse({"status": "error", "message": str(e)}, status_code=404)
        return JSONResponse({"status": "ok", "buttons_enabled": runtime.hardware.enabled})

    @app.post("/debug/quit")
    async def debug_quit() -> JSONResponse:
        logger.info("Exiting SquatBot. Have a nice day, bye-bye.")
        current_runtime().request_quit()
        return JSONResponse({"status": "quitting"})

    @app.websocket("/ws/vision")
    async def vision_socket(ws: WebSocket) -> None:
        await ws.accept()
        runtime = current_runtime()
        logger.info("Vision client connected")
        try:
            await ws.send_json(runtime.coordinator.config_message().to_json_dict())
            while True:
                message = await ws.receive_text()
                try:
                    payload = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from vision client: %s", message)
                    continue
                if not isinstance(payload, dict):
                    logger.warning("Unexpected message from vision client: %s", message)
                    continue
                runtime.coordinator.handle_message(payload)
        except WebSocketDisconnect:
            logger.info("Vision client disconnected")
        except asyncio.CancelledError:
            pass  # Clean shutdown

    return app


async def _run_server(server: uvicorn.Server) -> None:
    try:
        await server.serve()
    except SystemExit as e:
        # uvicorn exits the process when the startup hooks fail; let serve() decide
        logger.error(f"Server exited during startup (code {e.code})")


async def serve(settings: Settings, runtime: Optional[ControllerRuntime] = None) -> None:
    """Serve until quit, Ctrl-C or a runtime failure (raised as ControllerCrashed)."""
    runtime = runtime or ControllerRuntime(settings)
    app = create_app(settings, runtime)
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.controller_host, port=settings.controller_port, log_config=None)
    )

    server_task = asyncio.create_task(_run_server(server), name="uvicorn")
    done_task = asyncio.create_task(runtime.wait_done(), name="runtime-watch")
    await asyncio.wait({server_task, done_task}, return_when=asyncio.FIRST_COMPLETED)

    if done_task.done():
        server.should_exit = True
        await server_task
    else:
        done_task.cancel()
        await server_task

    if not server.started:
        # startup failed before the shutdown hook could release the pins
        try:
            await runtime.stop()
        except Exception as e:
            logger.exception(f"Error releasing runtime after failed startup: {e}")

    if runtime.failure is not None:
        raise ControllerCrashed(f"controller runtime failed: {runtime.failure!r}") from runtime.failure
    if not server.started and not runtime.quit_requested:
        raise ControllerCrashed("controller failed to start")


def run() -> None:
    settings = get_settings()
    configure_logging(
        settings.effective_log_level,
        settings.log_directory,
        settings.log_retention_days,
        process_name="controller",
    )
    logger.info("SquatBot controller. Welcome.")
    logger.info("Press Ctrl-C to exit.")
    run_with_restart(lambda: serve(settings), debug=settings.debug, name="SquatBot controller")


if __name__ == "__main__":
    run()
