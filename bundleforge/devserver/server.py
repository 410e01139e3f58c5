"""Development server runner."""

from __future__ import annotations

import asyncio
import socket

import uvicorn

from ..core.config import BuildTarget, Config, get_config
from ..core.exceptions import ConfigError
from ..core.logging import get_logger
from ..orchestration.flows import make_coordinator
from .app import create_app
from .hub import LiveReloadHub
from .session import DevSession

logger = get_logger(__name__)


def ensure_port_available(host: str, port: int) -> None:
    """Raise ConfigError when ``host:port`` cannot be bound."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            raise ConfigError(
                message=f"Port {port} on {host} is not available: {e.strerror or e}",
                option="devServerPort",
                cause=e,
            ) from e


def _log_task_exit(task: asyncio.Task) -> None:
    """Log a background task that stopped for any reason other than shutdown."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "Background task died, live reload stopped",
            task=task.get_name(),
            error=f"{type(error).__name__}: {error}",
            exc_info=error,
        )


async def serve(target: BuildTarget, config: Config | None = None) -> None:
    """Build once, then serve the output with live reload until interrupted.

    Build failures never stop the server; only startup problems (invalid
    configuration, port in use) raise.
    """
    config = config or get_config()
    target.validate_inputs()
    host = config.devserver.host
    ensure_port_available(host, target.dev_server_port)

    coordinator = make_coordinator(target, config)
    hub = LiveReloadHub()
    session = DevSession(coordinator, hub, config.devserver)
    await session.watcher.prime()
    await session.initial_build()

    app = create_app(target, session=session, config=config.devserver)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=host,
            port=target.dev_server_port,
            log_level=config.log_level.lower(),
            lifespan="off",
        )
    )

    stop = asyncio.Event()
    tasks = [
        asyncio.create_task(session.watcher.run(stop), name="bundleforge-watcher"),
        asyncio.create_task(session.run(stop), name="bundleforge-session"),
    ]
    for task in tasks:
        task.add_done_callback(_log_task_exit)
    logger.info("Dev server listening", url=f"http://{host}:{target.dev_server_port}/", mode=target.mode)
    try:
        await server.serve()
    finally:
        stop.set()
        for task in tasks:
            task.cancel()
        # failures were already logged by _log_task_exit
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Dev server stopped")
