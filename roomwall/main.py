"""
Workspace server entrypoint.

Resolves a configuration profile, initialises logging and serves the
control API with uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .api.server import create_app
from .config import WorkspaceConfig, load_config
from .utils.logging import configure_logging
from .workspace import Workspace

LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app) -> AsyncIterator[None]:
    LOG.info("Workspace server starting")
    try:
        yield
    finally:
        LOG.info("Workspace server shutting down")


async def serve(
    config: WorkspaceConfig,
    host: str = "127.0.0.1",
    port: int = 8080,
    *,
    profiles_path: Optional[str] = None,
) -> None:
    """
    Run the control API inside an asyncio loop.

    Parameters
    ----------
    config:
        Resolved workspace configuration.
    host, port:
        Bind address for the FastAPI/uvicorn server.
    """

    import uvicorn

    workspace = Workspace(config)
    app = create_app(workspace=workspace, config=config, lifespan=lifespan, profiles_path=profiles_path)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level="info",
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="roomwall workspace server")
    parser.add_argument("--profile", default="default", help="configuration profile to load")
    parser.add_argument("--profiles", default=None, help="path to a profiles YAML file")
    parser.add_argument("--host", default="127.0.0.1", help="bind host for the API server")
    parser.add_argument("--port", type=int, default=8080, help="bind port for the API server")
    parser.add_argument("--log-level", default="INFO", help="root log level")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = load_config(args.profile, args.profiles)

    try:
        asyncio.run(serve(config=config, host=args.host, port=args.port, profiles_path=args.profiles))
    except KeyboardInterrupt:
        LOG.info("Workspace server interrupted by user.")


if __name__ == "__main__":
    run()
