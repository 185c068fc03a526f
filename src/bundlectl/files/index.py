"""Entry point of the deployable server.

Run with ``python index.py``. Listener, limits and telemetry are configured
through environment variables; see ``runtime/config.py``.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from runtime.config import ServerConfig
from runtime.lifecycle import LifecycleCoordinator
from runtime.logging import configure_logging

from SERVER import Server
from MANIFEST import base, manifest

build_options = BUILD_OPTIONS
root = Path(__file__).resolve().parent

config = ServerConfig.resolve(build_options, os.environ, env_prefix=ENV_PREFIX)
server = Server(manifest)

path = base or "/"
host = config.host
port = config.port


def main() -> int:
    configure_logging()
    coordinator = LifecycleCoordinator(
        server,
        config,
        client_dir=root / "client",
        prerendered_dir=root / "prerendered",
    )
    return asyncio.run(coordinator.run())


if __name__ == "__main__":
    sys.exit(main())
