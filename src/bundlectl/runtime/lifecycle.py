"""Process lifecycle: start, listen, drain, terminate.

Every shutdown trigger (SIGTERM, SIGINT, an unhandled exception reported by
the event loop) is put on one queue. :meth:`LifecycleCoordinator.run`
consumes the first message and drains; later messages are ignored, so two
signals in a row never start two drains.

Drain order:

1. arm the deadline timer;
2. stop listening and wait for in-flight HTTP requests;
3. close every upgraded connection with GOING_AWAY, then release the runner;
4. flush telemetry;
5. cancel the deadline.

If the deadline fires first, ``exit_func(1)`` is called immediately.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Callable, Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog
from aiohttp import web

from .config import ServerConfig
from .errors import ShutdownFailure, StartupFailure
from .pipeline import build_application
from .state import PipelineState
from .telemetry import Telemetry
from .upgrade import UpgradeChannel

log = structlog.get_logger("runtime.lifecycle")

SIGNALS = (signal.SIGTERM, signal.SIGINT)


class LifecycleState(StrEnum):
    STARTING = "starting"
    LISTENING = "listening"
    DRAINING = "draining"
    TERMINATED = "terminated"


class LifecycleCoordinator:
    """Owns the listener, the runner, the upgrade channel and the shutdown flag.

    Args:
        server: The embedded application server.
        config: Resolved :class:`ServerConfig`.
        client_dir: Immutable client asset root.
        prerendered_dir: Pre-rendered page root.
        env: Passed to ``server.init``; defaults to ``os.environ``.
        exit_func: Called with 1 when the drain deadline fires.
        handle_signals: Install SIGTERM/SIGINT handlers on the loop.
    """

    def __init__(
        self,
        server: Any,
        config: ServerConfig,
        *,
        client_dir: Path,
        prerendered_dir: Path,
        env: Mapping[str, str] | None = None,
        exit_func: Callable[[int], Any] = os._exit,
        handle_signals: bool = True,
        telemetry: Telemetry | None = None,
    ) -> None:
        self.server = server
        self.config = config
        self.client_dir = client_dir
        self.prerendered_dir = prerendered_dir
        self.env = dict(os.environ if env is None else env)
        self.exit_func = exit_func
        self.handle_signals = handle_signals
        self.telemetry = telemetry or Telemetry(config.telemetry)

        self.pipeline = PipelineState()
        self.channel: UpgradeChannel | None = None
        self.runner: web.AppRunner | None = None
        self.listener: asyncio.Server | None = None
        self.state = LifecycleState.STARTING
        self.history: list[LifecycleState] = [self.state]
        self.ready = asyncio.Event()

        self._triggers: asyncio.Queue[str] = asyncio.Queue()
        self._drain_task: asyncio.Task[None] | None = None
        self._deadline_fired = False
        self._loop: asyncio.AbstractEventLoop | None = None

    # --- state --------------------------------------------------------

    @property
    def shutting_down(self) -> bool:
        return self.pipeline.shutting_down

    @property
    def port(self) -> int | None:
        """The bound port (useful when configured with port 0)."""
        if self.listener is None or not self.listener.sockets:
            return None
        return self.listener.sockets[0].getsockname()[1]

    def _transition(self, state: LifecycleState) -> None:
        log.info("lifecycle.transition", previous=str(self.state), state=str(state))
        self.state = state
        self.history.append(state)

    # --- triggers -----------------------------------------------------

    def trigger(self, reason: str) -> None:
        """Request shutdown. Only the first request has any effect."""
        if self.pipeline.shutting_down:
            log.info("shutdown.already_requested", reason=reason)
            return
        log.info("shutdown.requested", reason=reason)
        self.pipeline.begin_shutdown()
        self._triggers.put_nowait(reason)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        log.error(
            "lifecycle.unhandled_exception",
            message=context.get("message"),
            error=repr(exc) if exc else None,
        )
        self.trigger("fault")

    def _install_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.set_exception_handler(self._on_loop_exception)
        if not self.handle_signals:
            return
        for sig in SIGNALS:
            try:
                loop.add_signal_handler(sig, self.trigger, sig.name)
            except (NotImplementedError, RuntimeError):
                log.warning("lifecycle.signal_unsupported", signal=sig.name)

    def _remove_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.set_exception_handler(None)
        if not self.handle_signals:
            return
        for sig in SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    # --- starting -----------------------------------------------------

    async def start(self) -> None:
        """Bring the server up and move to LISTENING.

        Raises:
            StartupFailure: If the embedded server fails to initialise or the
                listener cannot bind.
        """
        loop = asyncio.get_running_loop()
        self._loop = loop
        self.telemetry.start()

        try:
            await self.server.init(env=self.env)
        except Exception as exc:
            msg = f"Server initialisation failed: {exc}"
            raise StartupFailure(msg) from exc

        if self.config.websocket_enabled:
            self.channel = UpgradeChannel(self.server, self.config.websocket_path, self.pipeline)
        app = build_application(
            self.server,
            self.config,
            self.pipeline,
            client_dir=self.client_dir,
            prerendered_dir=self.prerendered_dir,
            channel=self.channel,
            telemetry=self.telemetry,
        )
        self.runner = web.AppRunner(
            app,
            handle_signals=False,
            access_log=None,
            keepalive_timeout=self.config.keep_alive_timeout / 1000,
        )
        await self.runner.setup()
        try:
            self.listener = await loop.create_server(
                self.runner.server, self.config.host, self.config.port
            )
        except OSError as exc:
            await self.runner.cleanup()
            msg = f"Could not listen on {self.config.host}:{self.config.port}: {exc}"
            raise StartupFailure(msg) from exc

        self._install_handlers(loop)
        self._transition(LifecycleState.LISTENING)
        log.info("server.listening", host=self.config.host, port=self.port)
        self.ready.set()

    # --- draining -----------------------------------------------------

    async def run(self) -> int:
        """Start, wait for the first trigger, drain. Returns the exit code."""
        try:
            await self.start()
        except StartupFailure as exc:
            log.error("server.start_failed", error=str(exc))
            await self.telemetry.shutdown()
            self._transition(LifecycleState.TERMINATED)
            return 1
        reason = await self._triggers.get()
        return await self.drain(reason)

    async def drain(self, reason: str) -> int:
        loop = asyncio.get_running_loop()
        self.pipeline.begin_shutdown()
        self._transition(LifecycleState.DRAINING)
        log.info("shutdown.draining", reason=reason)

        timeout = self.config.graceful_shutdown_timeout / 1000
        deadline = loop.call_later(timeout, self._deadline_expired)
        self._drain_task = asyncio.ensure_future(self._drain_steps())
        code = 0
        try:
            await self._drain_task
        except asyncio.CancelledError:
            if not self._deadline_fired:
                raise
            code = 1
        except ShutdownFailure as exc:
            log.error("shutdown.failed", error=str(exc), cause=repr(exc.__cause__))
            code = 1
        finally:
            deadline.cancel()
            self._remove_handlers(loop)

        self._transition(LifecycleState.TERMINATED)
        log.info("shutdown.complete", exit_code=code)
        return code

    def _deadline_expired(self) -> None:
        self._deadline_fired = True
        log.error(
            "shutdown.deadline_exceeded",
            timeout_ms=self.config.graceful_shutdown_timeout,
        )
        self.exit_func(1)
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()

    async def _step(self, name: str, action: Callable[[], Any]) -> None:
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            msg = f"Shutdown step '{name}' failed: {exc}"
            raise ShutdownFailure(msg) from exc

    async def _drain_steps(self) -> None:
        await self._step("listener", self._stop_listening)
        await self._step("upgrades", self._close_upgrades)
        await self._step("telemetry", self.telemetry.shutdown)

    async def _stop_listening(self) -> None:
        if self.listener is not None:
            self.listener.close()
        log.info("shutdown.waiting_for_requests", inflight=self.pipeline.inflight)
        await self.pipeline.wait_idle()

    async def _close_upgrades(self) -> None:
        if self.channel is not None:
            await self.channel.close_all()
        if self.runner is not None:
            await self.runner.cleanup()
