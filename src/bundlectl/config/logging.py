"""structlog setup for the build tool.

Build logs go to stderr so ``--json`` results on stdout stay parseable.
``-v`` shows bundler and plugin debug lines, ``-q`` keeps errors only, and
``--log-json`` emits one JSON object per line for CI log collectors.

The generated server has its own setup in :mod:`bundlectl.runtime.logging`.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

HANDLER_NAME = "bundlectl-cli"

# Third-party debug output that would drown the pass logs under -v.
QUIET_LOGGERS = ("asyncio", "aiohttp")


def _level(*, verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    return logging.WARNING


def _renderer(log_json: bool, stream: TextIO) -> structlog.types.Processor:
    if log_json:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=stream.isatty(), pad_event=32)


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_json: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib ``bundlectl.*`` records to one stderr handler.

    Calling it again replaces the previous handler; handlers installed by
    other code (pytest, embedding tools) are left alone.

    Args:
        verbose: DEBUG for ``bundlectl.*``; wins over *quiet*.
        quiet: ERROR only.
        log_json: JSON lines instead of the console renderer.
        stream: Defaults to ``sys.stderr``.
    """
    out = stream or sys.stderr
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(out)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_json, out),
            ],
        )
    )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger("bundlectl").setLevel(_level(verbose=verbose, quiet=quiet))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
