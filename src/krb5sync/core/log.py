"""
krb5sync Logging Setup

structlog is used throughout the package with event-style messages. This
module wires it to the standard library so that messages land in syslog
under the auth facility, next to kadmind's own logs, or on stderr for the
command-line tools.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from typing import Optional

import structlog

SYSLOG_SOCKET = "/dev/log"


def configure_logging(
    syslog: bool = True,
    level: str = "info",
    program: str = "krb5-sync",
    stream: Optional[object] = None,
) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        syslog: Log to syslog (auth facility) when the socket is available
        level: Minimum level name (debug, info, warning, error)
        program: Identifier prepended to syslog messages
        stream: Stream for non-syslog output (defaults to stderr)
    """
    handler: logging.Handler
    if syslog and os.path.exists(SYSLOG_SOCKET):
        handler = logging.handlers.SysLogHandler(
            address=SYSLOG_SOCKET,
            facility=logging.handlers.SysLogHandler.LOG_AUTH,
        )
        handler.setFormatter(logging.Formatter(f"{program}[{os.getpid()}]: %(message)s"))
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(f"{program}: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(
                key_order=["level", "event"],
                drop_missing=True,
            ),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
