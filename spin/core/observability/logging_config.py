"""
Process-wide logging for the spin CLI.

``setup_logging`` runs once from the click group callback. Library modules
only ever do ``logging.getLogger(__name__)``.

Console level comes from ``--debug``/``--verbose``/``--quiet``, then
SPIN_LOG_LEVEL, then WARNING. SPIN_LOG_FILE adds a file sink, with its own
threshold in SPIN_LOG_FILE_LEVEL.

Lines printed by the provisioning tool arrive on the ``spin.tool`` logger
at INFO. They stay visible at the default level and disappear with
``--quiet``.
"""

from __future__ import annotations

import logging
import sys

TOOL_LOGGER = "spin.tool"

# ── Formats ─────────────────────────────────────────────────────

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-7s %(threadName)s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
}
_CONSOLE_DEFAULT_FORMAT = ("%(message)s", None)

_FILE_FORMAT = "%(asctime)s %(levelname)-7s %(threadName)s %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# boto3 and friends log every HTTP round trip below WARNING
_NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
    tool_output: bool = True,
) -> None:
    """Install handlers on the root logger, replacing any existing ones.

    Args:
        level: Console level name.
        log_file: Append log records to this file as well.
        log_file_level: Threshold for the file; defaults to ``level``.
        quiet_third_party: Pin the AWS SDK loggers to WARNING unless the
            console is at DEBUG.
        tool_output: Relay tool output to stderr even when the console
            level would hide INFO records.
    """
    console_level = _parse_level(level)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level))

    lowest = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root.addHandler(_file_handler(log_file, file_level))
        lowest = min(lowest, file_level)
    root.setLevel(lowest)

    _configure_tool_logger(enabled=tool_output, console_level=console_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_DEFAULT_FORMAT
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            fmt, datefmt = _CONSOLE_FORMATS[threshold]
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _configure_tool_logger(enabled: bool, console_level: int) -> None:
    tool = logging.getLogger(TOOL_LOGGER)
    tool.handlers.clear()
    tool.propagate = True

    if not enabled or console_level <= logging.INFO:
        # Root handlers decide: verbose shows tool lines, quiet drops them
        tool.setLevel(logging.NOTSET)
        return

    relay = logging.StreamHandler(sys.stderr)
    relay.setLevel(logging.INFO)
    relay.setFormatter(logging.Formatter("%(message)s"))
    tool.addHandler(relay)
    tool.setLevel(logging.INFO)


def _parse_level(level: str | None) -> int:
    """Level name to number; unknown or empty names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING
