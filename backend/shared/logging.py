"""Structured logging for the relay, built on structlog over stdlib logging.

Every record carries the static service fields passed to setup_logging
(service name, chain id, operator address), then whatever the current
connection has bound as contextvars. Values coming back from web3 as raw
bytes, such as transaction hashes, are rendered as 0x hex. Fields named like
key material are masked before any renderer sees them.
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import structlog

if TYPE_CHECKING:
    from collections.abc import Mapping, MutableMapping
    from typing import Any

    from structlog.typing import Processor

LogFormat = Literal["json", "console"]

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
REDACTED = "***"

# HTTP transport of the RPC provider, web3 internals and the uvicorn socket layer.
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "aiohttp", "web3", "websockets")
_SECRET_KEY_MARKERS = ("private_key", "secret", "mnemonic")


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_KEY_MARKERS)


def _render_value(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes | bytearray):
        return "0x" + bytes(value).hex()
    if isinstance(value, dict):
        return {k: REDACTED if _is_secret_key(str(k)) else _render_value(v) for k, v in value.items()}
    return value


def normalize_values(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Mask secrets, and turn enums and raw bytes into JSON-friendly values."""
    for key, value in event_dict.items():
        event_dict[key] = REDACTED if _is_secret_key(key) else _render_value(value)
    return event_dict


def _add_static_fields(fields: Mapping[str, object]) -> Processor:
    def processor(
        _logger: object,
        _method_name: str,
        event_dict: MutableMapping[str, Any],
    ) -> MutableMapping[str, Any]:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def build_processors(static_fields: Mapping[str, object] | None = None) -> list[Processor]:
    """The structlog chain up to the stdlib hand-off.

    format_exc_info is left to the handler formatter so a traceback is
    rendered once per handler.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]
    if static_fields:
        processors.append(_add_static_fields(dict(static_fields)))
    processors += [
        structlog.processors.TimeStamper(fmt="iso"),
        normalize_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    return processors


def configure_structlog(static_fields: Mapping[str, object] | None = None) -> None:
    structlog.configure(
        processors=build_processors(static_fields),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _handler_formatter(log_format: LogFormat, *, colors: bool) -> logging.Formatter:
    renderer = (
        structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer(colors=colors)
    )
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def setup_logging(
    *,
    level: int | str = logging.INFO,
    log_format: LogFormat = "console",
    log_dir: Path | str | None = None,
    static_fields: Mapping[str, object] | None = None,
) -> Path | None:
    """Route structlog and stdlib logging to stdout and, optionally, a file.

    Returns the path of the timestamped log file when log_dir is given.
    """
    configure_structlog(static_fields)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(_handler_formatter(log_format, colors=sys.stdout.isatty()))
    root_logger.addHandler(stdout_handler)

    if log_dir is None:
        return None

    dir_path = Path(log_dir)
    dir_path.mkdir(parents=True, exist_ok=True)
    file_path = dir_path / f"relay_{datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"
    file_handler = logging.FileHandler(file_path)
    file_handler.setFormatter(_handler_formatter(log_format, colors=False))
    root_logger.addHandler(file_handler)
    return file_path
