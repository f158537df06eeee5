"""Structured logging setup: structlog processors over stdlib handlers, with redaction."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOG_FILENAME: Final[str] = "snippet-forge.jsonl"
_DEFAULT_LOGGER_NAME: Final[str] = "snippet_forge"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "authorization",
    "credential",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_PROVIDER_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-(?:or-v1-)?[A-Za-z0-9_-]{12,}\b")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging options resolved from the ``[logging]`` config section."""

    level: int | str = "INFO"
    json: bool = False
    log_dir: Path | str | None = None
    log_filename: str = _DEFAULT_LOG_FILENAME
    logger_name: str = _DEFAULT_LOGGER_NAME
    log_to_stderr: bool = True


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """
    Configure stdlib handlers and route structlog through them.

    Calling again replaces handlers installed by a previous call, so CLI invocations and
    tests can reconfigure freely.
    """
    cfg = config or LoggingConfig()
    level = _parse_log_level(cfg.level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_processor,
    ]
    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if cfg.json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    logger = logging.getLogger(cfg.logger_name)
    for handler in tuple(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if cfg.log_to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    if cfg.log_dir is not None:
        log_dir = Path(cfg.log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / cfg.log_filename, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(sort_keys=True),
                ],
            )
        )
        logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    return logger


def setup_logging(
    logging_section: Mapping[str, object] | None = None,
    *,
    log_dir: Path | str | None = None,
    verbose: bool = False,
) -> logging.Logger:
    """Configure logging from a ``[logging]`` config mapping."""
    cfg = dict(logging_section or {})
    raw_level = cfg.get("level", "INFO")
    level: int | str = raw_level if isinstance(raw_level, (int, str)) else "INFO"
    if verbose:
        level = "DEBUG"
    raw_dir = log_dir if log_dir is not None else cfg.get("log_dir")
    return configure_logging(
        LoggingConfig(
            level=level,
            json=bool(cfg.get("json", False)),
            log_dir=raw_dir if isinstance(raw_dir, (str, Path)) and str(raw_dir) else None,
        )
    )


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields onto every log line emitted in scope."""
    bound = {key: value for key, value in fields.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def redact_processor(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor masking credential-looking keys and values."""
    for key in tuple(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_text(text: str) -> str:
    # Bearer tokens first; the assignment pattern would otherwise consume only "Bearer".
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", text)
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", redacted
    )
    return _PROVIDER_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "LoggingConfig",
    "configure_logging",
    "correlation_scope",
    "redact_processor",
    "redact_text",
    "setup_logging",
]
