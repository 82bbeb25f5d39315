"""structlog setup for the trading pipeline.

Every unit of work (one alert, one strategy symbol in a signal tick, one
reconciled position) binds its identifiers with ``unit_context`` so that
the executor, the venue clients and the settlement engine log them without
passing them along:

    strategy_id   owning strategy
    symbol        venue symbol, e.g. BTCUSDT
    venue         binance | bybit
    trigger       tradingview_webhook | auto_strategy

Secrets never reach a renderer: webhook secrets and API credentials are
masked by ``redact_secrets`` whichever logger emitted them.
"""

import logging
import os
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog

REDACTED = "***"

#: Event keys whose values are masked before rendering.
SECRET_KEYS = frozenset(
    {"secret", "webhook_secret", "api_key", "api_secret", "apiKey", "password"}
)

#: Third-party loggers that echo signed requests or keyed URLs at INFO/DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "ccxt.base.exchange")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask secret values, including one level down in payload dicts."""
    for key, value in event_dict.items():
        if key in SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, dict) and SECRET_KEYS.intersection(value):
            event_dict[key] = {
                k: REDACTED if k in SECRET_KEYS and v else v for k, v in value.items()
            }
    return event_dict


@contextmanager
def unit_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every log line emitted inside the block.

    None values are skipped. Bindings are coroutine-local, so concurrent
    units never see each other's fields.
    """
    bound = {k: v for k, v in fields.items() if v is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Configure structlog with JSON or console rendering.

    log_format falls back to the LOG_FORMAT environment variable: "json"
    for production, "console" (default) for development.
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
