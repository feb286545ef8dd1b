# src/vaultbench/core/logging.py
"""Logging for vaultbench: structlog setup and the METRIC line.

Every benchmark number vaultbench produces leaves the process as a METRIC
log event, emitted through ``log_metric``. Log-based dashboards read those
lines field by field (``grep -oE 'batch_size=[0-9]+'``,
``instance=[^ ]+``), so in console mode a METRIC event is rendered as one
flat, unpadded ``METRIC key=value ...`` line instead of the usual console
layout. With ``--json-logs`` it is an ordinary JSON object whose
``event`` is ``"METRIC"``.

stdlib records (httpx, uvicorn) go through the same ProcessorFormatter
chain, so library output and vaultbench output share one format.
"""

import logging
import sys
from collections.abc import Callable, Mapping
from typing import Any, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

METRIC_EVENT = "METRIC"
METRIC_LOGGER_NAME = "vaultbench.metrics"

# One line per HTTP request during a fan-out
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "uvicorn.access")

# ProcessorFormatter bookkeeping, plus layout fields a METRIC line omits
_INTERNAL_FIELDS: tuple[str, ...] = ("_record", "_from_structlog")
_METRIC_DROPPED_FIELDS: tuple[str, ...] = ("event", "level", "timestamp", "logger")

Renderer = Callable[[Any, str, dict[str, Any]], str]


def _drop_internal_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in _INTERNAL_FIELDS:
        event_dict.pop(key, None)
    return event_dict


def _format_metric_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.1f}"
    text = str(value)
    # Spaces would split one field into two for a field-by-field grep
    return text.replace(" ", "_") if text else "unknown"


class MetricLineRenderer:
    """Render METRIC events as ``METRIC k=v k=v ...`` and defer the rest.

    Field order is the order the emitter passed them in. Floats get one
    decimal, matching ``dedup_pct=33.3``.
    """

    def __init__(self, fallback: Renderer) -> None:
        self._fallback = fallback

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> str:
        if event_dict.get("event") != METRIC_EVENT:
            return self._fallback(logger, method_name, event_dict)

        fields = [
            f"{key}={_format_metric_value(value)}"
            for key, value in event_dict.items()
            if key not in _METRIC_DROPPED_FIELDS
        ]
        return " ".join([METRIC_EVENT, *fields])


def log_metric(fields: Mapping[str, Any], *, log: Any = None) -> None:
    """Emit one METRIC event.

    This is the only place METRIC events are logged; the batch processor
    and the request handler both come through here.

    Args:
        fields: Metric fields, in output order
        log: Logger to use (the ``vaultbench.metrics`` logger if None)
    """
    (log or structlog.get_logger(METRIC_LOGGER_NAME)).info(METRIC_EVENT, **fields)


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging to one handler.

    Args:
        json_output: JSON lines instead of console output
        level: Root log level name
        stream: Output stream; stdout if None. The CLI passes stderr
            because stdout carries result rows.
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: Renderer
    if json_output:
        renderer = structlog.processors.JSONRenderer()
        final_processors: list[Any] = [_drop_internal_fields, structlog.processors.format_exc_info, renderer]
    else:
        renderer = MetricLineRenderer(structlog.dev.ConsoleRenderer(colors=False, sort_keys=False))
        final_processors = [_drop_internal_fields, renderer]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    # METRIC events pass at any root level
    logging.getLogger(METRIC_LOGGER_NAME).setLevel(logging.INFO)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
