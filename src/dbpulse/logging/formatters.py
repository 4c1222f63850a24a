"""Log formatters for DBPulse.

Both formatters are ``structlog.stdlib.ProcessorFormatter`` subclasses: events
from DBPulse loggers arrive already processed by structlog and are rendered
once here, while plain stdlib records (asyncpg, aiomysql, pyodbc) run through
a short pre-chain first so both end up with the same fields.

Classes:
    JSONFormatter: One JSON object per record, for log aggregation
    TextFormatter: Human-readable console lines

Example:
    >>> handler.setFormatter(get_formatter("json"))
"""

from typing import Any, Iterable, List, Optional

import structlog
from structlog.stdlib import ProcessorFormatter
from structlog.typing import EventDict, Processor, WrappedLogger


class DropFields:
    """Processor removing the named keys from every event."""

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = frozenset(fields)

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        for field in self.fields:
            event_dict.pop(field, None)
        return event_dict


def foreign_pre_chain(timestamp_format: str = "iso") -> List[Processor]:
    """Processors applied to stdlib records that did not come through structlog."""
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso" if timestamp_format == "iso" else None),
    ]


class JSONFormatter(ProcessorFormatter):
    """JSON formatter for structured log output.

    Example:
        {"timestamp": "2024-03-01T10:30:45.123456Z", "level": "info",
         "logger": "monitor.postgresql.prod_db", "operation": "get_top_queries",
         "duration_ms": 12.7, "message": "Operation completed"}
    """

    def __init__(
        self,
        *,
        timestamp_format: str = "iso",
        include_location: bool = False,
        exclude_fields: Optional[list] = None,
    ) -> None:
        """Initialize JSON formatter.

        Args:
            timestamp_format: "iso" or "unix"
            include_location: Include module, function and line number of stdlib records
            exclude_fields: Fields to leave out of the output
        """
        pre_chain = foreign_pre_chain(timestamp_format)
        if include_location:
            pre_chain.append(
                structlog.processors.CallsiteParameterAdder([
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ])
            )

        super().__init__(
            processors=[
                ProcessorFormatter.remove_processors_meta,
                DropFields(exclude_fields or ()),
                structlog.processors.dict_tracebacks,
                structlog.processors.EventRenamer("message"),
                structlog.processors.JSONRenderer(default=str),
            ],
            foreign_pre_chain=pre_chain,
        )


class TextFormatter(ProcessorFormatter):
    """Human-readable text formatter.

    Example:
        2024-03-01T10:30:45.123456Z [warning  ] Health sub-metric unavailable [monitor.mssql.reporting] metric=disk_usage
    """

    def __init__(self, *, colors: bool = False, exclude_fields: Optional[list] = None) -> None:
        super().__init__(
            processors=[
                ProcessorFormatter.remove_processors_meta,
                DropFields(exclude_fields or ()),
                structlog.dev.ConsoleRenderer(colors=colors),
            ],
            foreign_pre_chain=foreign_pre_chain(),
        )


def get_formatter(format_type: str, **kwargs: Any) -> ProcessorFormatter:
    """Get formatter instance by type.

    Args:
        format_type: 'json' or 'text'
        **kwargs: Additional formatter arguments

    Raises:
        ValueError: If format_type is not supported
    """
    format_type = format_type.lower()

    if format_type == 'json':
        return JSONFormatter(**kwargs)
    elif format_type == 'text':
        return TextFormatter(**kwargs)
    else:
        raise ValueError(f"Unsupported formatter type: {format_type}")
