"""
Structured logging with key=value and JSON output support.

Wraps the standard library ``logging`` module to provide structured output
in two formats: human-readable key=value pairs (default) and machine-parseable
JSON. Relay sessions produce a lot of interleaved output, so every
[Logger][relaysync.core.logger.Logger] can be bound to fixed context fields
with [bind()][relaysync.core.logger.Logger.bind]; a connection logger bound to
``relay=wss://...`` tags every record it emits.

The ``StructuredFormatter`` is a stdlib ``logging.Formatter`` that reads
structured data from the ``structured_kv`` extra field (attached by Logger)
and appends it as key=value pairs. When installed on the root handler, it
unifies output from both ``Logger`` and plain ``logging.getLogger()`` calls
used in the models and utils layers.

Examples:
    ```python
    from relaysync.core.logger import Logger

    logger = Logger("pool")
    logger.info("subscription_opened", sub_id="a1", relays=3)
    # Output: subscription_opened sub_id=a1 relays=3

    relay_logger = logger.bind(relay="wss://relay.damus.io")
    relay_logger.warning("frame_dropped", reason="invalid json")
    # Output: frame_dropped relay=wss://relay.damus.io reason="invalid json"
    ```
"""

import datetime
import json
import logging
from typing import Any, ClassVar


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Render *kwargs* as `` key=value key2="quoted value"``.

    Values are cut at *max_value_length* (``None`` keeps them whole). Empty
    values and values with spaces, ``=`` or quotes are quoted and escaped.
    An empty mapping renders as ``""``.
    """
    if not kwargs:
        return ""

    parts = []
    for k, v in kwargs.items():
        s = _truncate(str(v), max_value_length)
        if not s or " " in s or "=" in s or '"' in s or "'" in s:
            escaped = s.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{k}="{escaped}"')
        else:
            parts.append(f"{k}={s}")

    return prefix + " ".join(parts)


def _truncate(value: str, max_length: int | None) -> str:
    if max_length and len(value) > max_length:
        return value[:max_length] + f"...<truncated {len(value) - max_length} chars>"
    return value


class StructuredFormatter(logging.Formatter):
    """Formats all log records as ``level name message key=value ...``.

    Records without ``structured_kv`` (plain ``logging.getLogger()`` calls)
    are emitted with the same prefix so output stays uniform.
    """

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if extra:
            base += format_kv_pairs(extra)
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class Logger:
    """Event-name logger over a stdlib ``logging.Logger``.

    The message is a snake_case event name; keyword arguments become fields,
    rendered by ``StructuredFormatter`` or, with ``json_output``, serialized
    into the message itself. Bound context fields come first, call-time
    fields override them.

    Examples:
        ```python
        logger = Logger("connection")
        logger.info("connected", relay="wss://nos.lol", attempt=2)
        # Output: connected relay=wss://nos.lol attempt=2
        ```
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Create a logger for component *name*.

        Args:
            name: Name passed to ``logging.getLogger()``.
            json_output: Emit one JSON object per record.
            max_value_length: Per-field character cap (default 1000).
            context: Fields added to every record.
        """
        if max_value_length is None:
            max_value_length = self._DEFAULT_MAX_VALUE_LENGTH
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = max_value_length
        self._context: dict[str, Any] = dict(context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def context(self) -> dict[str, Any]:
        """A copy of the bound context fields."""
        return dict(self._context)

    def bind(self, **context: Any) -> "Logger":
        """Return a child logger that adds *context* to every record.

        The child shares the underlying stdlib logger, output mode, and
        truncation settings. Fields passed at call time override bound
        fields with the same name.
        """
        return Logger(
            self._logger.name,
            json_output=self._json_output,
            max_value_length=self._max_value_length,
            context={**self._context, **context},
        )

    def _merge(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        if not self._context:
            return kwargs
        return {**self._context, **kwargs}

    def _format_json(self, msg: str, level: str, kwargs: dict[str, Any]) -> str:
        """Format message and kwargs as a JSON string.

        Includes ``timestamp`` (ISO 8601), ``level``, and ``component``
        (logger name) alongside the structured fields.
        """
        record = {
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
            "level": level,
            "component": self._logger.name,
            "message": msg,
            **{k: self._clip(v) for k, v in kwargs.items()},
        }
        return json.dumps(record, default=str)

    def _make_extra(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Build the ``extra`` dict consumed by ``StructuredFormatter``."""
        if not kwargs:
            return {}
        return {"structured_kv": {k: self._clip(v) for k, v in kwargs.items()}}

    def _clip(self, value: Any) -> Any:
        """Return *value* unchanged unless its text form exceeds the length cap."""
        text = str(value)
        if self._max_value_length and len(text) > self._max_value_length:
            return _truncate(text, self._max_value_length)
        return value

    def _emit(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = self._merge(kwargs)
        if self._json_output:
            self._logger.log(
                level,
                self._format_json(msg, logging.getLevelName(level).lower(), fields),
                exc_info=exc_info,
            )
        else:
            self._logger.log(level, msg, extra=self._make_extra(fields), exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """``error()`` plus the active exception traceback."""
        self._emit(logging.ERROR, msg, kwargs, exc_info=True)
