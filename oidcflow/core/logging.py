"""Protocol logging for the authorization code flow.

Records every back-channel HTTP exchange (token endpoint, resource endpoint)
with configurable detail and redaction of credentials.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones and one line per HTTP exchange
- DEBUG: Add headers and timing
- TRACE: Add request/response bodies (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("oidcflow.protocol")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    TRACE = TRACE


_REDACTED = "[REDACTED]"

SENSITIVE_PATTERNS = [
    # Form and query parameters
    (re.compile(r"\b(client_secret=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"\b(code=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"\b(access_token=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"\b(refresh_token=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"\b(id_token=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"\b(nonce=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    # Authorization header, either as a full line or as a header dict value
    (re.compile(r"(Authorization:\s*(?:Bearer|Basic)\s+)\S+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"^((?:Bearer|Basic)\s+)\S+", re.IGNORECASE), rf"\1{_REDACTED}"),
    # JSON bodies
    (
        re.compile(r'"(client_secret|access_token|refresh_token|id_token)"\s*:\s*"[^"]+"', re.IGNORECASE),
        rf'"\1": "{_REDACTED}"',
    ),
]


def redact_sensitive(text: str) -> str:
    """Redact credentials and tokens from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive values replaced by ``[REDACTED]``.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


@dataclass
class HTTPExchange:
    """A single back-channel request/response pair."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary, redacting unless ``include_sensitive``."""

        def process(value: str | None) -> str | None:
            if value is None or include_sensitive:
                return value
            return redact_sensitive(value)

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": {k: process(v) for k, v in self.request_headers.items()},
            "request_body": process(self.request_body),
            "response_status": self.response_status,
            "response_headers": {k: process(v) for k, v in self.response_headers.items()},
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for a log record.

        Args:
            level: Determines how much detail to include.
            include_sensitive: If True, do not redact.

        Returns:
            Multi-line log text.
        """
        show = (lambda v: v) if include_sensitive else redact_sensitive
        status = self.response_status or "ERROR"
        lines = [f"HTTP {self.method} {show(self.url)} -> {status}"]

        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            for name, value in self.request_headers.items():
                lines.append(f"    {name}: {show(value)}")
            if self.response_headers:
                lines.append("  Response Headers:")
                for name, value in self.response_headers.items():
                    lines.append(f"    {name}: {show(value)}")

        if level <= LogLevel.TRACE:
            for label, body in (("Request Body", self.request_body), ("Response Body", self.response_body)):
                if body:
                    text = show(body)
                    lines.append(f"  {label}:")
                    lines.append(f"    {text[:2000]}{'...' if len(text) > 2000 else ''}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Exchanges collected for one flow instance."""

    flow_id: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_exchange(self, exchange: HTTPExchange) -> None:
        self.exchanges.append(exchange)

    def complete(self) -> None:
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
            "exchange_count": len(self.exchanges),
        }


class ProtocolLogger:
    """Level settings plus the sink that writes exchanges to ``logging``.

    The logger holds no per-flow state; each flow passes its own
    :class:`ProtocolLog` to collect exchanges.
    """

    def __init__(self, level: LogLevel = LogLevel.INFO, trace_enabled: bool = False) -> None:
        self.level = level
        self.trace_enabled = trace_enabled

    @property
    def effective_level(self) -> LogLevel:
        """TRACE is downgraded to DEBUG unless explicitly enabled."""
        if self.level == LogLevel.TRACE and not self.trace_enabled:
            return LogLevel.DEBUG
        return self.level

    def log_exchange(self, exchange: HTTPExchange, protocol_log: ProtocolLog | None = None) -> None:
        """Record an exchange in ``protocol_log`` and emit it to the Python logger.

        Args:
            exchange: The HTTP exchange.
            protocol_log: Optional per-flow collector.
        """
        if protocol_log is not None:
            protocol_log.add_exchange(exchange)

        effective = self.effective_level
        include_sensitive = self.trace_enabled and self.level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(f"HTTP error: {exchange.method} {redact_sensitive(exchange.url)}: {exchange.error}")


class LoggingClient(httpx.Client):
    """HTTPX client that reports every exchange to a :class:`ProtocolLogger`."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        protocol_log: ProtocolLog | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: Logger settings. Creates a default one if not provided.
            protocol_log: Per-flow collector for exchanges.
            **kwargs: Passed to ``httpx.Client`` (``verify``, ``timeout``, ``transport``...).
        """
        self._protocol_logger = protocol_logger or ProtocolLogger()
        self.protocol_log = protocol_log
        self._exchange_counter = 0
        kwargs.setdefault("follow_redirects", False)
        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger

    def send(self, request: httpx.Request, **kwargs: Any) -> httpx.Response:
        """Send a request, recording the exchange whether it succeeds or not."""
        self._exchange_counter += 1
        exchange = HTTPExchange(
            id=f"http_{self._exchange_counter:04d}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=_body_text(request.content),
        )
        start_time = time.perf_counter()

        try:
            response = super().send(request, **kwargs)
        except httpx.HTTPError as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e)
            self._protocol_logger.log_exchange(exchange, self.protocol_log)
            raise

        response.read()
        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.response_body = _body_text(response.content)
        self._protocol_logger.log_exchange(exchange, self.protocol_log)
        return response


def _body_text(content: bytes) -> str | None:
    if not content:
        return None
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary content>"


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure the ``oidcflow`` loggers.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or its name.
        trace_enabled: Whether TRACE may include unredacted secrets.
        log_file: Optional file path to also write logs to.

    Returns:
        A ProtocolLogger configured with the same level.
    """
    if isinstance(level, str):
        level = LogLevel.__members__.get(level.upper(), LogLevel.INFO)

    package_logger = logging.getLogger("oidcflow")
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    if trace_enabled:
        package_logger.warning("TRACE logging enabled - tokens and client secrets will be logged!")

    return ProtocolLogger(level=level, trace_enabled=trace_enabled)
