"""
Console logging for the lesson API.

Log lines carry a timestamp, an icon picked from the logger name or level,
and the logger name. StructuredLogger adds request/response helpers and
inline key/value data for the endpoints.
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'
    INFO = '\033[32m'
    WARNING = '\033[33m'
    ERROR = '\033[31m'
    CRITICAL = '\033[35m'

    SECTION = '\033[94m'
    KEY = '\033[93m'
    TIMESTAMP = '\033[90m'


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}

LEVEL_ICONS = {
    'DEBUG': '🔍',
    'INFO': 'ℹ️',
    'WARNING': '⚠️',
    'ERROR': '❌',
    'CRITICAL': '🚨',
}

# Keyed by the last component of the logger name
COMPONENT_ICONS = {
    'main': '🌐',
    'auth': '🔐',
    'supabase_client': '💾',
    'session_manager': '💾',
    'turn_orchestrator': '🎓',
    'language_model': '🤖',
    'speech_io': '🎙️',
}


class ColoredFormatter(logging.Formatter):
    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _paint(self, color: str, text: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        component = record.name.rsplit('.', 1)[-1]
        icon = COMPONENT_ICONS.get(component, LEVEL_ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        line = (
            f"{self._paint(Colors.TIMESTAMP, f'[{timestamp}]')} "
            f"{icon} {self._paint(LEVEL_COLORS.get(record.levelname, Colors.RESET), f'{record.levelname:8s}')} "
            f"{self._paint(Colors.BOLD, record.name)} | {record.getMessage()}"
        )
        data = getattr(record, 'data', None)
        if data:
            line += " " + format_data(data)
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def _shorten(value: Any, limit: int = 80) -> str:
    text = str(value)
    return text if len(text) <= limit else text[:limit] + "..."


def format_data(data: Dict[str, Any]) -> str:
    """Render a flat ``key=value`` list; long values are cut."""
    return " ".join(f"{key}={_shorten(value)}" for key, value in data.items() if value is not None)


class StructuredLogger:
    """Thin wrapper over logging.Logger that attaches key/value data."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _log(self, level: int, message: str, data: Optional[Dict[str, Any]] = None, exc_info=None):
        self.logger.log(level, message, extra={"data": data} if data else None, exc_info=exc_info)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Mark the start of a multi-step operation (e.g. a lesson turn)."""
        self._log(logging.INFO, f"{'=' * 20} {title.upper()} {'=' * 20}", data)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, data)

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        if error is not None:
            message = f"{message} ({type(error).__name__}: {error})"
        self._log(logging.ERROR, message, data, exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, f"✅ {message}", data)

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        request_data = {"user_id": user_id}
        if data:
            request_data.update(data)
        self._log(logging.INFO, f"📥 REQUEST: {method} {path}", request_data)

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        response_data = {"duration_ms": f"{duration * 1000:.2f}" if duration is not None else None}
        if data:
            response_data.update(data)
        self._log(logging.INFO, f"📤 RESPONSE: {status} {path}", response_data)


def setup_logging(level: int = logging.INFO, use_colors: bool = True) -> logging.Logger:
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    for noisy in ('asyncio', 'httpx', 'httpcore', 'hpack', 'openai'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name, logging.getLogger(name))
