"""
Logging Utility for the Tutor Backend

Console logging with colour-coded levels, per-component icons and
pretty-printed payloads for requests, oracle turns and whiteboard updates.
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Formatter with colours and an icon per tutor component."""

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
        'socratic_tutor': '🎓',
        'oracle': '🤖',
        'knowledge_store': '💾',
        'knowledge_graph': '🧠',
        'whiteboard': '📈',
        'animation_session': '🎬',
        'expression_sandbox': '🧪',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _paint(self, color: str, text: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        component = record.name.split('.')[-1]
        icon = self.COMPONENT_ICONS.get(component, self.LEVEL_ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        formatted = (
            f"{self._paint(Colors.TIMESTAMP, f'[{timestamp}]')} "
            f"{icon} {self._paint(LEVEL_COLORS.get(record.levelname, Colors.RESET), f'{record.levelname:8s}')} "
            f"{self._paint(Colors.BOLD, record.name)} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


class StructuredLogger:
    """Logger wrapper that appends key/value payloads and marks request boundaries."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _format_data(self, data: Dict[str, Any], indent: int = 2) -> str:
        lines = []
        for key, value in data.items():
            if isinstance(value, dict):
                lines.append(f"{' ' * indent}{key}:")
                lines.append(self._format_data(value, indent + 2))
            elif isinstance(value, list) and len(value) > 5:
                lines.append(f"{' ' * indent}{key}: {value[:3]} ... ({len(value)} items total)")
            else:
                lines.append(f"{' ' * indent}{key}: {value}")
        return "\n".join(lines)

    def _log(self, level: int, message: str, data: Optional[Dict[str, Any]] = None, **kwargs):
        if data:
            message = f"{message}\n{self._format_data(data)}"
        self.logger.log(level, message, **kwargs)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Mark the start of a multi-step operation."""
        self._log(logging.INFO, f"{'=' * 20} {title.upper()} {'=' * 20}", data)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, data)

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log an error, with the exception's type and traceback when given."""
        if error:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self._log(logging.ERROR, message, data, exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, f"✅ {message}", data)

    def request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, f"📥 REQUEST: {method} {path}", data)

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        payload = {"duration_ms": f"{duration * 1000:.2f}"} if duration is not None else {}
        payload.update(data or {})
        self._log(logging.INFO, f"📤 RESPONSE: {status} {path}", payload)


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the coloured console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
