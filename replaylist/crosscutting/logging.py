import json
import logging
import re
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variables for correlation
transfer_id_var: ContextVar[Optional[str]] = ContextVar('transfer_id', default=None)
provider_var: ContextVar[Optional[str]] = ContextVar('provider', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

_CONTEXT_FIELDS = (
    ('transferId', transfer_id_var),
    ('provider', provider_var),
    ('playlistId', playlist_id_var),
    ('stage', stage_var),
)


_SECRET_PATTERNS = [
    # Generic tokens and keys
    r'(?i)(token|key|secret|password)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
    # Provider access/refresh tokens
    r'(?i)(access_token|refresh_token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
    # Apple Music user tokens
    r'(?i)(music-user-token|user_token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.+/=]{20,})["\']?',
    # Client secrets
    r'(?i)(client_secret)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
    # Authorization headers
    r'(?i)(authorization:\s*bearer|bearer)[\s:=]+["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
]


def _redact(match: 're.Match') -> str:
    prefix, secret = match.group(1), match.group(2)
    # first and last 4 characters stay readable
    if len(secret) > 8:
        secret = secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
    else:
        secret = '*' * len(secret)
    return f"{prefix}: {secret}"


class SecretMasker:
    """Masks tokens and secrets in log output."""

    def __init__(self):
        self.compiled_patterns = [re.compile(pattern) for pattern in _SECRET_PATTERNS]

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(_redact, text)
        return text

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask_secrets(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._mask_value(item) for item in value]
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in a (nested) dictionary."""
        if not data:
            return data
        return {key: self._mask_value(value) for key, value in data.items()}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        """Initialize formatter."""
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread': record.threadName,
        }

        # Add correlation fields if available
        for key, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'fields') and record.fields:
            log_entry['fields'] = self.masker.mask_dict(record.fields)

        return json.dumps(log_entry, ensure_ascii=False)


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, transfer_id: Optional[str] = None,
                 provider: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        """Initialize correlation context."""
        self._values = {
            transfer_id_var: transfer_id,
            provider_var: provider,
            playlist_id_var: playlist_id,
            stage_var: stage,
        }
        self._tokens = []

    def __enter__(self):
        """Set correlation context."""
        for var, value in self._values.items():
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore correlation context."""
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


def set_stage(stage: str) -> None:
    stage_var.set(stage)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  structured: bool = True) -> logging.Logger:
    """Setup logging for the ``replaylist`` logger tree."""
    logger = logging.getLogger('replaylist')
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    logger.handlers.clear()

    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = 'replaylist') -> logging.Logger:
    """Get logger with structured formatting."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, **kwargs):
    """Log message with additional structured fields."""
    all_fields = dict(fields or {})
    all_fields.update(kwargs)
    logger.log(getattr(logging, level.upper()), message, extra={'fields': all_fields}, stacklevel=2)
