"""
Structured logging helpers.

- PIIMasker: masks emails and secrets in log output
- JSONFormatter / MaskingFormatter: formatters referenced from settings.LOGGING
- RequestContextFilter: copies the current request id onto log records
- SecurityLogger: authorization and administrator-protection events
"""
import json
import logging
import re
import threading
import traceback
from datetime import datetime, timezone as dt_timezone

from django.utils import timezone
import sentry_sdk


_request_context = threading.local()


def set_request_id(request_id):
    """Bind a request id to the current thread for log records."""
    _request_context.request_id = request_id


def clear_request_id():
    _request_context.request_id = None


def get_request_id():
    return getattr(_request_context, 'request_id', None)


class PIIMasker:
    """
    Utility class to mask sensitive data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )

    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'access_token', 'refresh_token', 'authorization',
        'secret', 'secret_key', 'jwt_secret_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text, keeping the first character and domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value
        return masked


# LogRecord attributes that are never copied into the JSON payload
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'request_id',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id from the record if available and masks PII.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        request_id = getattr(record, 'request_id', None)
        if request_id:
            log_data['request_id'] = request_id

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        # Extra fields passed via logger.x(..., extra={...})
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class MaskingFormatter(logging.Formatter):
    """Plain-text formatter that masks PII in the rendered line."""

    def format(self, record):
        return PIIMasker.mask_text(super().format(record))


class RequestContextFilter(logging.Filter):
    """
    Add request_id to log records from thread-local storage.
    """

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = get_request_id()
        return True


class SecurityLogger:
    """
    Centralized logging for authorization and administrator-protection events.

    Events are written to the ``security`` logger with structured data.
    Critical events are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'critical_state_detected',
        'administrator_recovery_failed',
        'orphaned_permission',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'authorization_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, permission, ...)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_authorization_denied(user, action: str, target: str = None):
        SecurityLogger.log_event(
            'authorization_denied',
            level='info',
            user_id=getattr(user, 'id', None),
            action=action,
            target=target,
        )

    @staticmethod
    def log_last_administrator_violation(user, operation: str, actor=None):
        """
        Log a blocked attempt to remove the last active administrator.

        Args:
            user: Administrator the operation targeted
            operation: Blocked operation (delete, force_delete, remove_role, ...)
            actor: User who attempted the operation
        """
        SecurityLogger.log_event(
            'last_administrator_violation',
            level='warning',
            user_id=user.id,
            operation=operation,
            actor_id=getattr(actor, 'id', None),
        )

    @staticmethod
    def log_critical_state(active_count: int, total_administrators: int):
        SecurityLogger.log_event(
            'critical_state_detected',
            level='critical',
            active_administrators=active_count,
            total_administrators=total_administrators,
        )

    @staticmethod
    def log_failed_login(email: str, ip_address: str, user_agent: str, reason: str):
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=reason,
        )
