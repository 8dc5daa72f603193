"""Personal data masking for log output

Progress lines sent to the user's own channel are never masked; only what
goes into the server logs passes through here.
"""

import re
from typing import Any, Dict, List, Union


SENSITIVE_KEYS = {
    'phone', 'address', 'dob', 'eid', 'code', 'captcha', 'captchacode',
    'apikey', 'api_key', 'token', 'secret',
}

_PATTERNS = [
    # 12-digit E-ID numbers: keep the last 4 digits for correlation
    (re.compile(r'\b\d{8}(\d{4})\b'), r'********\1'),

    # CAPTCHA answers in key/value form
    (re.compile(r'(captcha(?:[_ ]?(?:code|solution))?)\s*[:=]\s*[\'"]?([^\s\'",]+)[\'"]?', re.IGNORECASE),
     r'\1: ***REDACTED***'),

    # Dates of birth
    (re.compile(r'\b\d{4}-\d{2}-\d{2}\b'), '****-**-**'),

    # Phone numbers (7+ digits, optional separators / leading +)
    (re.compile(r'(?<![\d*])\+?\d[\d\s\-().]{5,}\d(?!\d)'), '***PHONE***'),

    # API keys
    (re.compile(r'(api[_-]?key|apikey|key)=([A-Za-z0-9_\-]{8,})', re.IGNORECASE), r'\1=***REDACTED***'),
]


def mask_sensitive_in_logs(log_message: str) -> str:
    """
    Mask E-IDs, phone numbers, CAPTCHA answers and keys in a log message

    Args:
        log_message: Message that may contain personal data

    Returns:
        Message with personal data masked
    """
    if not log_message:
        return log_message

    masked = log_message
    for pattern, replacement in _PATTERNS:
        masked = pattern.sub(replacement, masked)
    return masked


def sanitize_fields(data: Union[Dict[str, Any], List, str]) -> Union[Dict[str, Any], List, str]:
    """Mask sensitive values in an extracted-fields dict (or nested list/str)"""
    if isinstance(data, str):
        return mask_sensitive_in_logs(data)
    if isinstance(data, list):
        return [sanitize_fields(item) for item in data]
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            if key.lower().replace('-', '_') in SENSITIVE_KEYS or key.lower() in SENSITIVE_KEYS:
                sanitized[key] = "***REDACTED***" if value else value
            elif isinstance(value, (dict, list, str)):
                sanitized[key] = sanitize_fields(value)
            else:
                sanitized[key] = value
        return sanitized
    return data
