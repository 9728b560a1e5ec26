"""Redaction of credentials before they reach log output.

Identity tokens travel on every handshake and queued actions may carry
caller-supplied authorization headers, so both free text and structured
log fields are filtered here.
"""

import os
import re
from typing import Any, List, Optional, Pattern

REPLACEMENT = "***REDACTED***"

# Keys whose values are always hidden, whatever they look like
SENSITIVE_KEYS = {"token", "access_token", "password", "authorization", "cookie", "secret", "api_key"}


class SecretsRedactor:
    """Redact sensitive information from text using configurable regex patterns."""

    def __init__(self, patterns: Optional[List[str]] = None) -> None:
        if patterns is None:
            patterns = self._load_default_patterns()
        self.patterns: List[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in patterns]

    def _load_default_patterns(self) -> List[str]:
        env_patterns = os.environ.get("LIVESYNC_SECRETS_PATTERNS")
        if env_patterns:
            return [p.strip() for p in env_patterns.split(",") if p.strip()]

        return [
            # Bearer credentials in header values
            r'bearer\s+[a-zA-Z0-9\-_.=]+',

            # JWT tokens (session access tokens)
            r'eyJ[a-zA-Z0-9\-_]+\.[a-zA-Z0-9\-_]+\.[a-zA-Z0-9\-_]+',

            # key=value style credentials
            r'(api[_-]?key|token|secret|password)[\s]*[=:]\s*["\']?[a-zA-Z0-9\-_.]{8,}["\']?',

            # Redis / websocket / http URLs with embedded credentials
            r'(rediss?|wss?|https?)://[^:/\s]*:[^@\s]*@[^\s]+',
        ]

    def redact(self, text: str, replacement: str = REPLACEMENT) -> str:
        if not text or not isinstance(text, str):
            return text
        redacted = text
        for pattern in self.patterns:
            redacted = pattern.sub(replacement, redacted)
        return redacted

    def redact_value(self, value: Any, replacement: str = REPLACEMENT) -> Any:
        if isinstance(value, str):
            return self.redact(value, replacement)
        if isinstance(value, dict):
            return self.redact_dict(value, replacement)
        if isinstance(value, (list, tuple)):
            return [self.redact_value(item, replacement) for item in value]
        return value

    def redact_dict(self, data: dict, replacement: str = REPLACEMENT) -> dict:
        if not data:
            return data
        redacted = {}
        for key, value in data.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_KEYS and value:
                redacted[key] = replacement
            else:
                redacted[key] = self.redact_value(value, replacement)
        return redacted

    def add_pattern(self, pattern: str) -> None:
        self.patterns.append(re.compile(pattern, re.IGNORECASE))


_redactor: Optional[SecretsRedactor] = None


def get_redactor() -> SecretsRedactor:
    global _redactor
    if _redactor is None:
        _redactor = SecretsRedactor()
    return _redactor


def redact(text: str, replacement: str = REPLACEMENT) -> str:
    return get_redactor().redact(text, replacement)


def redact_dict(data: dict, replacement: str = REPLACEMENT) -> dict:
    return get_redactor().redact_dict(data, replacement)
