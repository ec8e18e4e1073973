"""
Error Classifier - Rule-based classification of sandbox provider failures

Every provider call can fail in one of four ways, and each one is handled
differently by the callers:

- TRANSIENT: gateway errors, refused connections, timeouts. Retry.
- NOT_FOUND: the sandbox was deleted at the provider. Never retry here;
  the pool allocator recreates and migrates.
- STOPPED: the sandbox exists but is not running. Start it once.
- PERMANENT: anything else. Propagate with the provider's message.
"""

import asyncio
import re
from enum import Enum
from typing import List, Optional, Tuple
from dataclasses import dataclass

import httpx

from app.core.exceptions import (
    SandboxNotFoundError,
    SandboxProviderUnavailableError,
)
from app.core.logging_config import logger


class ErrorKind(Enum):
    """How a provider failure should be handled"""
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    STOPPED = "stopped"
    PERMANENT = "permanent"


@dataclass
class ClassifiedError:
    """Result of error classification"""
    kind: ErrorKind
    original_message: str
    status_code: Optional[int] = None
    matched_pattern: Optional[str] = None

    @property
    def is_retryable(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT


class ErrorClassifier:
    """
    Rule-based classifier for provider errors.

    Patterns are checked in order: transient first, so a gateway error that
    happens to mention a stopped sandbox is still retried.
    """

    TRANSIENT_STATUS_CODES = {502, 503, 504}
    TRANSIENT_ERROR_CODES = {"ECONNREFUSED", "ETIMEDOUT", "ECONNRESET"}

    PATTERNS: List[Tuple[str, ErrorKind]] = [
        # Gateway / connectivity
        (r'\b50[234]\b|Bad\s+Gateway|Service\s+Unavailable|Gateway\s+Timeout', ErrorKind.TRANSIENT),
        (r'Request\s+failed|ECONNREFUSED|ETIMEDOUT|ECONNRESET', ErrorKind.TRANSIENT),
        (r'timed?\s*out|timeout', ErrorKind.TRANSIENT),

        # Sandbox deleted
        (r'not\s+found\s+in\s+Daytona|sandbox\s+.*\s+not\s+found', ErrorKind.NOT_FOUND),

        # Sandbox stopped
        (r'not\s+running|stopped', ErrorKind.STOPPED),
    ]

    @classmethod
    def classify(cls, error: BaseException) -> ClassifiedError:
        """
        Classify a provider failure.

        Typed errors are decided by type; everything else by status code,
        errno-style code, then message patterns.
        """
        message = str(error) or type(error).__name__
        status_code = getattr(error, "status_code", None)

        if isinstance(error, SandboxNotFoundError):
            return ClassifiedError(ErrorKind.NOT_FOUND, message)

        if isinstance(error, SandboxProviderUnavailableError):
            return ClassifiedError(ErrorKind.TRANSIENT, message)

        if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
            return ClassifiedError(ErrorKind.TRANSIENT, message)

        if isinstance(error, httpx.HTTPStatusError):
            status_code = error.response.status_code

        if status_code in cls.TRANSIENT_STATUS_CODES:
            return ClassifiedError(ErrorKind.TRANSIENT, message, status_code=status_code)

        error_code = getattr(error, "code", None)
        if isinstance(error_code, str) and error_code in cls.TRANSIENT_ERROR_CODES:
            return ClassifiedError(ErrorKind.TRANSIENT, message, status_code=status_code)

        for pattern, kind in cls.PATTERNS:
            if re.search(pattern, message, re.IGNORECASE):
                logger.debug(f"[ErrorClassifier] Classified as {kind.value}: {message[:200]}")
                return ClassifiedError(kind, message, status_code=status_code, matched_pattern=pattern)

        return ClassifiedError(ErrorKind.PERMANENT, message, status_code=status_code)

    @classmethod
    def is_transient(cls, error: BaseException) -> bool:
        return cls.classify(error).kind == ErrorKind.TRANSIENT

    @classmethod
    def is_stopped(cls, error: BaseException) -> bool:
        return cls.classify(error).kind == ErrorKind.STOPPED


# Singleton instance
error_classifier = ErrorClassifier()
