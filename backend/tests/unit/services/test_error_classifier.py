"""
Unit Tests for ErrorClassifier Service

Provider failures must be split into transient (retry), stopped (start),
not found (recreate) and permanent (propagate).
"""
import asyncio
import pytest
import httpx

from app.core.exceptions import (
    SandboxNotFoundError,
    SandboxProviderError,
    SandboxProviderUnavailableError,
)
from app.services.error_classifier import ErrorClassifier, ErrorKind, ClassifiedError


class TestTransientClassification:
    """Errors that should be retried"""

    @pytest.mark.parametrize("message", [
        "Request failed with status code 502",
        "503 Service Unavailable",
        "Bad Gateway",
        "connect ECONNREFUSED 10.0.0.1:443",
        "ETIMEDOUT",
        "upstream request timeout",
    ])
    def test_gateway_messages(self, message):
        """Test gateway and connectivity messages are transient"""
        assert ErrorClassifier.classify(Exception(message)).kind == ErrorKind.TRANSIENT

    @pytest.mark.parametrize("status_code", [502, 503, 504])
    def test_gateway_status_codes(self, status_code):
        """Test 5xx gateway status codes are transient regardless of message"""
        error = SandboxProviderError("upstream said no", status_code=status_code)
        result = ErrorClassifier.classify(error)
        assert result.kind == ErrorKind.TRANSIENT
        assert result.status_code == status_code

    def test_asyncio_timeout(self):
        """Test call timeouts are transient"""
        assert ErrorClassifier.is_transient(asyncio.TimeoutError())

    def test_httpx_connect_error(self):
        """Test httpx transport errors are transient"""
        assert ErrorClassifier.is_transient(httpx.ConnectError("connection refused"))

    def test_errno_style_code(self):
        """Test an error carrying code='ECONNREFUSED' is transient"""
        error = OSError("socket failure")
        error.code = "ECONNREFUSED"
        assert ErrorClassifier.is_transient(error)

    def test_exhausted_unavailable_is_transient(self):
        """Test the exhausted-retries error still reads as transient"""
        error = SandboxProviderUnavailableError("s1", "Bad Gateway")
        assert ErrorClassifier.is_transient(error)

    def test_transient_wins_over_stopped(self):
        """Test a 502 that mentions a stopped sandbox is still retried"""
        assert ErrorClassifier.classify(Exception("502 Bad Gateway: sandbox stopped")).kind == ErrorKind.TRANSIENT


class TestPermanentClassification:
    """Errors that must not be retried"""

    def test_sandbox_not_found_error(self):
        """Test deleted-sandbox error is NOT_FOUND"""
        result = ErrorClassifier.classify(SandboxNotFoundError("s1"))
        assert result.kind == ErrorKind.NOT_FOUND
        assert not result.is_retryable

    def test_sandbox_not_found_message(self):
        """Test the plain message form is NOT_FOUND too"""
        error = Exception("Sandbox abc not found in Daytona. It may have been deleted.")
        assert ErrorClassifier.classify(error).kind == ErrorKind.NOT_FOUND

    @pytest.mark.parametrize("message", ["Sandbox is not running", "sandbox stopped"])
    def test_stopped(self, message):
        """Test stopped sandboxes are STOPPED"""
        assert ErrorClassifier.is_stopped(Exception(message))

    def test_unknown_is_permanent(self):
        """Test unrecognized failures are PERMANENT with the message kept"""
        error = SandboxProviderError("quota exceeded (HTTP 403)", status_code=403)
        result = ErrorClassifier.classify(error)
        assert result.kind == ErrorKind.PERMANENT
        assert result.original_message == "quota exceeded (HTTP 403)"
        assert result.status_code == 403


class TestClassifiedError:
    """Test ClassifiedError dataclass"""

    def test_is_retryable_only_for_transient(self):
        """Test is_retryable tracks the kind"""
        assert ClassifiedError(ErrorKind.TRANSIENT, "x").is_retryable
        for kind in (ErrorKind.NOT_FOUND, ErrorKind.STOPPED, ErrorKind.PERMANENT):
            assert not ClassifiedError(kind, "x").is_retryable
