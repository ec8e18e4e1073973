"""
Unit Tests for logging formatters and context
"""
import json
import logging

from app.core.logging_config import (
    ContextualFormatter,
    JSONFormatter,
    SandboxPoolLogger,
    logger,
    set_request_id,
    set_sandbox_id,
)


def make_record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("sandboxpool", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Structured production output"""

    def test_basic_fields(self):
        """Test one JSON object with level, logger and message"""
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "sandboxpool"
        assert data["message"] == "hello"
        assert data["timestamp"].endswith("Z")

    def test_context_and_extra_fields(self):
        """Test request/sandbox context and extras are included"""
        set_request_id("req-1")
        set_sandbox_id("sbx-1")
        try:
            data = json.loads(JSONFormatter().format(make_record(event_type="sandbox")))
        finally:
            set_request_id("")
            set_sandbox_id("")

        assert data["request_id"] == "req-1"
        assert data["sandbox_id"] == "sbx-1"
        assert data["event_type"] == "sandbox"
        assert "user_id" not in data


class TestContextualFormatter:
    """Readable development output"""

    def test_missing_context_is_dash(self):
        """Test unset context prints as '-'"""
        formatter = ContextualFormatter("[%(request_id)s] [%(sandbox_id)s] %(message)s")

        assert formatter.format(make_record()) == "[-] [-] hello"


class TestSandboxPoolLogger:
    """Logger wiring"""

    def test_module_logger_class(self):
        """Test the shared logger has the structured helpers"""
        assert isinstance(logger, SandboxPoolLogger)
        assert logger.name == "sandboxpool"

    def test_log_sandbox_event(self, caplog):
        """Test sandbox events are tagged with the sandbox ID"""
        with caplog.at_level(logging.INFO, logger="sandboxpool"):
            logger.log_sandbox_event("sbx-9", "started")

        record = caplog.records[-1]
        assert record.getMessage() == "[Sandbox:sbx-9] started"
        assert record.sandbox == "sbx-9"
        assert record.event_type == "sandbox"
