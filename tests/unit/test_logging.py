import pytest
import structlog

from fednode.logging import bind_context, log_context


def test_log_context_restores_enclosing_values() -> None:
    structlog.contextvars.clear_contextvars()
    with log_context(event_type="test.v1"):
        bind_context(event_uuid="uuid-1")
        with log_context(message_id="msg-1"):
            assert structlog.contextvars.get_contextvars() == {
                "event_type": "test.v1",
                "event_uuid": "uuid-1",
                "message_id": "msg-1",
            }
        assert structlog.contextvars.get_contextvars() == {
            "event_type": "test.v1",
            "event_uuid": "uuid-1",
        }
    assert structlog.contextvars.get_contextvars() == {}


def test_log_context_restores_after_error() -> None:
    structlog.contextvars.clear_contextvars()
    with pytest.raises(RuntimeError), log_context(message_id="msg-1"):
        raise RuntimeError("boom")
    assert structlog.contextvars.get_contextvars() == {}
