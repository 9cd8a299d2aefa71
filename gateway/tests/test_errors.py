import pytest

from agent_bridge.errors import TransportError, error_payload, is_resume_rejection


@pytest.mark.parametrize("err,rejected", [
    (TransportError.from_close(1, None, "No conversation found"), True),
    (TransportError.from_close(None, "SIGKILL", ""), False),
    (TransportError("CLI exited with code 143: ", reason="timeout", exit_code=143), False),
    (TransportError("CLI exited with code 143: ", reason="cancelled", exit_code=143), False),
    (TransportError("Failed to start CLI 'x': not found", reason="spawn_failed"), False),
])
def test_only_a_self_inflicted_exit_rejects_the_session(err, rejected):
    assert err.is_exit_failure is rejected
    assert is_resume_rejection(err) is rejected


def test_plain_errors_fall_back_to_message():
    assert is_resume_rejection(RuntimeError("CLI exited with code 1: gone"))
    assert not is_resume_rejection(RuntimeError("connection reset"))


def test_error_payload():
    assert error_payload("api_error", "boom") == {"type": "error", "error": {"type": "api_error", "message": "boom"}}
