"""Error taxonomy shared by the runner, orchestrator and HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class BridgeError(Exception):
    """Base class for bridge failures."""


class TransportError(BridgeError):
    """The agent CLI failed to start, was killed, or exited non-zero.

    ``reason`` is one of ``spawn_failed``, ``signal``, ``exit_code``,
    ``timeout`` or ``cancelled``.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        exit_code: Optional[int] = None,
        signal: Optional[str] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.exit_code = exit_code
        self.signal = signal
        self.stderr = stderr

    @property
    def is_exit_failure(self) -> bool:
        """True when the process ran and exited non-zero on its own.

        A run stopped by the timeout or by the caller may still exit with a
        code (a CLI trapping SIGTERM exits 143); that is not an exit failure.
        """
        return self.reason == "exit_code" and self.exit_code is not None and self.exit_code != 0

    @classmethod
    def from_close(cls, exit_code: Optional[int], signal: Optional[str], stderr: str) -> "TransportError":
        if signal:
            return cls(f"CLI killed by signal {signal}: {stderr}", reason="signal", exit_code=None, signal=signal, stderr=stderr)
        return cls(f"CLI exited with code {exit_code}: {stderr}", reason="exit_code", exit_code=exit_code, stderr=stderr)


class RequestShapeError(BridgeError):
    """Caller input is missing required fields; rejected before any work is queued."""


def is_resume_rejection(exc: BaseException) -> bool:
    """Whether a failure during a resumed run means the session was rejected."""
    if isinstance(exc, TransportError):
        return exc.is_exit_failure
    # Legacy shim for errors raised by foreign runners that only carry a message
    return "exited with code" in str(exc)


def error_payload(kind: str, message: str) -> Dict[str, Any]:
    return {"type": "error", "error": {"type": kind, "message": message}}
