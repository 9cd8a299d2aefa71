"""Run the agent CLI once per request and stream its stream-json records.

The prompt is piped over stdin (a long system prompt on argv would hit
E2BIG). Stdout is read line by line by a background task into a bounded
queue that ``CliRunner.run`` drains; stderr is collected on the side and
only used for diagnostics. Every run is bounded by a wall-clock timeout,
and an optional ``asyncio.Event`` lets the caller kill it early (client
disconnect).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal as signal_mod
from typing import AsyncIterator, Dict, List, Optional, Protocol

from agent_bridge.config import CliConfig
from agent_bridge.errors import TransportError
from agent_bridge.models.events import SubprocessEvent, parse_event


logger = logging.getLogger(__name__)

# Variables that make a nested CLI believe it runs inside another session
_SCRUBBED_ENV = ("CLAUDECODE", "CLAUDE_CODE", "CLAUDE_CODE_ENTRYPOINT")

# Whole assistant turns arrive on one line
STREAM_LIMIT = 32 * 1024 * 1024
QUEUE_SIZE = 256

_EOF = object()


class EventSource(Protocol):
    def run(
        self,
        prompt: str,
        session_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[SubprocessEvent]: ...


def build_stdin(prompt: str, system_prompt: Optional[str] = None) -> str:
    if system_prompt:
        return f"<system>\n{system_prompt}\n</system>\n\n{prompt}"
    return prompt


def parse_line(line: str) -> Optional[SubprocessEvent]:
    """Decode one stdout line; anything that is not a JSON object is dropped."""
    text = line.strip()
    if not text:
        return None
    try:
        obj = json.loads(text)
    except ValueError:
        logger.debug("Skipping non-JSON line: %s", text[:200])
        return None
    if not isinstance(obj, dict):
        return None
    return parse_event(obj)


def _signal_name(returncode: int) -> str:
    try:
        return signal_mod.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class CliRunner:
    """Spawns the configured CLI for a single prompt."""

    def __init__(self, cfg: CliConfig) -> None:
        self._cfg = cfg

    def build_command(self, session_id: Optional[str] = None) -> List[str]:
        cfg = self._cfg
        cmd = [cfg.entry, cfg.script] if cfg.uses_node_entry else [cfg.path]
        cmd += [
            "--print",
            "--verbose",
            "--output-format", "stream-json",
            "--max-budget-usd", f"{cfg.max_budget_usd:g}",
        ]
        for tool in cfg.allowed_tools:
            cmd += ["--allowed-tools", tool]
        if cfg.dangerously_skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        for directory in cfg.allowed_directories or []:
            cmd += ["--add-dir", directory]
        if session_id:
            cmd += ["--resume", session_id]
        return [str(c) for c in cmd]

    def build_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        for name in _SCRUBBED_ENV:
            env.pop(name, None)
        if self._cfg.extra_path:
            env["PATH"] = os.pathsep.join(p for p in [self._cfg.extra_path, env.get("PATH", "")] if p)
        return env

    async def run(
        self,
        prompt: str,
        session_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[SubprocessEvent]:
        """Yield parsed events until the CLI exits.

        Raises ``TransportError`` if the process cannot start, is killed by
        a signal, or exits non-zero.
        """
        cmd = self.build_command(session_id)
        stdin_content = build_stdin(prompt, system_prompt)
        logger.info(
            "Spawning CLI: %s (%s), %s, stdin=%d chars",
            cmd[0],
            "node" if self._cfg.uses_node_entry else "bin",
            f"resume {session_id}" if session_id else "new session",
            len(stdin_content),
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(),
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise TransportError(f"Failed to start CLI '{cmd[0]}': {e}", reason="spawn_failed") from e

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        stderr_chunks: List[str] = []
        stopped_by: List[str] = []
        kill_timers: List[asyncio.TimerHandle] = []

        def _force_kill() -> None:
            if proc.returncode is None:
                logger.warning("CLI still running %ss after SIGTERM; killing pid=%s", self._cfg.terminate_grace, proc.pid)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass

        def _kill(reason: str) -> None:
            if proc.returncode is None and not stopped_by:
                stopped_by.append(reason)
                try:
                    proc.terminate()
                except ProcessLookupError:
                    return
                kill_timers.append(loop.call_later(self._cfg.terminate_grace, _force_kill))

        def _on_timeout() -> None:
            logger.warning("CLI timed out after %ss; terminating pid=%s", self._cfg.timeout_ms / 1000, proc.pid)
            _kill("timeout")

        timer = loop.call_later(self._cfg.timeout_ms / 1000, _on_timeout)
        stdout_task = asyncio.create_task(self._read_stdout(proc, queue), name="cli-stdout-reader")
        stderr_task = asyncio.create_task(self._read_stderr(proc, stderr_chunks), name="cli-stderr-reader")
        cancel_task: Optional[asyncio.Task] = None
        if cancel is not None:
            cancel_task = asyncio.create_task(self._watch_cancel(cancel, _kill), name="cli-cancel-watch")

        try:
            await self._write_stdin(proc, stdin_content)
            while True:
                item = await queue.get()
                if item is _EOF:
                    break
                yield item

            returncode = await proc.wait()
            await stderr_task
            sig = _signal_name(returncode) if returncode < 0 else None
            logger.info("CLI closed: code=%s, signal=%s", None if sig else returncode, sig)
            if sig or returncode != 0:
                stderr = "".join(stderr_chunks)[: self._cfg.stderr_limit]
                err = TransportError.from_close(None if sig else returncode, sig, stderr)
                if stopped_by:
                    err.reason = stopped_by[0]
                raise err
        finally:
            timer.cancel()
            for handle in kill_timers:
                handle.cancel()
            if cancel_task is not None:
                cancel_task.cancel()
            if proc.returncode is None:
                # Consumer stopped early
                await self._stop(proc)
            for t in (stdout_task, stderr_task):
                if not t.done():
                    t.cancel()
                    try:
                        await t
                    except asyncio.CancelledError:
                        pass

    async def _write_stdin(self, proc: asyncio.subprocess.Process, content: str) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(content.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Process died before reading; its exit status tells the story
            logger.debug("CLI closed stdin early")
        finally:
            proc.stdin.close()

    async def _read_stdout(self, proc: asyncio.subprocess.Process, queue: asyncio.Queue) -> None:
        try:
            while proc.stdout is not None:
                try:
                    raw = await proc.stdout.readline()
                except ValueError:
                    logger.warning("Skipping oversized CLI output line")
                    continue
                if not raw:
                    break
                event = parse_line(raw.decode("utf-8", errors="replace"))
                if event is not None:
                    await queue.put(event)
        except (OSError, RuntimeError) as e:
            logger.error("Error reading CLI stdout: %s", e, exc_info=True)
        # Not reached on cancellation: nobody is left to drain the queue then
        await queue.put(_EOF)

    async def _read_stderr(self, proc: asyncio.subprocess.Process, chunks: List[str]) -> None:
        if proc.stderr is None:
            return
        while True:
            raw = await proc.stderr.readline()
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace")
            chunks.append(text)
            if text.strip():
                logger.info("[cli stderr] %s", text.strip()[:200])

    async def _watch_cancel(self, cancel: asyncio.Event, kill) -> None:
        await cancel.wait()
        logger.info("CLI run cancelled by caller")
        kill("cancelled")

    async def _stop(self, proc: asyncio.subprocess.Process) -> None:
        """Terminate, then kill after the grace period."""
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._cfg.terminate_grace)
        except asyncio.TimeoutError:
            logger.warning("Terminate timed out; killing CLI pid=%s", proc.pid)
            proc.kill()
            try:
                await asyncio.wait_for(proc.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                logger.error("Failed to kill CLI pid=%s promptly", proc.pid)
