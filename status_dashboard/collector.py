"""Invocation of the external collector process."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Sequence

import structlog


logger = structlog.get_logger(__name__)

STDERR_LOG_LIMIT = 500


@dataclass(frozen=True)
class CollectorResult:
    """Structured completion event of one collector invocation."""

    exit_code: int | None
    stderr: str = ""
    error: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.exit_code == 0

    def stderr_excerpt(self, limit: int = STDERR_LOG_LIMIT) -> str:
        return self.stderr[:limit]


class CollectorRunner:
    """Runs the collector as a child process and reports how it ended."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: str | None = None,
        timeout_seconds: float = 0,
    ) -> None:
        if not command:
            raise ValueError("collector command must not be empty")
        self.command = list(command)
        self.cwd = cwd
        self.timeout_seconds = float(timeout_seconds or 0)

    async def run(self) -> CollectorResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return CollectorResult(exit_code=None, error=f"{type(exc).__name__}: {exc}")

        try:
            if self.timeout_seconds > 0:
                _out_b, err_b = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
            else:
                _out_b, err_b = await proc.communicate()
        except asyncio.TimeoutError:
            await self._kill(proc)
            return CollectorResult(
                exit_code=proc.returncode,
                error=f"collector timed out after {self.timeout_seconds:g}s",
                timed_out=True,
            )
        except asyncio.CancelledError:
            # Shutdown does not wait for the refresh; don't leave an orphan behind.
            await self._kill(proc)
            raise

        err = (err_b or b"").decode("utf-8", errors="replace")
        return CollectorResult(exit_code=proc.returncode, stderr=err)

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        try:
            await proc.wait()
        except Exception:
            logger.warning("Collector did not exit after kill", pid=proc.pid)
