"""
Runs one external command to completion and captures its output
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
READ_CHUNK_SIZE = 64 * 1024


class OutputLimitExceeded(Exception):
    """A stream produced more bytes than the runner will hold"""


@dataclass(frozen=True)
class ProcessResult:
    """Captured streams plus what went wrong, if anything"""
    stdout: str = ""
    stderr: str = ""
    returncode: Optional[int] = None
    error: Optional[str] = None  # spawn failure, non-zero exit, signal, overflow or timeout
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def combined_output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


class ProcessRunner:
    """Generic run-and-capture primitive; knows nothing about deployments"""

    def __init__(self, max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES):
        self.max_output_bytes = max_output_bytes
        self.logger = logging.getLogger('stylus_deployer.runner')

    async def run(self, command: Sequence[str], cwd: Optional[str] = None,
                  env: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> ProcessResult:
        """Execute `command` in `cwd` with `env` layered over os.environ.

        Never raises for process problems; they come back in `error`.
        Cancellation kills the child and propagates.
        """
        argv = [str(part) for part in command]
        merged_env = dict(os.environ)
        merged_env.update(env or {})

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=merged_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error(f"Failed to start {argv[0]}: {e}")
            return ProcessResult(error=f"failed to start {argv[0]}: {e}")

        stdout_buf = bytearray()
        stderr_buf = bytearray()

        try:
            returncode = await asyncio.wait_for(
                self._communicate(process, stdout_buf, stderr_buf), timeout
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            return self._result(stdout_buf, stderr_buf, process.returncode,
                                error=f"timed out after {timeout}s", timed_out=True)
        except OutputLimitExceeded as e:
            await self._kill(process)
            return self._result(stdout_buf, stderr_buf, process.returncode, error=str(e))
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        error = None
        if returncode < 0:
            error = f"terminated by signal {-returncode}"
        elif returncode != 0:
            error = f"exited with status {returncode}"
        return self._result(stdout_buf, stderr_buf, returncode, error=error)

    async def _communicate(self, process, stdout_buf: bytearray, stderr_buf: bytearray) -> int:
        tasks = [
            asyncio.ensure_future(self._drain(process.stdout, stdout_buf, "stdout")),
            asyncio.ensure_future(self._drain(process.stderr, stderr_buf, "stderr")),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
        return await process.wait()

    async def _drain(self, stream, buffer: bytearray, label: str):
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            if len(buffer) + len(chunk) > self.max_output_bytes:
                raise OutputLimitExceeded(
                    f"{label} exceeded {self.max_output_bytes} bytes"
                )
            buffer.extend(chunk)

    async def _kill(self, process):
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    @staticmethod
    def _result(stdout_buf: bytearray, stderr_buf: bytearray, returncode: Optional[int],
                error: Optional[str] = None, timed_out: bool = False) -> ProcessResult:
        return ProcessResult(
            stdout=stdout_buf.decode('utf-8', errors='replace'),
            stderr=stderr_buf.decode('utf-8', errors='replace'),
            returncode=returncode,
            error=error,
            timed_out=timed_out,
        )
