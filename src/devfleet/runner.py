"""Async runner for the external tools (git, tmux, gh)."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Exit code reported when the executable could not be started
EXIT_NOT_STARTED = 127


@dataclass(frozen=True)
class CommandResult:
    """Holds the outcome of one external command."""

    args: tuple
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> Optional[str]:
        """Trimmed stdout of a successful command, or None.

        None covers both failure and empty output: for the probes both
        mean "signal unavailable".
        """
        if not self.ok:
            return None
        text = self.stdout.strip()
        return text or None

    @property
    def display(self) -> str:
        return " ".join(str(a) for a in self.args)


class CommandRunner:
    """Execute commands as subprocesses on the running event loop.

    Every external-tool call in the reconciliation engine goes through
    run(), so these calls are the only points where a refresh pass yields.
    There is no timeout: a hung tool stalls only the pass awaiting it.
    """

    async def run(self, *args: str, cwd: Optional[str] = None) -> CommandResult:
        return await self._invoke(tuple(str(a) for a in args), cwd)

    async def _invoke(self, args: tuple, cwd: Optional[str]) -> CommandResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as e:
            logger.debug("Could not start %s: %s", args[0], e)
            return CommandResult(args=args, returncode=EXIT_NOT_STARTED, stderr=str(e))

        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CommandResult(args=args, returncode=process.returncode, stdout=stdout, stderr=stderr)
