"""Shell command port used by the Classic engine and adapter resets."""

import asyncio
import logging
import signal as signals
from typing import Optional

from .config import ERROR_TIMEOUT
from .errors import CommandError, CommandTimeoutError

logger = logging.getLogger(__name__)


class CommandRunner:
    """Runs a shell command and returns its decoded stdout."""

    async def run(
        self,
        command: str,
        timeout: Optional[float] = None,
        kill_signal: int = signals.SIGTERM,
    ) -> str:
        raise NotImplementedError


class ShellCommandRunner(CommandRunner):
    """
    CommandRunner backed by `asyncio.create_subprocess_shell`.

    A command still running at `timeout` is sent `kill_signal` and reaped, then
    CommandTimeoutError is raised. A non-zero exit raises CommandError carrying
    the exit code and stderr.
    """

    async def run(
        self,
        command: str,
        timeout: Optional[float] = None,
        kill_signal: int = signals.SIGTERM,
    ) -> str:
        logger.debug("Running %r", command)
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            if proc.returncode is None:
                try:
                    proc.send_signal(kill_signal)
                except ProcessLookupError:
                    logger.debug("Process for %r exited before kill", command)
                await proc.wait()
            raise CommandTimeoutError(
                ERROR_TIMEOUT.format(command, timeout), signal=kill_signal
            ) from exc

        err_text = stderr.decode(errors="replace").strip()
        if proc.returncode != 0:
            raise CommandError(
                f"Command failed: {command}\n{err_text}".rstrip(),
                returncode=proc.returncode,
                stderr=err_text,
            )
        return stdout.decode(errors="replace")


__all__ = ["CommandRunner", "ShellCommandRunner"]
