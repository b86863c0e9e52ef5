"""Shell command execution for repair actions and health probes."""
import asyncio
import logging
import os
import shlex
import signal
import time
from typing import Optional

from .exceptions import CommandTimeoutError
from .types import CommandResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124

SHELL_OPERATORS = frozenset({"&&", "||", "|", ";", "&", "(", ")", ";;", "|&"})


def is_compound(command: str) -> bool:
    """Whether the command needs a shell: pipes, lists, subshells or redirections."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    try:
        tokens = list(lexer)
    except ValueError:
        return True
    return any(token in SHELL_OPERATORS or token[0] in "<>" for token in tokens if token)


def elevate(command: str) -> str:
    """Prefix a command with ``sudo -n`` so every part of it runs elevated."""
    if is_compound(command):
        return f"sudo -n sh -c {shlex.quote(command)}"
    return f"sudo -n {command}"


class ShellCommandRunner:
    """Runs shell commands with a timeout and a privileged fallback.

    A command that exits non-zero is retried once through ``sudo -n`` when
    ``privileged_fallback`` is requested and sudo is enabled. Compound
    commands are wrapped in ``sh -c`` for the retry so sudo covers each
    part. Failures are reported through ``CommandResult.exit_code``, never
    raised.

    Commands run in ``cwd``; the supervisor sets it to the project root so
    ``docker-compose`` finds the compose file.
    """

    def __init__(self, default_timeout: float = 30.0, use_sudo: bool = True, cwd: Optional[str] = None):
        self.default_timeout = default_timeout
        self.use_sudo = use_sudo
        self.cwd = cwd

    async def run(
        self,
        command: str,
        timeout: Optional[float] = None,
        privileged_fallback: bool = True
    ) -> CommandResult:
        timeout = timeout or self.default_timeout
        result = await self._run_once(command, timeout)
        if result.ok or not privileged_fallback or not self.use_sudo:
            return result
        if command.lstrip().startswith("sudo "):
            return result

        logger.debug(f"Retrying with elevated privileges: {command}")
        return await self._run_once(elevate(command), timeout)

    async def _run_once(self, command: str, timeout: float) -> CommandResult:
        started = time.monotonic()
        try:
            stdout, stderr, exit_code = await self._execute(command, timeout)
        except CommandTimeoutError as e:
            logger.warning(str(e))
            return CommandResult(
                command=command,
                stderr=str(e),
                exit_code=TIMEOUT_EXIT_CODE,
                duration=time.monotonic() - started
            )
        except OSError as e:
            logger.warning(f"Failed to spawn '{command}': {e}")
            return CommandResult(command=command, stderr=str(e), exit_code=127,
                                 duration=time.monotonic() - started)

        result = CommandResult(
            command=command,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration=time.monotonic() - started
        )
        logger.debug(f"'{command}' exited with {exit_code} in {result.duration:.2f}s")
        return result

    async def _execute(self, command: str, timeout: float) -> tuple[str, str, int]:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            start_new_session=True
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            self._kill_group(process)
            await process.wait()
            raise CommandTimeoutError(command, timeout)

        return (
            stdout.decode(errors="replace").strip(),
            stderr.decode(errors="replace").strip(),
            process.returncode if process.returncode is not None else -1,
        )

    @staticmethod
    def _kill_group(process: asyncio.subprocess.Process) -> None:
        # The shell runs in its own session, so its pid is the group id
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug(f"Process group {process.pid} already exited")
        except PermissionError as e:
            logger.warning(f"Cannot kill process group {process.pid}: {e}")
            process.kill()
