"""
Test doubles for running actions, the engine and pollers without Docker.
"""
import asyncio
import re
from dataclasses import dataclass
from typing import Optional

from .types import CommandResult


@dataclass
class ScriptedResponse:
    """Canned result for commands matching a regex."""
    pattern: re.Pattern
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    times: Optional[int] = None
    delay: float = 0.0

    def matches(self, command: str) -> bool:
        return (self.times is None or self.times > 0) and bool(self.pattern.search(command))


class FakeCommandRunner:
    """CommandRunner that records commands and returns scripted results.

    Responses registered later take precedence over earlier ones. Commands
    with no matching response get the default result (exit 0, empty output).

    Example:
        runner = FakeCommandRunner()
        runner.on(r"redis-cli ping", stdout="PONG")
        runner.fail(r"docker info", stderr="Cannot connect to the Docker daemon")
    """

    def __init__(self, default_exit_code: int = 0, default_stdout: str = ""):
        self.default_exit_code = default_exit_code
        self.default_stdout = default_stdout
        self.commands: list[str] = []
        self._responses: list[ScriptedResponse] = []

    def on(self, pattern: str, stdout: str = "", stderr: str = "", exit_code: int = 0,
           times: Optional[int] = None, delay: float = 0.0) -> "FakeCommandRunner":
        self._responses.append(ScriptedResponse(
            pattern=re.compile(pattern),
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            times=times,
            delay=delay
        ))
        return self

    def fail(self, pattern: str, stderr: str = "failed", exit_code: int = 1,
             times: Optional[int] = None) -> "FakeCommandRunner":
        return self.on(pattern, stderr=stderr, exit_code=exit_code, times=times)

    async def run(self, command: str, timeout: Optional[float] = None,
                  privileged_fallback: bool = True) -> CommandResult:
        self.commands.append(command)
        for response in reversed(self._responses):
            if response.matches(command):
                if response.times is not None:
                    response.times -= 1
                if response.delay:
                    await asyncio.sleep(response.delay)
                return CommandResult(command=command, stdout=response.stdout, stderr=response.stderr,
                                     exit_code=response.exit_code)
        return CommandResult(command=command, stdout=self.default_stdout, exit_code=self.default_exit_code)

    def ran(self, pattern: str) -> bool:
        return self.count(pattern) > 0

    def count(self, pattern: str) -> int:
        regex = re.compile(pattern)
        return sum(1 for c in self.commands if regex.search(c))

    def reset(self) -> None:
        self.commands.clear()
