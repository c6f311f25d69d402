"""Shared plumbing for adapters that invoke external command-line tools."""

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.credentials import CredentialProvider, EnvironmentCredentialProvider
from ..core.errors import AdapterFailure, AdapterTimeout
from ..core.interfaces import ABSENT, StageAdapter, StageRequest


DEFAULT_TIMEOUT = 1800


@dataclass
class CommandResult:
    """Captured result of one external command."""
    args: List[str]
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0

    @property
    def output(self) -> str:
        """Combined stdout and stderr for diagnostics."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class CommandRunner:
    """Runs external tools with captured output and a timeout."""

    def __init__(self, credentials: Optional[CredentialProvider] = None,
                 base_env: Optional[Mapping[str, str]] = None):
        self.credentials = credentials or EnvironmentCredentialProvider()
        self.base_env = dict(base_env) if base_env is not None else None

    def run(self, args: Sequence[str], cwd: Optional[str] = None,
            secret_names: Sequence[str] = (), env: Optional[Mapping[str, str]] = None,
            timeout: Optional[float] = DEFAULT_TIMEOUT) -> CommandResult:
        """
        Run a command and wait for it to finish.

        Args:
            args: Command and arguments
            cwd: Working directory
            secret_names: Credential names forwarded into the child environment
            env: Extra non-secret environment variables
            timeout: Seconds before the command is killed

        Returns:
            CommandResult: Exit status and captured output

        Raises:
            AdapterTimeout: If the command exceeds its timeout
            AdapterFailure: If the executable cannot be started
        """
        args = [str(arg) for arg in args]
        child_env = dict(self.base_env if self.base_env is not None else os.environ)
        if env:
            child_env.update(env)
        child_env.update(self.credentials.environment_for(secret_names))

        start_time = time.time()
        try:
            completed = subprocess.run(
                args,
                cwd=cwd,
                env=child_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            partial = e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
            raise AdapterTimeout(
                f"{args[0]} did not finish within {timeout} seconds",
                timeout=timeout,
                context={"command": args[0]},
                diagnostics=partial,
            ) from e
        except FileNotFoundError as e:
            raise AdapterFailure(f"{args[0]} is not installed or not on PATH",
                                 context={"command": args[0]}) from e
        except OSError as e:
            raise AdapterFailure(f"Cannot start {args[0]}: {e}", context={"command": args[0]}) from e

        return CommandResult(
            args=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=time.time() - start_time,
        )


class CommandAdapter(StageAdapter):
    """Base class for adapters built on a CommandRunner."""

    executable: str = ""
    required_inputs: Sequence[str] = ("stack_dir",)

    def __init__(self, version: Optional[str] = None, runner: Optional[CommandRunner] = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT, executable: Optional[str] = None):
        super().__init__(version)
        self.runner = runner or CommandRunner()
        self.timeout = timeout
        if executable:
            self.executable = executable

    def validate_inputs(self, inputs: Dict[str, Any]) -> List[str]:
        return [f"missing required input '{name}'" for name in self.required_inputs if not inputs.get(name)]

    def _run(self, request: StageRequest, args: Sequence[str], cwd: Optional[str] = None,
             env: Optional[Mapping[str, str]] = None) -> CommandResult:
        command = [self.executable, *args]
        self.logger.info(f"[{request.stage_name}] running: {' '.join(str(a) for a in command)}")
        result = self.runner.run(command, cwd=cwd, secret_names=request.secret_names,
                                 env=env, timeout=self.timeout)
        self.logger.debug(f"[{request.stage_name}] {self.executable} exited with {result.returncode} "
                          f"after {result.duration:.1f}s")
        return result

    @staticmethod
    def _stack_dir(request: StageRequest) -> str:
        return str(Path(request.inputs["stack_dir"]))

    @staticmethod
    def _optional(request: StageRequest, name: str) -> Optional[Any]:
        """Read an input, treating ABSENT and empty values as missing."""
        value = request.inputs.get(name)
        if value is ABSENT or value in (None, ""):
            return None
        return value
