# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Execution of external tools (docker, devcontainer, act) with captured output.
"""
import logging
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class CommandResult:
    """
    Outcome of one external command.
    """

    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Stdout and stderr joined, trimmed."""
        parts = [p.strip() for p in (self.stdout, self.stderr) if p and p.strip()]
        return "\n".join(parts)

    def describe(self) -> str:
        """Short failure description for logs and reports."""
        if self.timed_out:
            return f"timed out after {self.duration:.0f}s: {shlex.join(self.args)}"
        detail = self.stderr.strip() or self.stdout.strip()
        summary = f"exit code {self.returncode}: {shlex.join(self.args)}"
        if detail:
            return f"{summary}\n{detail[-2000:]}"
        return summary


class CommandRunner:
    """
    Runs external commands. Failures are reported in the CommandResult,
    never raised.
    """
    def __init__(self, env: Optional[Dict[str, str]] = None):
        """
        Initializes the runner.

        Args:
            env (Optional[Dict[str, str]]): Environment for child processes.
                Defaults to inheriting the current environment.
        """
        self.env = env

    def which(self, name: str) -> Optional[str]:
        """Returns the absolute path of `name` on PATH, or None."""
        path = None
        if self.env is not None:
            path = self.env.get("PATH")
        return shutil.which(name, path=path)

    def run(self,
            args: Sequence[str],
            timeout: Optional[float] = None,
            capture: bool = True,
            cwd: Optional[str] = None) -> CommandResult:
        """
        Runs a command to completion.

        Args:
            args (Sequence[str]): Command and arguments.
            timeout (Optional[float]): Seconds before the command is killed.
            capture (bool): Capture output instead of streaming it to the
                console.
            cwd (Optional[str]): Working directory.

        Returns:
            CommandResult: The outcome.
        """
        args = [str(a) for a in args]
        logger.debug("Running: %s", shlex.join(args))
        started = time.monotonic()
        try:
            completed = subprocess.run(
                args,
                env=self.env,
                cwd=cwd,
                capture_output=capture,
                text=True,
                timeout=timeout,
                check=False,
                shell=False,
            )
        except FileNotFoundError as e:
            return CommandResult(args=args, returncode=EXIT_NOT_FOUND, stderr=str(e),
                                 duration=time.monotonic() - started)
        except subprocess.TimeoutExpired as e:
            return CommandResult(args=args, returncode=EXIT_TIMEOUT,
                                 stdout=_as_text(e.stdout), stderr=_as_text(e.stderr),
                                 timed_out=True, duration=time.monotonic() - started)

        return CommandResult(
            args=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=time.monotonic() - started,
        )


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
