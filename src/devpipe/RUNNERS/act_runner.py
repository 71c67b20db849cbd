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
Runs the CI workflow locally through `act`, selecting the matrix mode.
"""
import logging
from typing import List, Optional, Sequence

from ..errors import ToolMissing
from ..MODELS.build_config import BuildMode
from .command_runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW = ".github/workflows/docker-build-push.yml"
DEFAULT_JOB = "build-test-publish"


class ActRunner:
    """
    Wrapper around `act -W <workflow> -j <job> --matrix mode:<mode>`.
    """
    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def command(self,
                workflow: str = DEFAULT_WORKFLOW,
                job: str = DEFAULT_JOB,
                mode: BuildMode = BuildMode.LOCAL,
                extra_args: Sequence[str] = ()) -> List[str]:
        return ["act", "-W", workflow, "-j", job, "--matrix", f"mode:{mode.value}", *extra_args]

    def run(self,
            workflow: str = DEFAULT_WORKFLOW,
            job: str = DEFAULT_JOB,
            mode: BuildMode = BuildMode.LOCAL,
            extra_args: Sequence[str] = ()) -> CommandResult:
        """
        Runs the workflow with act, streaming its output.

        Args:
            workflow (str): Workflow file.
            job (str): Job id.
            mode (BuildMode): Matrix mode value.
            extra_args (Sequence[str]): Passed verbatim to act.

        Returns:
            CommandResult: act's outcome.
        """
        if not self.runner.which("act"):
            raise ToolMissing(["act"], "Install act: https://github.com/nektos/act")

        args = self.command(workflow, job, mode, extra_args)
        logger.info("workflow=%s job=%s matrix.mode=%s", workflow, job, mode.value)
        logger.info("Command: %s", " ".join(args))
        result = self.runner.run(args, capture=False)
        if not result.ok:
            logger.error(
                "act failed. If this act version does not support --matrix, run manually: "
                "act -W %s -j %s --matrix mode:%s", workflow, job, mode.value,
            )
        return result
