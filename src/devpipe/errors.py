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
Error taxonomy for the image pipeline.

Every failure the pipeline knows about is a subclass of PipelineError. The
class attributes carry the policy: `fatal` decides whether the orchestrator
stops the pipeline, and `exit_code` is what the CLI exits with.
"""
from typing import List, Optional


class PipelineError(RuntimeError):
    """Base class for known pipeline failures."""

    exit_code = 1
    fatal = True

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}\n{self.detail}"
        return self.message


class ConfigError(PipelineError):
    """Settings file could not be read or does not match the schema."""

    exit_code = 2


class ToolMissing(PipelineError):
    """A required external binary is not on PATH."""

    exit_code = 3

    def __init__(self, tools: List[str], hint: str = ""):
        names = " or ".join(tools)
        message = f"Required tool not found on PATH: {names}"
        super().__init__(message, hint)
        self.tools = tools


class BuildFailed(PipelineError):
    """Every build strategy was tried and none produced the image."""

    exit_code = 4

    def __init__(self, message: str, detail: str = "", attempts: Optional[list] = None):
        super().__init__(message, detail)
        self.attempts = attempts or []


class VerificationFailed(PipelineError):
    """A build reported success but the image could not be found afterwards."""

    exit_code = 5

    def __init__(self, reference: str, detail: str = "", attempts: Optional[list] = None):
        super().__init__(f"Image not found after successful build: {reference}", detail)
        self.reference = reference
        self.attempts = attempts or []


class ValidationFailed(PipelineError):
    """One or more fatal checks failed."""

    exit_code = 6

    def __init__(self, reference: str, failed_checks: List[str]):
        super().__init__(
            f"Validation failed for {reference}: {', '.join(failed_checks)}"
        )
        self.reference = reference
        self.failed_checks = failed_checks


class ValidationAdvisoryFailed(PipelineError):
    """
    An advisory check failed.

    Never raised; the orchestrator records instances as warnings.
    """

    fatal = False
    exit_code = 0

    def __init__(self, reference: str, failed_checks: List[str]):
        super().__init__(
            f"Advisory checks failed for {reference}: {', '.join(failed_checks)}"
        )
        self.reference = reference
        self.failed_checks = failed_checks


class PromotionPartialFailure(PipelineError):
    """Some tags could not be promoted. Successful tags are left in place."""

    exit_code = 7

    def __init__(self, failed_tags: List[str], promoted_tags: List[str]):
        super().__init__(
            f"Failed to promote {len(failed_tags)} tag(s): {', '.join(failed_tags)}"
        )
        self.failed_tags = failed_tags
        self.promoted_tags = promoted_tags


class NetworkTransient(PipelineError):
    """A registry or package source could not be reached."""

    exit_code = 8

    def __init__(self, target: str, detail: str = ""):
        super().__init__(f"Could not reach {target}", detail)
        self.target = target
