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
Models describing validation checks and their results.
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class CheckDefinition(BaseModel):
    """
    A single named check run inside the image.

    `script` is a bash fragment; it passes when it exits 0.
    """

    name: str
    script: str
    advisory: bool = False
    description: str = ""


class CheckGroup(BaseModel):
    """
    Checks that share one container invocation.

    Checks in a group run sequentially in the same fresh container;
    `privileged` groups get their own elevated container.
    """

    name: str
    checks: List[CheckDefinition] = Field(min_length=1)
    setup: str = ""
    privileged: bool = False
    timeout: Optional[float] = None
    requires_nested_daemon: bool = False


class CheckResult(BaseModel):
    """Outcome of one check."""

    name: str
    passed: bool
    detail: str = ""
    advisory: bool = False
    group: str = ""
    skipped: bool = False


class ValidationResult(BaseModel):
    """
    Ordered check results for one image reference.

    `strict` promotes advisory checks to fatal.
    """

    image_reference: str
    check_results: List[CheckResult] = []
    strict: bool = False

    def is_fatal(self, result: CheckResult) -> bool:
        return self.strict or not result.advisory

    @property
    def passed(self) -> bool:
        """True when every fatal check passed."""
        return all(
            r.passed for r in self.check_results if self.is_fatal(r) and not r.skipped
        )

    @property
    def fatal_failures(self) -> List[str]:
        return [
            r.name
            for r in self.check_results
            if not r.passed and not r.skipped and self.is_fatal(r)
        ]

    @property
    def advisory_failures(self) -> List[str]:
        return [
            r.name
            for r in self.check_results
            if not r.passed and not r.skipped and not self.is_fatal(r)
        ]

    def add(self, result: CheckResult) -> None:
        self.check_results.append(result)
