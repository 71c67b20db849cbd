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
Validation of built images: each check group runs in its own fresh
container and the per-check results are aggregated into a ValidationResult.
"""
import logging
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from ..MODELS.build_config import BuildConfig
from ..MODELS.built_image import BuiltImage
from ..MODELS.settings import ValidationSettings
from ..MODELS.validation import CheckGroup, CheckResult, ValidationResult
from ..RUNNERS.command_runner import CommandResult, CommandRunner
from .checks import check_environment, parse_group_output, partition_groups, render_group

logger = logging.getLogger(__name__)

IMAGE_AVAILABLE_CHECK = "image-available"
DETAIL_LIMIT = 4000
CONTAINER_PREFIX = "devpipe"


class ImageValidator:
    """
    Runs the configured check groups against an image.

    Checks are fatal unless marked advisory; `settings.strict` makes
    advisory checks fatal too.
    """

    def __init__(self,
                 runner: CommandRunner,
                 settings: Optional[ValidationSettings] = None,
                 groups: Optional[List[CheckGroup]] = None,
                 pull_missing: bool = True,
                 pull_platform: Optional[str] = None):
        """
        Initializes the validator.

        :param runner: Runner for docker invocations.
        :param settings: Validation settings.
        :param groups: Check groups; defaults to the groups for `settings`.
        :param pull_missing: Pull the image when it is not in the local store.
        :param pull_platform: Platform to pull, e.g. linux/amd64 in CI.
        """
        self.runner = runner
        self.settings = settings or ValidationSettings()
        if groups is None:
            self.groups, self.skipped_groups = partition_groups(self.settings)
        else:
            self.groups, self.skipped_groups = groups, []
        self.pull_missing = pull_missing
        self.pull_platform = pull_platform
        self.environment = check_environment(self.settings)

    @classmethod
    def for_config(cls, runner: CommandRunner, settings: ValidationSettings,
                   config: BuildConfig) -> "ImageValidator":
        """Validator that pulls the configured platform in CI mode."""
        return cls(runner, settings,
                   pull_platform=settings.pull_platform if config.is_ci else None)

    def validate(self, image) -> ValidationResult:
        """
        Validates one image.

        :param image: A BuiltImage or an image reference string.
        :return: Ordered results for every check.
        """
        reference = image.reference if isinstance(image, BuiltImage) else str(image)
        result = ValidationResult(image_reference=reference, strict=self.settings.strict)
        logger.info("Testing image: %s", reference)

        availability = self.ensure_available(reference)
        result.add(availability)
        if not availability.passed:
            logger.error("Image not available: %s", reference)
            return result

        for group in self.groups:
            for check_result in self.run_group(reference, group):
                result.add(check_result)
                self._log_check(result, check_result)
        for group in self.skipped_groups:
            for check in group.checks:
                result.add(CheckResult(
                    name=check.name, passed=False, skipped=True, advisory=check.advisory,
                    group=group.name, detail="nested daemon tests disabled or unsupported",
                ))
                logger.info("SKIP %s", check.name)

        if result.passed:
            logger.info("Tests passed for %s", reference)
        else:
            logger.error("Tests FAILED for %s: %s", reference, ", ".join(result.fatal_failures))
        return result

    def validate_many(self, images: Sequence) -> Dict[str, ValidationResult]:
        """
        Validates independent images concurrently and joins all of them.
        Results are keyed by reference in input order; a repeated reference
        is validated once.
        """
        references = list(dict.fromkeys(
            i.reference if isinstance(i, BuiltImage) else str(i) for i in images
        ))
        if not references:
            return {}
        workers = min(self.settings.max_workers, len(references))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="validate") as pool:
            futures = [pool.submit(self.validate, ref) for ref in references]
            results = [future.result() for future in futures]
        return dict(zip(references, results))

    def ensure_available(self, reference: str) -> CheckResult:
        """Look for the image locally and pull it if allowed."""
        if self.runner.run(["docker", "image", "inspect", reference]).ok:
            return CheckResult(name=IMAGE_AVAILABLE_CHECK, passed=True, detail="present locally")
        if not self.pull_missing:
            return CheckResult(name=IMAGE_AVAILABLE_CHECK, passed=False,
                               detail=f"{reference} not found locally")
        args = ["docker", "pull"]
        if self.pull_platform:
            args.extend(["--platform", self.pull_platform])
        args.append(reference)
        logger.info("Pulling %s", reference)
        pulled = self.runner.run(args)
        if pulled.ok:
            return CheckResult(name=IMAGE_AVAILABLE_CHECK, passed=True, detail="pulled")
        return CheckResult(name=IMAGE_AVAILABLE_CHECK, passed=False, detail=pulled.describe())

    def run_group(self, reference: str, group: CheckGroup) -> List[CheckResult]:
        """Runs every check of `group` inside one fresh container."""
        name = container_name(group.name)
        args = ["docker", "run", "--rm", "--name", name]
        if group.privileged:
            args.append("--privileged")
        for key, value in self.environment.items():
            args.extend(["-e", f"{key}={value}"])
        args.extend(["--entrypoint", "bash", reference, "-lc", render_group(group)])

        logger.debug("Running check group %s", group.name)
        completed = self.runner.run(args, timeout=group.timeout)
        if completed.timed_out:
            # Killing the client leaves the container running
            logger.warning("Check group %s timed out, removing container %s", group.name, name)
            self.runner.run(["docker", "rm", "-f", name])
        parsed = parse_group_output(completed.stdout)

        results = []
        for check in group.checks:
            if check.name in parsed:
                code, output = parsed[check.name]
                results.append(CheckResult(
                    name=check.name,
                    passed=code == 0,
                    detail=_trim(output if code == 0 else f"exit code {code}\n{output}"),
                    advisory=check.advisory,
                    group=group.name,
                ))
            else:
                results.append(CheckResult(
                    name=check.name,
                    passed=False,
                    detail=_trim(self._container_failure(completed)),
                    advisory=check.advisory,
                    group=group.name,
                ))
        return results

    @staticmethod
    def _container_failure(completed: CommandResult) -> str:
        if completed.timed_out:
            return f"check did not finish: container timed out after {completed.duration:.0f}s"
        return f"check did not run: {completed.describe()}"

    @staticmethod
    def _log_check(result: ValidationResult, check: CheckResult) -> None:
        if check.passed:
            logger.info("PASS %s", check.name)
        elif result.is_fatal(check):
            logger.error("FAIL %s", check.name)
        else:
            logger.warning("FAIL %s (advisory)", check.name)


def container_name(group_name: str) -> str:
    """Unique container name for one group run."""
    slug = re.sub(r"[^a-zA-Z0-9_.-]+", "-", group_name).strip("-.") or "group"
    return f"{CONTAINER_PREFIX}-{slug}-{uuid.uuid4().hex[:12]}"


def _trim(text: str) -> str:
    if len(text) <= DETAIL_LIMIT:
        return text
    return "..." + text[-DETAIL_LIMIT:]
