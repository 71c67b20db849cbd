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
Image builder: runs an ordered list of build strategies until one produces
an image that can be found afterwards.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from ..errors import BuildFailed, ToolMissing, VerificationFailed
from ..MODELS.build_config import BuildConfig
from ..MODELS.built_image import BuiltImage
from ..MODELS.settings import BuildSettings
from ..REGISTRY.manifest import ManifestTool
from ..RUNNERS.command_runner import CommandRunner
from .strategies import (
    BuildRequest,
    BuildStrategy,
    DirectBuilder,
    HighLevelBuilder,
    SingleArchBuilder,
)

logger = logging.getLogger(__name__)


class AttemptOutcome(str, Enum):
    """Typed result of one strategy attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_FOUND = "not-found"
    SKIPPED = "skipped"


@dataclass
class PlannedAttempt:
    strategy: BuildStrategy
    request: BuildRequest
    diagnostic: bool = False


@dataclass
class BuildAttempt:
    """What happened when one planned attempt ran."""

    strategy: str
    outcome: AttemptOutcome
    detail: str = ""
    diagnostic: bool = False


class ImageBuilder:
    """
    Produces a BuiltImage from a build context and a BuildConfig.

    CI mode builds every platform and pushes the staging reference; if that
    fails a single-architecture diagnostic image is built locally, which does
    not satisfy the build. LOCAL mode builds the host platform into the local
    image store, falling back from the preferred builder to buildx and then
    to plain docker build.
    """

    def __init__(self,
                 provider: BuildStrategy,
                 runner: CommandRunner,
                 settings: Optional[BuildSettings] = None,
                 stream_output: bool = False):
        """
        Initializes the builder.

        :param provider: Preferred strategy, selected once at startup.
        :param runner: Runner for docker invocations.
        :param settings: Build options (args, cache, labels, timeout).
        :param stream_output: Stream tool output to the console instead of
            capturing it.
        """
        self.provider = provider
        self.runner = runner
        self.settings = settings or BuildSettings()
        self.stream_output = stream_output
        self.manifests = ManifestTool(runner)
        self.attempts: List[BuildAttempt] = []

    def build(self, context_dir: str, config: BuildConfig) -> BuiltImage:
        """
        Builds the staging image for `config`.

        :param context_dir: Directory holding the build recipe.
        :param config: Resolved build configuration.
        :return: The verified image.
        :raises ToolMissing: docker is not installed.
        :raises BuildFailed: every strategy failed.
        :raises VerificationFailed: a build succeeded but the image is missing.
        """
        if not os.path.isdir(context_dir):
            raise BuildFailed(f"Context directory not found: {context_dir}")
        if not self.runner.which("docker"):
            raise ToolMissing(["docker"], "docker is required to build and inspect images.")

        self.attempts = []
        plan = self.plan(context_dir, config)
        logger.info(
            "Building %s for %s (%s)",
            config.image_reference, ",".join(config.platforms), config.mode.value,
        )

        for planned in plan:
            attempt = self._run(planned, config)
            self.attempts.append(attempt)
            if attempt.outcome != AttemptOutcome.SUCCEEDED:
                continue
            if planned.diagnostic:
                raise BuildFailed(
                    "Multi-platform build failed; a single-architecture diagnostic "
                    f"image was built locally as {planned.request.reference}",
                    self._attempt_summary(),
                    self.attempts,
                )
            logger.info("Build complete: %s", planned.request.reference)
            return BuiltImage(
                reference=planned.request.reference,
                platforms=planned.request.platforms,
                locally_loaded=not planned.request.push,
                pushed=planned.request.push,
                strategy=planned.strategy.name,
            )

        if any(a.outcome == AttemptOutcome.NOT_FOUND for a in self.attempts):
            raise VerificationFailed(config.image_reference, self._attempt_summary(), self.attempts)
        raise BuildFailed(
            f"All build strategies failed for {config.image_reference}",
            self._attempt_summary(),
            self.attempts,
        )

    def plan(self, context_dir: str, config: BuildConfig) -> List[PlannedAttempt]:
        """Ordered strategies to try for this mode."""
        request = self._request(context_dir, config)
        if config.is_ci:
            fallback = request.single_platform(config.platforms[0])
            return [
                PlannedAttempt(DirectBuilder(), request),
                PlannedAttempt(SingleArchBuilder(), fallback, diagnostic=True),
            ]

        local = request.single_platform(config.platforms[0])
        local.cache_to = list(request.cache_to)
        plan = [PlannedAttempt(self.provider, local)]
        if isinstance(self.provider, HighLevelBuilder):
            plan.append(PlannedAttempt(DirectBuilder(), local))
        plan.append(PlannedAttempt(SingleArchBuilder(), local))
        return plan

    def verify(self, reference: str, pushed: bool) -> bool:
        """True when the image is present in the store it was built into."""
        if pushed:
            return self.manifests.exists(reference)
        return self.runner.run(["docker", "image", "inspect", reference]).ok

    def _run(self, planned: PlannedAttempt, config: BuildConfig) -> BuildAttempt:
        strategy, request = planned.strategy, planned.request
        if not strategy.supports(request):
            return BuildAttempt(strategy.name, AttemptOutcome.SKIPPED,
                                "request not supported", planned.diagnostic)
        if not strategy.available(self.runner):
            return BuildAttempt(strategy.name, AttemptOutcome.SKIPPED,
                                "tool not available", planned.diagnostic)

        result = strategy.build(
            self.runner, request, timeout=self.settings.timeout, capture=not self.stream_output
        )
        if not result.ok:
            logger.warning("%s build failed; trying next strategy", strategy.name)
            return BuildAttempt(strategy.name, AttemptOutcome.FAILED,
                                result.describe(), planned.diagnostic)

        if not self.verify(request.reference, request.push):
            logger.warning(
                "%s reported success but %s was not found", strategy.name, request.reference
            )
            return BuildAttempt(strategy.name, AttemptOutcome.NOT_FOUND,
                                f"{request.reference} not found after build", planned.diagnostic)

        return BuildAttempt(strategy.name, AttemptOutcome.SUCCEEDED, "", planned.diagnostic)

    def _request(self, context_dir: str, config: BuildConfig) -> BuildRequest:
        return BuildRequest(
            context_dir=context_dir,
            reference=config.image_reference,
            platforms=config.platforms,
            push=config.is_ci,
            load=not config.is_ci,
            dockerfile=self.settings.dockerfile,
            build_args=dict(self.settings.build_args),
            cache_from=list(self.settings.cache_from),
            cache_to=list(self.settings.cache_to),
            no_cache=self.settings.no_cache,
            labels=self._labels(config),
        )

    def _labels(self, config: BuildConfig) -> Dict[str, str]:
        labels = {
            "org.opencontainers.image.revision": config.commit_id,
            "org.opencontainers.image.created": datetime.now(timezone.utc)
            .isoformat(timespec="seconds").replace("+00:00", "Z"),
        }
        if self.settings.source_url:
            labels["org.opencontainers.image.source"] = self.settings.source_url
        labels.update(self.settings.labels)
        return labels

    def _attempt_summary(self) -> str:
        lines = []
        for attempt in self.attempts:
            tag = " (diagnostic)" if attempt.diagnostic else ""
            line = f"- {attempt.strategy}{tag}: {attempt.outcome.value}"
            if attempt.detail:
                line += f"\n  {attempt.detail.splitlines()[0]}"
            lines.append(line)
        return "\n".join(lines)
