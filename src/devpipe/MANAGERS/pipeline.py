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
Orchestration of the full pipeline: resolve, build, validate, promote.
"""
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from ..BUILDERS.image_builder import ImageBuilder
from ..BUILDERS.strategies import BuildStrategy, select_build_provider
from ..errors import (
    BuildFailed,
    PipelineError,
    PromotionPartialFailure,
    ToolMissing,
    ValidationAdvisoryFailed,
    ValidationFailed,
    VerificationFailed,
)
from ..MODELS.build_config import BuildConfig
from ..MODELS.built_image import BuiltImage
from ..MODELS.promotion import PromotionReport
from ..MODELS.settings import PipelineSettings
from ..MODELS.validation import ValidationResult
from ..PROMOTERS.tag_promoter import TagPromoter, promotable_tags
from ..REGISTRY.tag_policy import read_tags_file
from ..RUNNERS.command_runner import CommandRunner
from ..VALIDATORS.image_validator import ImageValidator
from .environment_resolver import EnvironmentResolver

logger = logging.getLogger(__name__)

STAGES = ("resolve", "build", "validate", "promote")


class StageStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"
    PENDING = "pending"


@dataclass
class PipelineReport:
    """
    Everything one pipeline run produced. Fatal errors decide the exit code;
    warnings are reported but do not fail the run.
    """

    config: Optional[BuildConfig] = None
    image: Optional[BuiltImage] = None
    validation: Optional[ValidationResult] = None
    promotion: Optional[PromotionReport] = None
    errors: List[PipelineError] = field(default_factory=list)
    warnings: List[PipelineError] = field(default_factory=list)
    stages: Dict[str, StageStatus] = field(
        default_factory=lambda: {stage: StageStatus.PENDING for stage in STAGES}
    )

    @property
    def succeeded(self) -> bool:
        return not self.errors

    @property
    def exit_code(self) -> int:
        for error in self.errors:
            if error.fatal:
                return error.exit_code
        return 0

    def fail(self, stage: str, error: PipelineError) -> None:
        self.errors.append(error)
        self.stages[stage] = StageStatus.FAILED
        for later in STAGES[STAGES.index(stage) + 1:]:
            if self.stages[later] == StageStatus.PENDING:
                self.stages[later] = StageStatus.SKIPPED


class PipelineOrchestrator:
    """
    Runs Resolver -> Builder -> Validator -> Promoter in order; each stage
    consumes the previous stage's output.
    """

    def __init__(self,
                 settings: Optional[PipelineSettings] = None,
                 runner: Optional[CommandRunner] = None,
                 env: Optional[Mapping[str, str]] = None,
                 provider: Optional[BuildStrategy] = None,
                 stream_output: bool = False):
        """
        Initializes the orchestrator.

        :param settings: Pipeline settings.
        :param runner: Runner shared by every stage.
        :param env: Environment for mode detection. Defaults to os.environ.
        :param provider: Preferred build strategy; selected from PATH if None.
        :param stream_output: Stream build output to the console.
        """
        self.settings = settings or PipelineSettings()
        self.runner = runner or CommandRunner()
        self.env = dict(os.environ) if env is None else dict(env)
        self.provider = provider
        self.stream_output = stream_output
        self.resolver = EnvironmentResolver(self.settings, env=self.env, runner=self.runner)

    def run(self,
            context_dir: Optional[str] = None,
            tags: Optional[Sequence[str]] = None,
            promote: bool = True,
            mode: Optional[str] = None,
            refresh: bool = False) -> PipelineReport:
        """
        Runs the pipeline.

        :param context_dir: Build context; defaults to settings.build.context_dir.
        :param tags: Destination tags; defaults to the tags file.
        :param promote: Run the promotion stage.
        :param mode: Mode override.
        :param refresh: Ignore the environment cache.
        :return: The report; never raises for known pipeline failures.
        """
        report = PipelineReport()
        context_dir = context_dir or self.settings.build.context_dir

        config = self.resolver.resolve(mode_override=mode, refresh=refresh)
        report.config = config
        report.stages["resolve"] = StageStatus.OK

        try:
            report.image = self.build(context_dir, config)
        except (ToolMissing, BuildFailed, VerificationFailed) as e:
            logger.error("%s", e.message)
            report.fail("build", e)
            return report
        report.stages["build"] = StageStatus.OK

        report.validation = self.validate(report.image, config)
        if not report.validation.passed:
            report.fail("validate", ValidationFailed(
                report.image.reference, report.validation.fatal_failures
            ))
            return report
        report.stages["validate"] = StageStatus.OK
        if report.validation.advisory_failures:
            warning = ValidationAdvisoryFailed(
                report.image.reference, report.validation.advisory_failures
            )
            logger.warning("%s", warning.message)
            report.warnings.append(warning)

        if not promote:
            report.stages["promote"] = StageStatus.SKIPPED
            return report

        if tags is None:
            tags = read_tags_file(config.tags_file)
        report.promotion = self.promote(report.image, config, promotable_tags(tags))
        if report.promotion.succeeded:
            report.stages["promote"] = StageStatus.OK
        else:
            report.fail("promote", PromotionPartialFailure(
                report.promotion.failed_tags, report.promotion.promoted_tags
            ))
        return report

    def build(self, context_dir: str, config: BuildConfig) -> BuiltImage:
        provider = self.provider or select_build_provider(self.runner)
        builder = ImageBuilder(provider, self.runner, self.settings.build,
                               stream_output=self.stream_output)
        return builder.build(context_dir, config)

    def validate(self, image: BuiltImage, config: BuildConfig) -> ValidationResult:
        validator = ImageValidator.for_config(self.runner, self.settings.validation, config)
        return validator.validate(image)

    def promote(self, image: BuiltImage, config: BuildConfig, tags: List[str]) -> PromotionReport:
        promoter = TagPromoter(self.runner, config, self.settings.promotion)
        return promoter.promote(image, tags)
