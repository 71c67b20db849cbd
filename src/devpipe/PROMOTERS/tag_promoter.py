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
Promotion of a validated staging image to its final tags.
"""
import logging
from typing import List, Optional, Sequence

from ..MODELS.build_config import BuildConfig
from ..MODELS.built_image import BuiltImage
from ..MODELS.promotion import (
    PromotionMechanism,
    PromotionOutcome,
    PromotionRecord,
    PromotionReport,
)
from ..MODELS.settings import PromotionSettings
from ..REGISTRY.image_reference import ImageReference
from ..REGISTRY.manifest import ManifestError, ManifestTool
from ..RUNNERS.command_runner import CommandRunner

logger = logging.getLogger(__name__)


class TagPromoter:
    """
    Republishes the staging image under each destination tag.

    LOCAL mode retags the locally loaded image; CI mode copies the whole
    manifest list in the registry. A failed tag never stops the remaining
    tags and successful tags are never rolled back.
    """

    def __init__(self,
                 runner: CommandRunner,
                 config: BuildConfig,
                 settings: Optional[PromotionSettings] = None,
                 manifests: Optional[ManifestTool] = None):
        """
        :param runner: Runner for docker invocations.
        :param config: Resolved build configuration (mode, registry, repository).
        :param settings: Promotion settings.
        :param manifests: Manifest client; built from `runner` by default.
        """
        self.runner = runner
        self.config = config
        self.settings = settings or PromotionSettings()
        self.manifests = manifests or ManifestTool(runner)
        self._source_digests: Optional[dict] = None

    @property
    def mechanism(self) -> PromotionMechanism:
        if self.config.is_ci:
            return PromotionMechanism.MANIFEST_COPY
        return PromotionMechanism.LOCAL_RETAG

    def promote(self, image, tags: Sequence[str]) -> PromotionReport:
        """
        Promote `image` to every tag in order.

        :param image: A BuiltImage or the staging reference.
        :param tags: Destination tags; bare tags are qualified with the
            configured registry and repository.
        :return: One record per tag. An empty tag list is a trivial success.
        """
        source = image.reference if isinstance(image, BuiltImage) else str(image)
        report = PromotionReport(source_reference=source)
        tags = list(tags)
        if not tags:
            logger.info("No tags to promote; nothing to do.")
            return report

        logger.info("CI_IMAGE=%s MODE=%s tag_count=%d", source, self.config.mode.value, len(tags))

        source_present = True
        if self.mechanism == PromotionMechanism.LOCAL_RETAG:
            source_present = self.runner.run(["docker", "image", "inspect", source]).ok
            if not source_present:
                logger.warning("%s is not present locally, cannot retag", source)

        self._source_digests = None
        for tag in tags:
            record = self._promote_one(source, tag, source_present)
            if record.ok and self.settings.verify_digests and self.config.is_ci:
                record = self._verify(record)
            if not record.ok:
                reason = record.detail.splitlines()[0] if record.detail else "unknown error"
                logger.warning("Failed to promote %s: %s", record.tag, reason)
            report.records.append(record)

        if report.succeeded:
            logger.info("Promotion complete.")
        else:
            logger.error("Promotion incomplete: %d of %d tag(s) failed",
                         len(report.failed_tags), len(report.records))
        return report

    def _promote_one(self, source: str, tag: str, source_present: bool) -> PromotionRecord:
        try:
            destination = ImageReference.qualify(
                tag, self.config.registry, self.config.repository
            ).full_name
        except ValueError as e:
            return self._record(source, tag, tag, PromotionOutcome.FAILED, str(e))

        if self.mechanism == PromotionMechanism.LOCAL_RETAG:
            if not source_present:
                return self._record(source, tag, destination, PromotionOutcome.FAILED,
                                    f"{source} not present locally")
            logger.info("(local) docker tag %s %s", source, destination)
            result = self.runner.run(["docker", "tag", source, destination])
        else:
            logger.info("(ci) buildx imagetools create --tag %s %s", destination, source)
            result = self.manifests.create(destination, source)

        if result.ok:
            return self._record(source, tag, destination, PromotionOutcome.OK)
        return self._record(source, tag, destination, PromotionOutcome.FAILED, result.describe())

    def _verify(self, record: PromotionRecord) -> PromotionRecord:
        """Fail the record unless its tag resolves to the source's per-platform digests."""
        try:
            if self._source_digests is None:
                self._source_digests = self.manifests.platform_digests(record.source_reference)
            target = self.manifests.platform_digests(record.destination)
        except ManifestError as e:
            return record.model_copy(update={"outcome": PromotionOutcome.FAILED, "detail": str(e)})

        source = self._source_digests
        if target != source:
            mismatched = sorted(
                p for p in set(source) | set(target) if source.get(p) != target.get(p)
            )
            return record.model_copy(update={
                "outcome": PromotionOutcome.FAILED,
                "detail": f"digest mismatch for {', '.join(mismatched)}",
            })
        return record

    def _record(self, source: str, tag: str, destination: str,
                outcome: PromotionOutcome, detail: str = "") -> PromotionRecord:
        return PromotionRecord(
            source_reference=source,
            tag=tag,
            destination=destination,
            mechanism=self.mechanism,
            outcome=outcome,
            detail=detail,
        )


def promotable_tags(tags: Sequence[str]) -> List[str]:
    """Drop blank entries; order and duplicates are kept."""
    return [t.strip() for t in tags if t and t.strip()]
