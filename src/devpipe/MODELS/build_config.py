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
Models for the resolved build configuration shared by every pipeline stage.
"""
from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class BuildMode(str, Enum):
    """
    Where the pipeline is running.

    CI builds every platform and pushes; LOCAL builds the host platform and
    loads the result into the local image store.
    """

    CI = "ci"
    LOCAL = "local-act"

    @classmethod
    def parse(cls, value: str) -> "BuildMode":
        """Parse a mode name, accepting 'local' as an alias of 'local-act'."""
        normalized = value.strip().lower()
        if normalized in ("local", "local-act", "act"):
            return cls.LOCAL
        if normalized == "ci":
            return cls.CI
        raise ValueError(f"Unknown build mode: {value}")


STAGING_TAG_PREFIX = "ci-"
LOCAL_SESSION_ID = "local"


class BuildConfig(BaseModel):
    """
    Resolved parameters for one pipeline run.

    Created once by the EnvironmentResolver and passed to the builder,
    validator and promoter. The model is frozen.
    """

    model_config = ConfigDict(frozen=True)

    mode: BuildMode
    platforms: Tuple[str, ...] = Field(min_length=1)
    registry: str
    repository: str
    commit_id: str = LOCAL_SESSION_ID
    run_id: str = LOCAL_SESSION_ID
    is_local_act: bool = False
    tags_file: str = "final-tags.txt"

    @field_validator("platforms")
    @classmethod
    def _dedupe_platforms(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        seen = []
        for platform in value:
            platform = platform.strip()
            if platform and platform not in seen:
                seen.append(platform)
        if not seen:
            raise ValueError("at least one platform is required")
        return tuple(seen)

    @field_validator("registry", "repository", "commit_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @computed_field  # type: ignore[misc]
    @property
    def image_reference(self) -> str:
        """Staging reference: registry/repository:ci-<commit>."""
        return f"{self.registry}/{self.repository}:{STAGING_TAG_PREFIX}{self.commit_id}"

    @property
    def is_ci(self) -> bool:
        return self.mode == BuildMode.CI

    @property
    def is_multi_platform(self) -> bool:
        return len(self.platforms) > 1
