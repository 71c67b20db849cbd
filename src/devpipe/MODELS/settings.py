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
Models for the pipeline settings file (devpipe.yml).
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .validation import CheckGroup


class BuildSettings(BaseModel):
    """
    Options passed through to the build tools.
    """

    model_config = ConfigDict(extra="forbid")

    context_dir: str = "containers/base"
    dockerfile: Optional[str] = None
    build_args: Dict[str, str] = {}
    cache_from: List[str] = []
    cache_to: List[str] = []
    no_cache: bool = False
    labels: Dict[str, str] = {}
    source_url: Optional[str] = None
    timeout: Optional[float] = None


class ValidationSettings(BaseModel):
    """
    Options for the image validator.

    `strict` is the single switch that turns advisory check failures into
    fatal ones.
    """

    model_config = ConfigDict(extra="forbid")

    strict: bool = False
    dind_tests: bool = True
    nested_daemon_supported: bool = True
    workspace_path: str = "/workspace"
    nested_reference_image: str = "alpine:latest"
    nested_wait_attempts: int = Field(default=25, ge=1)
    nested_wait_interval: float = Field(default=1.0, ge=0)
    nested_operation_timeout: int = Field(default=60, ge=1)
    nested_group_timeout: Optional[float] = 600.0
    pull_platform: str = "linux/amd64"
    max_workers: int = Field(default=4, ge=1)
    groups: Optional[List[CheckGroup]] = None


class PromotionSettings(BaseModel):
    """Options for the tag promoter."""

    model_config = ConfigDict(extra="forbid")

    verify_digests: bool = False
    default_branch: str = "main"


class PipelineSettings(BaseModel):
    """
    Top-level settings. Every field has a default so an absent settings file
    is valid.
    """

    model_config = ConfigDict(extra="forbid")

    registry: str = "ghcr.io"
    image_repo: str = "get2knowio/devcontainer"
    ci_platforms: List[str] = ["linux/amd64", "linux/arm64"]
    cache_file: str = ".ci-env.cache"
    tags_file: str = "final-tags.txt"
    build: BuildSettings = Field(default_factory=BuildSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    promotion: PromotionSettings = Field(default_factory=PromotionSettings)
