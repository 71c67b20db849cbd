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
Build strategies: the high-level devcontainer builder, the direct
multi-platform buildx builder, and the plain single-architecture builder.
"""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from ..errors import ToolMissing
from ..RUNNERS.command_runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

DEVCONTAINER_BINARIES = ("devcontainer", "devcontainers")


@dataclass
class BuildRequest:
    """
    Everything a strategy needs to produce one image reference.
    """

    context_dir: str
    reference: str
    platforms: Tuple[str, ...]
    push: bool = False
    load: bool = True
    dockerfile: Optional[str] = None
    build_args: Dict[str, str] = field(default_factory=dict)
    cache_from: List[str] = field(default_factory=list)
    cache_to: List[str] = field(default_factory=list)
    no_cache: bool = False
    labels: Dict[str, str] = field(default_factory=dict)

    def single_platform(self, platform: str) -> "BuildRequest":
        """Copy of this request for one platform, loaded locally, not pushed."""
        return BuildRequest(
            context_dir=self.context_dir,
            reference=self.reference,
            platforms=(platform,),
            push=False,
            load=True,
            dockerfile=self.dockerfile,
            build_args=dict(self.build_args),
            cache_from=list(self.cache_from),
            cache_to=[],
            no_cache=self.no_cache,
            labels=dict(self.labels),
        )


class BuildStrategy(ABC):
    """
    One way of turning a build context into an image.
    """

    name = "strategy"

    @abstractmethod
    def available(self, runner: CommandRunner) -> bool:
        """True when the tool behind this strategy is on PATH."""

    @abstractmethod
    def command(self, request: BuildRequest, workspace: str) -> List[str]:
        """Argument vector for the build."""

    def supports(self, request: BuildRequest) -> bool:
        return True

    @contextmanager
    def workspace(self, request: BuildRequest) -> Iterator[str]:
        """Directory handed to the tool; the build context by default."""
        yield request.context_dir

    def build(self,
              runner: CommandRunner,
              request: BuildRequest,
              timeout: Optional[float] = None,
              capture: bool = True) -> CommandResult:
        with self.workspace(request) as workspace:
            args = self.command(request, workspace)
            logger.info("%s: %s", self.name, " ".join(args))
            return runner.run(args, timeout=timeout, capture=capture)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class HighLevelBuilder(BuildStrategy):
    """
    Builds through the devcontainer CLI, which understands devcontainer.json
    metadata and features.

    A context without .devcontainer/devcontainer.json is wrapped in a
    temporary workspace whose devcontainer.json points at the context's
    Dockerfile. The temporary workspace is removed when the build ends.
    """

    name = "devcontainer"

    def __init__(self, binary: Optional[str] = None):
        self.binary = binary

    def available(self, runner: CommandRunner) -> bool:
        if self.binary:
            return runner.which(self.binary) is not None
        for candidate in DEVCONTAINER_BINARIES:
            if runner.which(candidate):
                self.binary = candidate
                return True
        return False

    def supports(self, request: BuildRequest) -> bool:
        # Multi-platform output cannot be loaded into the local store
        return request.push or len(request.platforms) == 1

    @contextmanager
    def workspace(self, request: BuildRequest) -> Iterator[str]:
        if _has_devcontainer_config(request.context_dir):
            yield request.context_dir
            return
        with tempfile.TemporaryDirectory(prefix="devpipe-workspace-") as tmpdir:
            write_devcontainer_config(tmpdir, request)
            logger.debug("Generated devcontainer workspace %s", tmpdir)
            yield tmpdir

    def command(self, request: BuildRequest, workspace: str) -> List[str]:
        args = [
            self.binary or DEVCONTAINER_BINARIES[0], "build",
            "--workspace-folder", workspace,
            "--image-name", request.reference,
            "--platform", ",".join(request.platforms),
        ]
        if request.push:
            args.append("--push")
        for source in request.cache_from:
            args.extend(["--cache-from", source])
        for destination in request.cache_to[:1]:
            args.extend(["--cache-to", destination])
        if request.no_cache:
            args.append("--no-cache")
        for key, value in request.labels.items():
            args.extend(["--label", f"{key}={value}"])
        if request.build_args:
            logger.debug("devcontainer build ignores build args: %s", ", ".join(request.build_args))
        return args


class DirectBuilder(BuildStrategy):
    """
    Builds with `docker buildx build`, the only strategy that produces a
    pushed multi-platform manifest list.
    """

    name = "buildx"

    def available(self, runner: CommandRunner) -> bool:
        return runner.which("docker") is not None

    def command(self, request: BuildRequest, workspace: str) -> List[str]:
        args = [
            "docker", "buildx", "build",
            "--platform", ",".join(request.platforms),
            "-t", request.reference,
        ]
        if request.push:
            args.append("--push")
        elif request.load:
            args.append("--load")
        args.extend(_common_build_args(request))
        for source in request.cache_from:
            args.extend(["--cache-from", source])
        for destination in request.cache_to:
            args.extend(["--cache-to", destination])
        args.append(workspace)
        return args


class SingleArchBuilder(BuildStrategy):
    """
    Plain `docker build` for the host architecture. Last resort; it cannot
    push or produce more than one platform.
    """

    name = "docker-build"

    def available(self, runner: CommandRunner) -> bool:
        return runner.which("docker") is not None

    def supports(self, request: BuildRequest) -> bool:
        return not request.push and len(request.platforms) == 1

    def command(self, request: BuildRequest, workspace: str) -> List[str]:
        args = ["docker", "build", "-t", request.reference]
        args.extend(_common_build_args(request))
        args.append(workspace)
        return args


def select_build_provider(runner: CommandRunner) -> BuildStrategy:
    """
    Pick the preferred builder once: devcontainer CLI when present, else
    docker buildx.
    """
    high_level = HighLevelBuilder()
    if high_level.available(runner):
        logger.info("Using devcontainer CLI: %s", runner.which(high_level.binary))
        return high_level
    direct = DirectBuilder()
    if direct.available(runner):
        logger.info("devcontainer CLI not found, using docker buildx directly")
        return direct
    raise ToolMissing(
        ["devcontainer", "docker"],
        "Install Docker (with buildx) or the devcontainer CLI (npm install -g @devcontainers/cli).",
    )


def write_devcontainer_config(workspace: str, request: BuildRequest) -> str:
    """
    Write a minimal .devcontainer/devcontainer.json building the request's
    Dockerfile from its context. Returns the file path.
    """
    context_dir = os.path.abspath(request.context_dir)
    dockerfile = request.dockerfile or "Dockerfile"
    if not os.path.isabs(dockerfile):
        dockerfile = os.path.join(context_dir, dockerfile)
    config = {
        "name": os.path.basename(context_dir) or "devpipe",
        "build": {"dockerfile": dockerfile, "context": context_dir},
    }
    if request.build_args:
        config["build"]["args"] = dict(request.build_args)

    config_dir = os.path.join(workspace, ".devcontainer")
    os.makedirs(config_dir, exist_ok=True)
    path = os.path.join(config_dir, "devcontainer.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    return path


def _has_devcontainer_config(context_dir: str) -> bool:
    return os.path.isfile(os.path.join(context_dir, ".devcontainer", "devcontainer.json")) or \
        os.path.isfile(os.path.join(context_dir, ".devcontainer.json"))


def _common_build_args(request: BuildRequest) -> List[str]:
    args: List[str] = []
    if request.dockerfile:
        args.extend(["-f", os.path.join(request.context_dir, request.dockerfile)
                     if not os.path.isabs(request.dockerfile) else request.dockerfile])
    for key, value in request.build_args.items():
        args.extend(["--build-arg", f"{key}={value}"])
    for key, value in request.labels.items():
        args.extend(["--label", f"{key}={value}"])
    if request.no_cache:
        args.append("--no-cache")
    return args
