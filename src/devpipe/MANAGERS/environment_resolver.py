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
Resolution of the build environment: CI or local mode, target platforms,
and the staging image reference, memoized in a cache file for the run.
"""
import logging
import os
import platform as host
from typing import Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from ..MODELS.build_config import LOCAL_SESSION_ID, BuildConfig, BuildMode
from ..MODELS.settings import PipelineSettings
from ..PARSERS.env_parser import EnvParser
from ..RUNNERS.command_runner import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_HOST_PLATFORM = "linux/amd64"
HOST_PROBE_TIMEOUT = 15

ARCH_ALIASES = {
    "x86_64": "amd64",
    "x86-64": "amd64",
    "x64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv8": "arm64",
    "armv7l": "arm/v7",
    "armv7": "arm/v7",
    "armhf": "arm/v7",
    "armv6l": "arm/v6",
    "i386": "386",
    "i686": "386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def normalize_platform(value: str) -> str:
    """
    Canonical 'os/arch[/variant]' identifier for the build tools.

    'aarch64' -> 'linux/arm64', 'linux/x86_64' -> 'linux/amd64'.
    """
    value = (value or "").strip().lower()
    if not value:
        return DEFAULT_HOST_PLATFORM
    if "/" in value:
        os_name, arch = value.split("/", 1)
    else:
        os_name, arch = "linux", value
    os_name = os_name or "linux"
    arch = ARCH_ALIASES.get(arch, arch)
    return f"{os_name}/{arch}"


class EnvironmentResolver:
    """
    Builds a BuildConfig from settings, environment variables and the host.

    Resolution never fails: every field falls back to a default.
    """
    def __init__(self,
                 settings: Optional[PipelineSettings] = None,
                 env: Optional[Mapping[str, str]] = None,
                 runner: Optional[CommandRunner] = None,
                 cache_path: Optional[str] = None,
                 host_probe: Optional[Callable[[], str]] = None):
        """
        Initializes the resolver.

        :param settings: Pipeline settings providing defaults.
        :param env: Environment variables. Defaults to os.environ.
        :param runner: Runner used to ask docker for the host platform.
        :param cache_path: Cache file path. Defaults to settings.cache_file.
        :param host_probe: Callable returning the raw host platform.
        """
        self.settings = settings or PipelineSettings()
        self.env = dict(os.environ) if env is None else dict(env)
        self.runner = runner or CommandRunner()
        self.cache_path = cache_path or self.settings.cache_file
        self.host_probe = host_probe or self._probe_docker_platform

    def resolve(self, mode_override: Optional[str] = None, refresh: bool = False) -> BuildConfig:
        """
        Returns the BuildConfig for this run, reusing the cache when it
        belongs to the same run and commit.

        :param mode_override: Mode name that wins over detection.
        :param refresh: Ignore an existing cache file.
        """
        override = self._parse_override(mode_override)

        if not refresh:
            cached = self.load_cached()
            if cached is not None and (override is None or cached.mode == override):
                logger.debug("Reusing environment cache %s", self.cache_path)
                return cached

        config = self.detect(override)
        self.save(config)
        logger.info(
            "IS_LOCAL_ACT=%s MODE=%s PLATFORMS=%s CI_IMAGE=%s",
            str(config.is_local_act).lower(), config.mode.value,
            ",".join(config.platforms), config.image_reference,
        )
        return config

    def detect(self, override: Optional[BuildMode] = None) -> BuildConfig:
        """Resolves every field from scratch, without touching the cache."""
        is_local_act = self.is_local_act
        mode = override or self.detect_mode()
        return BuildConfig(
            mode=mode,
            platforms=self.detect_platforms(mode),
            registry=self.env.get("REGISTRY") or self.settings.registry,
            repository=self.env.get("IMAGE_REPO") or self.settings.image_repo,
            commit_id=self.commit_id,
            run_id=self.run_id,
            is_local_act=is_local_act,
            tags_file=self.env.get("TAGS_FILE") or self.settings.tags_file,
        )

    @property
    def is_local_act(self) -> bool:
        return self.env.get("ACT", "").lower() == "true"

    @property
    def is_hosted_ci(self) -> bool:
        return self.env.get("GITHUB_ACTIONS", "").lower() == "true"

    @property
    def commit_id(self) -> str:
        return self.env.get("GITHUB_SHA", "").strip() or LOCAL_SESSION_ID

    @property
    def run_id(self) -> str:
        return self.env.get("GITHUB_RUN_ID", "").strip() or LOCAL_SESSION_ID

    def detect_mode(self) -> BuildMode:
        """
        Emulated runs are LOCAL, hosted CI is CI, and an unsignalled
        invocation is LOCAL (single architecture, no push).
        """
        env_mode = self._parse_override(self.env.get("MODE"))
        if env_mode is not None:
            return env_mode
        if self.is_local_act:
            return BuildMode.LOCAL
        if self.is_hosted_ci:
            return BuildMode.CI
        return BuildMode.LOCAL

    def detect_platforms(self, mode: BuildMode) -> tuple:
        requested = [p.strip() for p in self.env.get("PLATFORMS", "").split(",") if p.strip()]
        if requested:
            return tuple(normalize_platform(p) for p in requested)
        if mode == BuildMode.CI:
            return tuple(normalize_platform(p) for p in self.settings.ci_platforms)
        return (self.host_platform(),)

    def host_platform(self) -> str:
        try:
            raw = self.host_probe()
        except Exception as e:
            logger.warning("Host platform detection failed (%s); assuming %s", e, DEFAULT_HOST_PLATFORM)
            return DEFAULT_HOST_PLATFORM
        return normalize_platform(raw)

    def _probe_docker_platform(self) -> str:
        result = self.runner.run(
            ["docker", "info", "--format", "{{.OSType}}/{{.Architecture}}"],
            timeout=HOST_PROBE_TIMEOUT,
        )
        reported = result.stdout.strip()
        if result.ok and reported and reported != "/":
            return reported
        machine = host.machine()
        logger.debug("docker info unavailable, using machine type %r", machine)
        return f"linux/{machine}" if machine else DEFAULT_HOST_PLATFORM

    def load_cached(self) -> Optional[BuildConfig]:
        """
        Reads the cache file. Returns None when it is missing, unreadable, or
        written by a different run or commit.
        """
        if not os.path.exists(self.cache_path):
            return None
        try:
            values = EnvParser.parse(self.cache_path)
            config = self._from_cache(values)
        except (OSError, KeyError, ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable environment cache %s: %s", self.cache_path, e)
            return None
        if config.run_id != self.run_id or config.commit_id != self.commit_id:
            logger.debug("Environment cache belongs to another run, re-detecting")
            return None
        return config

    def save(self, config: BuildConfig) -> None:
        try:
            EnvParser.write(self.cache_path, self.to_cache(config))
        except OSError as e:
            logger.warning("Could not write environment cache %s: %s", self.cache_path, e)
            return
        logger.debug("Environment cache written to %s", self.cache_path)

    @staticmethod
    def to_cache(config: BuildConfig) -> Dict[str, str]:
        """Cache file variables; names match what shell steps expect."""
        return {
            "IS_LOCAL_ACT": str(config.is_local_act).lower(),
            "MODE": config.mode.value,
            "REGISTRY": config.registry,
            "IMAGE_REPO": config.repository,
            "CI_IMAGE": config.image_reference,
            "PLATFORMS": ",".join(config.platforms),
            "TAGS_FILE": config.tags_file,
            "COMMIT_ID": config.commit_id,
            "RUN_ID": config.run_id,
        }

    @staticmethod
    def _from_cache(values: Mapping[str, str]) -> BuildConfig:
        return BuildConfig(
            mode=BuildMode.parse(values["MODE"]),
            platforms=tuple(values["PLATFORMS"].split(",")),
            registry=values["REGISTRY"],
            repository=values["IMAGE_REPO"],
            commit_id=values["COMMIT_ID"],
            run_id=values["RUN_ID"],
            is_local_act=values.get("IS_LOCAL_ACT", "false") == "true",
            tags_file=values.get("TAGS_FILE", "final-tags.txt"),
        )

    @staticmethod
    def _parse_override(value: Optional[str]) -> Optional[BuildMode]:
        if value is None or not value.strip():
            return None
        try:
            return BuildMode.parse(value)
        except ValueError:
            logger.warning("Ignoring unknown mode %r", value)
            return None
