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
Registry-side manifest operations through `docker buildx imagetools`.

Copies preserve the whole multi-architecture manifest list, so a promoted
tag resolves to the same per-platform images as its source.
"""
import hashlib
import json
import logging
from typing import Any, Dict, Optional

from ..RUNNERS.command_runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

INDEX_MEDIA_TYPES = (
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
)
SINGLE_MANIFEST_KEY = "*"


class ManifestError(RuntimeError):
    """Raised when a manifest cannot be read or parsed."""


class ManifestTool:
    """
    Thin client for `docker buildx imagetools`.
    """

    def __init__(self, runner: CommandRunner, timeout: Optional[float] = None):
        """
        :param runner: Runner used for docker invocations.
        :param timeout: Per-call timeout in seconds.
        """
        self.runner = runner
        self.timeout = timeout

    def create(self, destination: str, source: str) -> CommandResult:
        """Point `destination` at the manifest (list) of `source`."""
        return self.runner.run(
            ["docker", "buildx", "imagetools", "create", "--tag", destination, source],
            timeout=self.timeout,
        )

    def exists(self, reference: str) -> bool:
        result = self.runner.run(
            ["docker", "buildx", "imagetools", "inspect", reference],
            timeout=self.timeout,
        )
        return result.ok

    def inspect_raw(self, reference: str) -> Dict[str, Any]:
        result = self.runner.run(
            ["docker", "buildx", "imagetools", "inspect", "--raw", reference],
            timeout=self.timeout,
        )
        if not result.ok:
            raise ManifestError(f"Cannot inspect {reference}: {result.describe()}")
        try:
            manifest = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Manifest for {reference} is not JSON") from e
        manifest["_raw"] = result.stdout.rstrip("\n")
        return manifest

    def platform_digests(self, reference: str) -> Dict[str, str]:
        """
        Map 'os/arch[/variant]' to manifest digest.

        Attestation entries (platform unknown/unknown) are ignored. A plain
        single-platform manifest maps under '*' to the digest of its content.
        """
        manifest = self.inspect_raw(reference)
        media_type = manifest.get("mediaType", "")
        entries = manifest.get("manifests")
        if media_type not in INDEX_MEDIA_TYPES and entries is None:
            digest = "sha256:" + hashlib.sha256(manifest["_raw"].encode("utf-8")).hexdigest()
            return {SINGLE_MANIFEST_KEY: digest}

        digests: Dict[str, str] = {}
        for entry in entries or []:
            platform = entry.get("platform") or {}
            os_name = platform.get("os", "unknown")
            arch = platform.get("architecture", "unknown")
            if os_name == "unknown" or arch == "unknown":
                continue
            key = f"{os_name}/{arch}"
            if platform.get("variant"):
                key = f"{key}/{platform['variant']}"
            digests[key] = entry.get("digest", "")
        return digests
