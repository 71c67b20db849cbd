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
Image reference parsing and tag handling.
Parses references like 'ghcr.io/owner/image:ci-abc123' or 'alpine:latest'.
"""

import re
from dataclasses import dataclass
from typing import Optional

_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - alpine -> docker.io/library/alpine:latest
        - ghcr.io/owner/image:v1 -> ghcr.io/owner/image:v1
        - localhost:5000/image@sha256:abc -> localhost:5000/image@sha256:abc
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Reference such as 'alpine:3.20' or 'ghcr.io/o/i:tag'.

        Returns:
            Parsed ImageReference.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1:]
            # A colon followed by a path is a registry port, not a tag
            if "/" not in after_colon:
                tag = after_colon
                reference = reference[:last_colon]

        if not reference:
            raise ValueError("Image reference has no repository")
        if tag is not None and not _TAG_RE.match(tag):
            raise ValueError(f"Invalid tag: {tag!r}")

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference if len(parts) > 1 else f"library/{reference}"

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @classmethod
    def qualify(cls, tag_or_reference: str, registry: str, repository: str) -> "ImageReference":
        """
        Turn a destination tag into a full reference.

        A bare tag ('latest', 'v1.2.3') is attached to registry/repository;
        anything containing ':' or '/' is parsed as a reference.
        """
        value = (tag_or_reference or "").strip()
        if not value:
            raise ValueError("Empty tag")
        if ":" in value or "/" in value or "@" in value:
            return cls.parse(value)
        if not _TAG_RE.match(value):
            raise ValueError(f"Invalid tag: {value!r}")
        return cls(registry=registry, repository=repository, tag=value)

    @property
    def name(self) -> str:
        """registry/repository without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        if self.digest:
            return f"{self.name}@{self.digest}"
        if self.tag:
            return f"{self.name}:{self.tag}"
        return self.name

    def __str__(self) -> str:
        return self.full_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"


def sanitize_tag(value: str) -> str:
    """
    Turn an arbitrary string (e.g. a branch name) into a valid tag.

    feature/new-thing -> feature-new-thing
    """
    tag = _INVALID_TAG_CHARS.sub("-", value.strip()).strip("-.")
    if not tag:
        raise ValueError(f"Cannot derive a tag from {value!r}")
    return tag[:128]
