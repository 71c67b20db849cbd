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
Derivation of final image tags from CI trigger events, and the tags file
that carries them from the tagging step to the promotion step.
"""
import os
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .image_reference import ImageReference, sanitize_tag

SEMVER_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)
PULL_REF_RE = re.compile(r"^refs/pull/(?P<number>\d+)/")

LATEST_TAG = "latest"


@dataclass
class CiEvent:
    """
    The parts of a CI trigger that decide which tags get published.
    """

    event_name: str
    ref: str
    default_branch: str = "main"

    @classmethod
    def from_env(cls, env: Mapping[str, str], default_branch: str = "main") -> "CiEvent":
        """Build from GitHub Actions variables (GITHUB_EVENT_NAME, GITHUB_REF)."""
        return cls(
            event_name=env.get("GITHUB_EVENT_NAME", "push") or "push",
            ref=env.get("GITHUB_REF", "") or "",
            default_branch=default_branch,
        )

    @property
    def branch(self) -> Optional[str]:
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return None

    @property
    def git_tag(self) -> Optional[str]:
        if self.ref.startswith("refs/tags/"):
            return self.ref[len("refs/tags/"):]
        return None

    @property
    def pull_request_number(self) -> Optional[str]:
        match = PULL_REF_RE.match(self.ref)
        if match:
            return match.group("number")
        return None


def semver_tags(git_tag: str) -> List[str]:
    """
    Tags for a version tag: {{version}}, {{major}}.{{minor}}, {{major}}.

    Pre-releases only get the full version, and 0.x releases get no bare
    major tag. A tag that is not a semantic version gets nothing.
    """
    match = SEMVER_RE.match(git_tag)
    if not match:
        return []
    major, minor, patch, pre = (
        match.group("major"), match.group("minor"), match.group("patch"), match.group("pre")
    )
    version = f"{major}.{minor}.{patch}"
    if pre:
        return [f"{version}-{pre}"]
    tags = [version, f"{major}.{minor}"]
    if major != "0":
        tags.append(major)
    return tags


def derive_tags(event: CiEvent) -> List[str]:
    """
    Bare tags to publish for a CI event, in priority order.

    - semantic version tag: version aliases plus `latest` for stable releases
    - branch push: the branch name, plus `latest` on the default branch
    - pull request: `pr-<number>`
    """
    tags: List[str] = []

    git_tag = event.git_tag
    if git_tag is not None:
        versions = semver_tags(git_tag)
        tags.extend(versions)
        if versions and "-" not in versions[0]:
            tags.append(LATEST_TAG)

    branch = event.branch
    if branch is not None and event.event_name != "pull_request":
        tags.append(sanitize_tag(branch))
        if branch == event.default_branch:
            tags.append(LATEST_TAG)

    number = event.pull_request_number
    if number is not None:
        tags.append(f"pr-{number}")

    return _unique(tags)


def qualify_tags(tags: List[str], registry: str, repository: str) -> List[str]:
    """Expand bare tags to full references under registry/repository."""
    return [
        ImageReference.qualify(tag, registry, repository).full_name for tag in tags
    ]


def read_tags_file(path: str) -> List[str]:
    """
    Read one tag per line, ignoring blank lines and comments.
    A missing file means no tags.
    """
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        lines = [line.strip() for line in f]
    return [line for line in lines if line and not line.startswith("#")]


def write_tags_file(path: str, tags: List[str]) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for tag in tags:
            f.write(f"{tag}\n")


def _unique(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen
