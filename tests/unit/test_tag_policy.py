import pytest

from devpipe.REGISTRY.tag_policy import (
    CiEvent,
    derive_tags,
    qualify_tags,
    read_tags_file,
    semver_tags,
    write_tags_file,
)


@pytest.mark.parametrize("event,ref,expected", [
    ("push", "refs/heads/main", ["main", "latest"]),
    ("push", "refs/heads/feature/login", ["feature-login"]),
    ("push", "refs/tags/v1.2.3", ["1.2.3", "1.2", "1", "latest"]),
    ("push", "refs/tags/v2.0.0-rc.1", ["2.0.0-rc.1"]),
    ("push", "refs/tags/0.4.1", ["0.4.1", "0.4", "latest"]),
    ("push", "refs/tags/nightly", []),
    ("pull_request", "refs/pull/17/merge", ["pr-17"]),
])
def test_derive_tags(event, ref, expected):
    assert derive_tags(CiEvent(event, ref)) == expected


def test_custom_default_branch():
    assert derive_tags(CiEvent("push", "refs/heads/trunk", "trunk")) == ["trunk", "latest"]


def test_from_env():
    event = CiEvent.from_env({"GITHUB_EVENT_NAME": "pull_request", "GITHUB_REF": "refs/pull/3/merge"})
    assert event.pull_request_number == "3"
    assert event.branch is None


def test_semver_not_a_version():
    assert semver_tags("release-1") == []


def test_qualify_tags():
    assert qualify_tags(["latest", "docker.io/a/b:v1"], "ghcr.io", "acme/img") == [
        "ghcr.io/acme/img:latest", "docker.io/a/b:v1",
    ]


def test_tags_file(tmp_path):
    path = str(tmp_path / "out" / "final-tags.txt")
    write_tags_file(path, ["ghcr.io/a/b:v1", "ghcr.io/a/b:latest"])
    with open(path, "a", encoding="utf-8") as f:
        f.write("\n# comment\n")
    assert read_tags_file(path) == ["ghcr.io/a/b:v1", "ghcr.io/a/b:latest"]


def test_missing_tags_file(tmp_path):
    assert read_tags_file(str(tmp_path / "none.txt")) == []
