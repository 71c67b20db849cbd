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
Unit tests for image reference parsing.
"""
import pytest
from devpipe.REGISTRY.image_reference import ImageReference, sanitize_tag


class TestImageReference:
    """Tests for ImageReference parsing."""

    def test_parse_simple_name(self):
        """Test parsing a simple image name."""
        ref = ImageReference.parse("alpine")
        assert ref.registry == "docker.io"
        assert ref.repository == "library/alpine"
        assert ref.tag == "latest"

    def test_parse_staging_reference(self):
        """Test parsing a staging reference."""
        ref = ImageReference.parse("ghcr.io/acme/devcontainer:ci-abc123")
        assert ref.registry == "ghcr.io"
        assert ref.repository == "acme/devcontainer"
        assert ref.tag == "ci-abc123"

    def test_parse_with_digest(self):
        """Test parsing image with digest."""
        ref = ImageReference.parse("alpine@sha256:abc123")
        assert ref.digest == "sha256:abc123"
        assert ref.tag is None

    def test_parse_localhost_registry(self):
        """Test parsing localhost registry."""
        ref = ImageReference.parse("localhost:5000/myimage:v1")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "myimage"
        assert ref.tag == "v1"

    def test_empty_reference_raises(self):
        """Test that empty reference raises error."""
        with pytest.raises(ValueError):
            ImageReference.parse("")

    def test_invalid_tag_raises(self):
        with pytest.raises(ValueError):
            ImageReference.parse("ghcr.io/a/b:bad tag")

    def test_str_representation(self):
        """Test string representation."""
        assert str(ImageReference.parse("ghcr.io/a/b:v1")) == "ghcr.io/a/b:v1"


class TestQualify:
    """Tests for turning destination tags into references."""

    def test_bare_tag(self):
        ref = ImageReference.qualify("v1.0.0", "ghcr.io", "acme/devcontainer")
        assert ref.full_name == "ghcr.io/acme/devcontainer:v1.0.0"

    def test_full_reference_is_kept(self):
        ref = ImageReference.qualify("docker.io/acme/other:latest", "ghcr.io", "acme/devcontainer")
        assert ref.full_name == "docker.io/acme/other:latest"

    def test_invalid_bare_tag(self):
        with pytest.raises(ValueError):
            ImageReference.qualify("-bad", "ghcr.io", "acme/devcontainer")


class TestTagHelpers:

    def test_sanitize_branch_name(self):
        assert sanitize_tag("feature/new-thing") == "feature-new-thing"

    def test_sanitize_rejects_empty(self):
        with pytest.raises(ValueError):
            sanitize_tag("///")
