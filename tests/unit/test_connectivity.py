from urllib.error import HTTPError, URLError

import pytest

from devpipe.errors import NetworkTransient
from devpipe.UTILS.connectivity import probe, registry_url, require_reachable


class FakeResponse:
    status = 200

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def flaky_opener(failures):
    calls = []

    def opener(request, timeout=None):
        calls.append(request.full_url)
        if len(calls) <= failures:
            raise URLError("connection refused")
        return FakeResponse()

    opener.calls = calls
    return opener


def test_registry_url():
    assert registry_url("ghcr.io") == "https://ghcr.io/v2/"
    assert registry_url("docker.io") == "https://registry-1.docker.io/v2/"
    assert registry_url("http://localhost:5000") == "http://localhost:5000/v2/"


def test_reachability_retries_then_succeeds():
    opener = flaky_opener(failures=2)
    result = probe("https://ghcr.io/v2/", attempts=3, wait_seconds=0, opener=opener)
    assert result.reachable
    assert result.attempts == 3
    assert result.detail == "HTTP 200"


def test_unreachable_after_all_attempts():
    opener = flaky_opener(failures=10)
    result = probe("https://ghcr.io/v2/", attempts=2, wait_seconds=0, opener=opener)
    assert not result.reachable
    assert len(opener.calls) == 2
    assert "connection refused" in result.detail


def test_http_error_counts_as_reachable():
    def opener(request, timeout=None):
        raise HTTPError(request.full_url, 401, "Unauthorized", {}, None)

    result = probe("https://ghcr.io/v2/", wait_seconds=0, opener=opener)
    assert result.reachable
    assert result.detail == "HTTP 401"


def test_require_reachable_raises():
    with pytest.raises(NetworkTransient) as excinfo:
        require_reachable("https://ghcr.io/v2/", attempts=1, wait_seconds=0,
                          opener=flaky_opener(failures=1))
    assert excinfo.value.exit_code == 8
