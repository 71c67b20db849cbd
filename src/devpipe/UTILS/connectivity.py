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
Short connectivity checks for registries and package sources, retried a
bounded number of times.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..errors import NetworkTransient

logger = logging.getLogger(__name__)

DEFAULT_TARGETS = [
    "https://registry-1.docker.io/v2/",
    "https://github.com",
]


@dataclass
class ProbeResult:
    url: str
    reachable: bool
    detail: str = ""
    attempts: int = 0


def registry_url(registry: str) -> str:
    """Registry API base URL for a registry host."""
    if registry == "docker.io":
        return "https://registry-1.docker.io/v2/"
    if "://" in registry:
        return registry.rstrip("/") + "/v2/"
    return f"https://{registry}/v2/"


def probe(url: str,
          attempts: int = 3,
          timeout: float = 10.0,
          wait_seconds: float = 1.0,
          opener: Optional[Callable] = None) -> ProbeResult:
    """
    Check that `url` answers. Any HTTP response counts as reachable; only
    connection-level failures are retried.

    :param url: Target URL.
    :param attempts: Maximum number of tries.
    :param timeout: Connect/read timeout per try in seconds.
    :param wait_seconds: Pause between tries.
    :param opener: urlopen-compatible callable.
    """
    opener = opener or urlopen
    tries = 0

    def attempt() -> str:
        nonlocal tries
        tries += 1
        try:
            with opener(Request(url, method="HEAD"), timeout=timeout) as response:
                return f"HTTP {response.status}"
        except HTTPError as e:
            return f"HTTP {e.code}"

    retrying = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type((URLError, OSError)),
        reraise=False,
    )
    try:
        detail = retrying(attempt)
    except RetryError as e:
        error = e.last_attempt.exception()
        logger.debug("%s unreachable after %d attempt(s): %s", url, tries, error)
        return ProbeResult(url=url, reachable=False, detail=str(error), attempts=tries)
    return ProbeResult(url=url, reachable=True, detail=detail, attempts=tries)


def probe_all(urls: List[str], **kwargs) -> List[ProbeResult]:
    return [probe(url, **kwargs) for url in urls]


def require_reachable(url: str, **kwargs) -> ProbeResult:
    """Check `url` and raise NetworkTransient when it cannot be reached."""
    result = probe(url, **kwargs)
    if not result.reachable:
        raise NetworkTransient(url, result.detail)
    return result
