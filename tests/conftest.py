import re

import pytest

from devpipe.MODELS.build_config import BuildConfig, BuildMode
from devpipe.RUNNERS.command_runner import CommandResult
from devpipe.VALIDATORS.checks import MARKER

BEGIN_RE = re.compile(re.escape(MARKER) + r'begin (\S+)"')


class FakeRunner:
    """
    Stands in for CommandRunner. Responses are matched by argv prefix, most
    recently registered first; unmatched commands succeed with no output.
    """

    def __init__(self, tools=("docker",)):
        self.tools = set(tools)
        self.responses = []
        self.calls = []

    def on(self, *prefix, returncode=0, stdout="", stderr="", timed_out=False, handler=None):
        self.responses.insert(0, (tuple(prefix), returncode, stdout, stderr, timed_out, handler))
        return self

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.tools else None

    def run(self, args, timeout=None, capture=True, cwd=None):
        args = [str(a) for a in args]
        self.calls.append(args)
        for prefix, returncode, stdout, stderr, timed_out, handler in self.responses:
            if tuple(args[:len(prefix)]) == prefix:
                if handler is not None:
                    return handler(args)
                return CommandResult(args, returncode, stdout, stderr, timed_out)
        return CommandResult(args, 0)

    def commands(self, *prefix):
        return [c for c in self.calls if tuple(c[:len(prefix)]) == prefix]


def check_output(script, codes=None):
    """Marker output for every check in a rendered group script."""
    codes = codes or {}
    lines = []
    for name in BEGIN_RE.findall(script):
        code = codes.get(name, 0)
        lines.append(f"{MARKER}begin {name}")
        lines.append(f"{name} output")
        lines.append(f"{MARKER}end {name} {code}")
    return "\n".join(lines) + "\n"


def container_handler(codes=None):
    """Handler for `docker run ... -lc <script>` returning marker output."""
    def handle(args):
        return CommandResult(args, 0, stdout=check_output(args[-1], codes))
    return handle


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def local_config():
    return BuildConfig(
        mode=BuildMode.LOCAL,
        platforms=("linux/amd64",),
        registry="ghcr.io",
        repository="acme/devcontainer",
        commit_id="abc123",
        run_id="42",
    )


@pytest.fixture
def ci_config():
    return BuildConfig(
        mode=BuildMode.CI,
        platforms=("linux/amd64", "linux/arm64"),
        registry="ghcr.io",
        repository="acme/devcontainer",
        commit_id="abc123",
        run_id="42",
    )
