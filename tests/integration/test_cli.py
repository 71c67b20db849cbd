import json
import os
from urllib.error import URLError

import pytest
from click.testing import CliRunner

from conftest import FakeRunner, container_handler
from devpipe.CLI.main import cli
from devpipe.PARSERS.env_parser import EnvParser

CI_ENV = {
    "GITHUB_ACTIONS": "true",
    "GITHUB_SHA": "abc123",
    "GITHUB_RUN_ID": "5",
    "ACT": None,
    "MODE": None,
    "PLATFORMS": None,
    "REGISTRY": None,
    "IMAGE_REPO": None,
    "TAGS_FILE": None,
    "STRICT_VALIDATION": None,
    "DIND_TESTS": None,
    "GITHUB_EVENT_NAME": None,
    "GITHUB_REF": None,
}
STAGING = "ghcr.io/get2knowio/devcontainer:ci-abc123"

SETTINGS = """\
validation:
  groups:
    - name: core
      checks:
        - name: python
          script: python3 --version
        - name: dind
          script: docker info
          advisory: true
"""


@pytest.fixture
def cli_runner():
    return CliRunner()


def invoke(cli_runner, args, fake, env=None):
    return cli_runner.invoke(cli, args, obj={"runner": fake}, env=env or CI_ENV)


def test_cli_help(cli_runner):
    result = cli_runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    assert 'run-local' in result.output
    assert 'promote' in result.output


def test_missing_config_file(cli_runner):
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['-c', 'missing.yml', 'env'], FakeRunner())
        assert result.exit_code == 2


def test_env_shell_format(cli_runner):
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['env', '--format', 'shell'], FakeRunner())
        assert result.exit_code == 0
        exports = [l for l in result.output.splitlines() if l.startswith("export ")]
        values = EnvParser.parse_from_string("\n".join(exports))
        assert values['CI_IMAGE'] == STAGING
        assert values['MODE'] == 'ci'
        assert os.path.exists('.ci-env.cache')


def test_env_json_format(cli_runner):
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['env', '--format', 'json', '--mode', 'local'], FakeRunner())
        assert result.exit_code == 0
        text = result.output
        assert json.loads(text[text.index("{"):text.rindex("}") + 1])["MODE"] == "local-act"


def test_tags_write(cli_runner):
    env = dict(CI_ENV, GITHUB_EVENT_NAME="push", GITHUB_REF="refs/tags/v1.2.3")
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['tags', '--write'], FakeRunner(), env=env)
        assert result.exit_code == 0
        with open('final-tags.txt', encoding='utf-8') as f:
            written = f.read().split()
        assert written == [
            "ghcr.io/get2knowio/devcontainer:1.2.3",
            "ghcr.io/get2knowio/devcontainer:1.2",
            "ghcr.io/get2knowio/devcontainer:1",
            "ghcr.io/get2knowio/devcontainer:latest",
        ]


def test_test_command_advisory_failure_passes(cli_runner):
    fake = FakeRunner().on("docker", "run", handler=container_handler({"dind": 1}))
    with cli_runner.isolated_filesystem():
        with open('devpipe.yml', 'w', encoding='utf-8') as f:
            f.write(SETTINGS)
        result = invoke(cli_runner, ['test'], fake)
        assert result.exit_code == 0
        assert 'WARN' in result.output


def test_test_command_strict(cli_runner):
    fake = FakeRunner().on("docker", "run", handler=container_handler({"dind": 1}))
    with cli_runner.isolated_filesystem():
        with open('devpipe.yml', 'w', encoding='utf-8') as f:
            f.write(SETTINGS)
        result = invoke(cli_runner, ['test', '--strict', 'ghcr.io/acme/img:dev'], fake)
        assert result.exit_code == 6
        assert fake.commands("docker", "run")[0][-3] == 'ghcr.io/acme/img:dev'


def test_promote_without_tags_file(cli_runner):
    fake = FakeRunner()
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['promote'], fake)
        assert result.exit_code == 0
        assert 'nothing to do' in result.output
        assert not fake.commands("docker", "buildx", "imagetools")


def test_promote_partial_failure(cli_runner):
    fake = FakeRunner().on("docker", "buildx", "imagetools", "create", "--tag",
                           "ghcr.io/get2knowio/devcontainer:latest", returncode=1)
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['promote', 'v1', 'latest'], fake)
        assert result.exit_code == 7
        assert 'FAILED' in result.output


def test_build_missing_tools(cli_runner):
    with cli_runner.isolated_filesystem():
        os.makedirs('containers/base')
        result = invoke(cli_runner, ['build'], FakeRunner(tools=()))
        assert result.exit_code == 3


def test_run_pipeline(cli_runner):
    fake = FakeRunner().on("docker", "run", handler=container_handler())
    with cli_runner.isolated_filesystem():
        os.makedirs('containers/base')
        with open('devpipe.yml', 'w', encoding='utf-8') as f:
            f.write(SETTINGS)
        result = invoke(cli_runner, ['run', '-t', 'v1'], fake)
        assert result.exit_code == 0, result.output
        assert 'Pipeline succeeded.' in result.output
        assert fake.commands("docker", "buildx", "imagetools", "create")


def test_run_local_passes_arguments(cli_runner):
    fake = FakeRunner(tools=("act",))
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['run-local', '--ci', '--', '--pull=false'], fake)
        assert result.exit_code == 0
        assert fake.calls[0] == [
            "act", "-W", ".github/workflows/docker-build-push.yml",
            "-j", "build-test-publish", "--matrix", "mode:ci", "--pull=false",
        ]


class FakeResponse:
    status = 200

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_doctor_unreachable_registry(cli_runner, monkeypatch):
    def opener(request, timeout=None):
        if "ghcr.io" in request.full_url:
            raise URLError("connection refused")
        return FakeResponse()

    monkeypatch.setattr("devpipe.UTILS.connectivity.urlopen", opener)
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['doctor'], FakeRunner())
        assert result.exit_code == 8
        assert 'https://ghcr.io/v2/' in result.output


def test_doctor_all_reachable(cli_runner, monkeypatch):
    monkeypatch.setattr("devpipe.UTILS.connectivity.urlopen",
                        lambda request, timeout=None: FakeResponse())
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['doctor'], FakeRunner())
        assert result.exit_code == 0, result.output
        assert 'failed' not in result.output


def test_doctor_missing_docker_takes_precedence(cli_runner, monkeypatch):
    def opener(request, timeout=None):
        raise URLError("connection refused")

    monkeypatch.setattr("devpipe.UTILS.connectivity.urlopen", opener)
    with cli_runner.isolated_filesystem():
        result = invoke(cli_runner, ['doctor'], FakeRunner(tools=()))
        assert result.exit_code == 3
