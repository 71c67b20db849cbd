import pytest

from conftest import FakeRunner, container_handler
from devpipe.MODELS.built_image import BuiltImage
from devpipe.MODELS.settings import ValidationSettings
from devpipe.MODELS.validation import CheckDefinition, CheckGroup
from devpipe.RUNNERS.command_runner import CommandResult
from devpipe.VALIDATORS.checks import NESTED_DAEMON_CHECK
from devpipe.VALIDATORS.image_validator import IMAGE_AVAILABLE_CHECK, ImageValidator

IMAGE = "ghcr.io/acme/devcontainer:ci-abc123"


def suite():
    """Five fatal checks in two groups plus one advisory privileged check."""
    return [
        CheckGroup(name="core", checks=[
            CheckDefinition(name="python", script="python3 --version"),
            CheckDefinition(name="poetry", script="poetry --version"),
            CheckDefinition(name="venv", script="python3 -m venv --help"),
        ]),
        CheckGroup(name="node", checks=[
            CheckDefinition(name="node", script="node --version"),
            CheckDefinition(name="npm", script="npm --version"),
        ]),
        CheckGroup(name="nested", privileged=True, requires_nested_daemon=True, checks=[
            CheckDefinition(name="dind", script="docker info", advisory=True),
        ]),
    ]


def make_validator(runner, strict=False, **kwargs):
    return ImageValidator(runner, ValidationSettings(strict=strict), groups=suite(), **kwargs)


class TestValidate:

    def test_advisory_failure_does_not_fail(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler({"dind": 1}))
        result = make_validator(runner).validate(IMAGE)
        assert result.passed
        assert result.advisory_failures == ["dind"]
        assert result.fatal_failures == []
        names = [r.name for r in result.check_results]
        assert names == [IMAGE_AVAILABLE_CHECK, "python", "poetry", "venv", "node", "npm", "dind"]

    def test_strict_makes_advisory_fatal(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler({"dind": 1}))
        result = make_validator(runner, strict=True).validate(IMAGE)
        assert not result.passed
        assert result.fatal_failures == ["dind"]

    def test_fatal_failure(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler({"npm": 2}))
        result = make_validator(runner).validate(IMAGE)
        assert not result.passed
        assert result.fatal_failures == ["npm"]
        npm = [r for r in result.check_results if r.name == "npm"][0]
        assert npm.detail.startswith("exit code 2")

    def test_each_group_gets_a_fresh_container(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler())
        make_validator(runner).validate(IMAGE)
        runs = runner.commands("docker", "run")
        assert len(runs) == 3
        assert all("--rm" in r for r in runs)
        assert ["--privileged" in r for r in runs] == [False, False, True]

    def test_container_failure_fails_its_checks(self):
        def handler(args):
            if "--privileged" in args:
                return CommandResult(args, 125, stderr="privileged mode not allowed")
            return container_handler()(args)

        runner = FakeRunner().on("docker", "run", handler=handler)
        result = make_validator(runner).validate(IMAGE)
        dind = [r for r in result.check_results if r.name == "dind"][0]
        assert not dind.passed
        assert "privileged mode not allowed" in dind.detail
        assert result.passed

    def test_timeout_is_reported(self):
        def handler(args):
            return CommandResult(args, 124, timed_out=True, duration=600)

        runner = FakeRunner().on("docker", "run", handler=handler)
        result = make_validator(runner).validate(IMAGE)
        assert "timed out" in result.check_results[1].detail

    def test_timed_out_container_is_removed(self):
        def handler(args):
            return CommandResult(args, 124, timed_out=True, duration=600)

        runner = FakeRunner().on("docker", "run", handler=handler)
        make_validator(runner).validate(IMAGE)
        runs = runner.commands("docker", "run")
        removals = runner.commands("docker", "rm", "-f")
        names = [r[r.index("--name") + 1] for r in runs]
        assert all(name.startswith("devpipe-") for name in names)
        assert len(set(names)) == len(names)
        assert [r[-1] for r in removals] == names

    def test_finished_container_is_not_removed(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler())
        make_validator(runner).validate(IMAGE)
        assert not runner.commands("docker", "rm")

    def test_shell_and_format_syntax_in_scripts(self):
        groups = [CheckGroup(name="shell", checks=[
            CheckDefinition(name="path-length", script="test ${#PATH} -gt 0"),
            CheckDefinition(name="inspect-format", script="docker inspect --format '{{.Id}}' alpine"),
        ])]
        runner = FakeRunner().on("docker", "run", handler=container_handler())
        result = ImageValidator(runner, ValidationSettings(), groups=groups).validate(IMAGE)
        assert result.passed
        script = runner.commands("docker", "run")[0][-1]
        assert "test ${#PATH} -gt 0" in script
        assert "--format '{{.Id}}'" in script

    def test_settings_passed_as_environment(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler())
        settings = ValidationSettings(workspace_path="/src")
        ImageValidator(runner, settings, groups=suite()).validate(IMAGE)
        assert "DEVPIPE_WORKSPACE_PATH=/src" in runner.commands("docker", "run")[0]

    def test_disabled_nested_group_is_reported_as_skipped(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler())
        result = ImageValidator(runner, ValidationSettings(dind_tests=False)).validate(IMAGE)
        nested = [r for r in result.check_results if r.name == NESTED_DAEMON_CHECK][0]
        assert nested.skipped
        assert result.passed
        assert not any("--privileged" in r for r in runner.commands("docker", "run"))

    def test_built_image_accepted(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler())
        image = BuiltImage(reference=IMAGE, platforms=("linux/amd64",), locally_loaded=True)
        assert make_validator(runner).validate(image).image_reference == IMAGE


class TestAvailability:

    def test_pulls_missing_image_for_platform(self):
        runner = FakeRunner().on("docker", "image", "inspect", returncode=1)
        runner.on("docker", "run", handler=container_handler())
        result = make_validator(runner, pull_platform="linux/amd64").validate(IMAGE)
        assert result.passed
        assert runner.commands("docker", "pull")[0] == [
            "docker", "pull", "--platform", "linux/amd64", IMAGE,
        ]

    def test_unavailable_image_fails_without_running_checks(self):
        runner = FakeRunner().on("docker", "image", "inspect", returncode=1)
        runner.on("docker", "pull", returncode=1, stderr="manifest unknown")
        result = make_validator(runner).validate(IMAGE)
        assert not result.passed
        assert result.fatal_failures == [IMAGE_AVAILABLE_CHECK]
        assert not runner.commands("docker", "run")

    def test_no_pull(self):
        runner = FakeRunner().on("docker", "image", "inspect", returncode=1)
        result = make_validator(runner, pull_missing=False).validate(IMAGE)
        assert not result.passed
        assert not runner.commands("docker", "pull")


class TestValidateMany:

    def test_results_in_input_order(self):
        def handler(args):
            codes = {"python": 1} if "ghcr.io/acme/devcontainer:bad" in args else {}
            return container_handler(codes)(args)

        runner = FakeRunner().on("docker", "run", handler=handler)
        images = ["ghcr.io/acme/devcontainer:good", "ghcr.io/acme/devcontainer:bad"]
        results = make_validator(runner).validate_many(images)
        assert list(results) == images
        assert results[images[0]].passed
        assert not results[images[1]].passed

    def test_duplicate_references_validated_once(self):
        runner = FakeRunner().on("docker", "run", handler=container_handler())
        images = [IMAGE, "ghcr.io/acme/devcontainer:other", IMAGE]
        results = make_validator(runner).validate_many(images)
        assert list(results) == [IMAGE, "ghcr.io/acme/devcontainer:other"]
        assert len(runner.commands("docker", "image", "inspect")) == 2

    def test_empty(self):
        assert make_validator(FakeRunner()).validate_many([]) == {}
