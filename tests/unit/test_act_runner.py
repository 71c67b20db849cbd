import pytest

from conftest import FakeRunner
from devpipe.errors import ToolMissing
from devpipe.MODELS.build_config import BuildMode
from devpipe.RUNNERS.act_runner import ActRunner


def test_command():
    args = ActRunner(FakeRunner()).command("wf.yml", "build", BuildMode.CI, ["--pull=false"])
    assert args == ["act", "-W", "wf.yml", "-j", "build", "--matrix", "mode:ci", "--pull=false"]


def test_run_local_mode():
    runner = FakeRunner(tools=("act",))
    result = ActRunner(runner).run()
    assert result.ok
    assert runner.calls[0][-2:] == ["--matrix", "mode:local-act"]


def test_act_missing():
    with pytest.raises(ToolMissing):
        ActRunner(FakeRunner(tools=())).run()
