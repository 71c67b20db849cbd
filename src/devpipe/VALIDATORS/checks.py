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
The default check suite and the rendering of check groups into the single
bash script each group container runs.
"""
from typing import Dict, List, Optional, Tuple

from jinja2 import Environment, StrictUndefined

from ..MODELS.settings import ValidationSettings
from ..MODELS.validation import CheckDefinition, CheckGroup

MARKER = "::devpipe-check::"
NESTED_DAEMON_CHECK = "nested-daemon"

_jinja = Environment(undefined=StrictUndefined, keep_trailing_newline=True)

GROUP_TEMPLATE = _jinja.from_string("""\
{{ setup }}
{% for check in checks %}
echo "{{ marker }}begin {{ check.name }}"
(
set -e
{{ check.script }}
) 2>&1
echo "{{ marker }}end {{ check.name }} $?"
{% endfor %}
exit 0
""")

NESTED_DAEMON_SCRIPT = """\
image="${DEVPIPE_NESTED_REFERENCE_IMAGE:-alpine:latest}"
command -v docker >/dev/null 2>&1 || { echo "docker CLI missing"; exit 1; }
echo "docker CLI: $(docker --version)"
if ! docker info >/dev/null 2>&1; then
  echo "starting dockerd"
  SUDO=""
  if [ "$(id -u)" != "0" ]; then SUDO="sudo"; fi
  $SUDO dockerd --host=unix:///var/run/docker.sock --pidfile=/var/run/docker.pid >/tmp/dockerd.log 2>&1 &
  for i in $(seq 1 "${DEVPIPE_NESTED_WAIT_ATTEMPTS:-25}"); do
    docker info >/dev/null 2>&1 && break
    sleep "${DEVPIPE_NESTED_WAIT_INTERVAL:-1}"
  done
fi
docker info >/dev/null 2>&1 || { echo "dockerd failed"; tail -n 20 /tmp/dockerd.log 2>/dev/null; exit 1; }
echo "docker daemon ready"
timeout "${DEVPIPE_NESTED_OPERATION_TIMEOUT:-60}" docker pull "$image" >/dev/null 2>&1 || { echo "pull $image failed"; exit 1; }
echo "pulled $image"
timeout "${DEVPIPE_NESTED_OPERATION_TIMEOUT:-60}" docker run --rm "$image" echo ok >/dev/null 2>&1 || { echo "run $image failed"; exit 1; }
echo "ran $image"
"""

NODE_SETUP = """\
export NVM_DIR="${NVM_DIR:-$HOME/.nvm}"
[ -s "$NVM_DIR/nvm.sh" ] && . "$NVM_DIR/nvm.sh"
"""

CLI_TOOLS: List[Tuple[str, str]] = [
    ("bat", "bat --version | head -1"),
    ("rg", "rg --version | head -1"),
    ("fd", "fd --version"),
    ("jq", "jq --version"),
    ("fzf", "fzf --version"),
    ("eza", "eza --version | head -1"),
    ("starship", "starship --version | head -1"),
    ("make", "make --version | head -1"),
    ("gcc", "gcc --version | head -1"),
    ("aws", "aws --version"),
]

NODE_TOOLS = ["node", "npm", "pnpm", "yarn", "bun"]
NODE_DEV_TOOLS = [
    "ts-node", "tsx", "nodemon", "concurrently", "tsc-watch",
    "vite", "esbuild", "prettier", "eslint", "biome",
]
AI_CLIS = ["gemini", "claude"]


def _version_check(name: str, version_cmd: str) -> CheckDefinition:
    return CheckDefinition(
        name=name,
        script=f'command -v {name} >/dev/null || {{ echo "{name} missing"; exit 1; }}\n{version_cmd}',
        description=f"{name} is installed and reports a version",
    )


def default_groups() -> List[CheckGroup]:
    """The suite run against development images when no groups are configured."""
    return [
        CheckGroup(name="core", checks=[
            _version_check("python3", "python3 --version"),
            _version_check("poetry", "poetry --version"),
            CheckDefinition(
                name="python-venv",
                script='python3 -c "import sys, venv; print(\'venv OK on\', sys.version.split()[0])"',
            ),
        ]),
        CheckGroup(name="cli-tools", checks=[_version_check(n, cmd) for n, cmd in CLI_TOOLS]),
        CheckGroup(name="workspace", checks=[
            CheckDefinition(
                name="workspace-write",
                script=(
                    'test_file="${DEVPIPE_WORKSPACE_PATH:-/workspace}/.devpipe-write-test"\n'
                    'touch "$test_file" && rm "$test_file"\n'
                    'echo "${DEVPIPE_WORKSPACE_PATH} is writable"'
                ),
            ),
        ]),
        CheckGroup(name="node", setup=NODE_SETUP, checks=[
            *[_version_check(n, f"{n} --version") for n in NODE_TOOLS],
            CheckDefinition(
                name="node-dev-tools",
                script=(
                    f'for t in {" ".join(NODE_DEV_TOOLS)}; do\n'
                    '  command -v "$t" >/dev/null || { echo "$t missing"; exit 1; }\n'
                    'done\n'
                    'echo "dev tools present"'
                ),
            ),
            CheckDefinition(
                name="typescript-compile",
                script=(
                    'dir="$(mktemp -d)"\n'
                    'echo \'console.log("ts hello")\' > "$dir/x.ts"\n'
                    'npx tsc --version\n'
                    'npx tsc "$dir/x.ts" --outDir "$dir" >/dev/null\n'
                    'node "$dir/x.js"\n'
                    'rm -rf "$dir"'
                ),
            ),
        ]),
        CheckGroup(name="ai-clis", checks=[_version_check(n, f"{n} --version") for n in AI_CLIS]),
        CheckGroup(name="poetry-project", checks=[
            CheckDefinition(
                name="poetry-project",
                script=(
                    'cd "$(mktemp -d)"\n'
                    'poetry new ptest >/dev/null\n'
                    'cd ptest\n'
                    'poetry config virtualenvs.in-project true --local\n'
                    'poetry add requests >/dev/null\n'
                    'test -d .venv || { echo "no in-project venv"; exit 1; }\n'
                    'poetry run python -c "import requests; print(\'requests ok\')"'
                ),
            ),
        ]),
        nested_daemon_group(),
    ]


def nested_daemon_group(timeout: Optional[float] = None) -> CheckGroup:
    """
    Docker-in-Docker smoke test. Runs alone in a privileged container and
    is advisory: nested virtualization is often unavailable in CI runners.
    """
    return CheckGroup(
        name=NESTED_DAEMON_CHECK,
        privileged=True,
        requires_nested_daemon=True,
        timeout=timeout,
        checks=[
            CheckDefinition(
                name=NESTED_DAEMON_CHECK,
                script=NESTED_DAEMON_SCRIPT,
                advisory=True,
                description="start a nested docker daemon, pull and run a container",
            )
        ],
    )


def partition_groups(settings: ValidationSettings) -> Tuple[List[CheckGroup], List[CheckGroup]]:
    """
    Split the configured groups into those to run and those skipped. The
    nested-daemon group is skipped when the image does not support it or
    DinD tests are disabled.
    """
    groups = settings.groups if settings.groups is not None else default_groups()
    selected, skipped = [], []
    for group in groups:
        if group.requires_nested_daemon:
            if not (settings.nested_daemon_supported and settings.dind_tests):
                skipped.append(group)
                continue
            if group.timeout is None:
                group = group.model_copy(update={"timeout": settings.nested_group_timeout})
        selected.append(group)
    return selected, skipped


def groups_for(settings: ValidationSettings) -> List[CheckGroup]:
    """Groups to run for these settings."""
    return partition_groups(settings)[0]


def check_environment(settings: ValidationSettings) -> Dict[str, str]:
    """Variables passed into every check container."""
    return {
        "DEVPIPE_WORKSPACE_PATH": settings.workspace_path,
        "DEVPIPE_NESTED_REFERENCE_IMAGE": settings.nested_reference_image,
        "DEVPIPE_NESTED_WAIT_ATTEMPTS": str(settings.nested_wait_attempts),
        "DEVPIPE_NESTED_WAIT_INTERVAL": f"{settings.nested_wait_interval:g}",
        "DEVPIPE_NESTED_OPERATION_TIMEOUT": str(settings.nested_operation_timeout),
    }


def render_group(group: CheckGroup) -> str:
    """
    Render a group into one bash script. Each check runs in a `set -e`
    subshell between begin/end marker lines carrying its exit status.
    Check scripts are inserted verbatim, never evaluated as templates.
    """
    checks = [{"name": check.name, "script": check.script} for check in group.checks]
    return GROUP_TEMPLATE.render(setup=group.setup, checks=checks, marker=MARKER)


def parse_group_output(output: str) -> Dict[str, Tuple[int, str]]:
    """
    Split a group container's output into {check name: (exit code, output)}.
    Checks that never reached their end marker are absent.
    """
    results: Dict[str, Tuple[int, str]] = {}
    current: Optional[str] = None
    buffer: List[str] = []
    for line in output.splitlines():
        if line.startswith(MARKER + "begin "):
            current = line[len(MARKER + "begin "):].strip()
            buffer = []
            continue
        if line.startswith(MARKER + "end ") and current is not None:
            _, _, status = line[len(MARKER + "end "):].rpartition(" ")
            try:
                code = int(status)
            except ValueError:
                code = 1
            results[current] = (code, "\n".join(buffer).strip())
            current = None
            continue
        if current is not None:
            buffer.append(line)
    return results
