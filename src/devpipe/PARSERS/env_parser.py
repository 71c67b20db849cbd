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
Parser and writer for shell-style environment files, including the
`export KEY=VALUE` lines used by the environment cache.
"""
import os
import re
from typing import Dict, Mapping

_SAFE_VALUE = re.compile(r"^[A-Za-z0-9_./:,@%+=-]*$")
# Characters that keep their special meaning inside double quotes
_ESCAPED = '"\\$`'


class EnvParser:
    """
    Parser for KEY=VALUE files with optional `export` prefixes.
    """
    @staticmethod
    def parse(env_path: str) -> Dict[str, str]:
        """
        Parses an environment file from a path.

        Args:
            env_path (str): Path to the file.

        Returns:
            Dict[str, str]: Dictionary of variables.
        """
        with open(env_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return EnvParser.parse_from_string(content)

    @staticmethod
    def parse_from_string(content: str) -> Dict[str, str]:
        """
        Parses variables from a string.
        Handles `export` prefixes, quotes and trailing comments.
        """
        env = {}
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            if line.startswith('export '):
                line = line[len('export '):].lstrip()

            if '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if not key:
                continue

            if value.startswith('"'):
                value = EnvParser._unquote_double(value)
            elif value.startswith("'"):
                end = value.find("'", 1)
                value = value[1:end] if end != -1 else value[1:]
            elif '#' in value:
                value = value.split('#', 1)[0].strip()

            env[key] = value

        return env

    @staticmethod
    def _unquote_double(value: str) -> str:
        """Reads a double-quoted value, honouring backslash escapes."""
        chars = []
        index = 1
        while index < len(value):
            char = value[index]
            if char == '\\' and index + 1 < len(value) and value[index + 1] in _ESCAPED:
                chars.append(value[index + 1])
                index += 2
                continue
            if char == '"':
                break
            chars.append(char)
            index += 1
        return ''.join(chars)

    @staticmethod
    def dump(values: Mapping[str, str]) -> str:
        """
        Renders variables as `export KEY=VALUE` lines that a shell can source.
        """
        lines = []
        for key, value in values.items():
            value = str(value)
            if not _SAFE_VALUE.match(value):
                value = '"' + ''.join('\\' + c if c in _ESCAPED else c for c in value) + '"'
            lines.append(f"export {key}={value}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def write(env_path: str, values: Mapping[str, str]) -> None:
        """Writes variables to `env_path`, creating parent directories."""
        parent = os.path.dirname(env_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(env_path, 'w', encoding='utf-8') as f:
            f.write(EnvParser.dump(values))
