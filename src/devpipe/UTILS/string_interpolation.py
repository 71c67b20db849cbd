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
Utilities for expanding environment variables inside settings files.
"""
import re
from typing import List, Mapping, Tuple

_PATTERN = re.compile(r'\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)(?::(-|\+)([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Expands ${VAR}, ${VAR:-default} and ${VAR:+alt} placeholders.
    `$$` produces a literal `$`.
    """

    @staticmethod
    def interpolate(template: str, context: Mapping[str, str], strict: bool = False) -> str:
        """
        Interpolates placeholders in the template using the given context.

        :param template: Text containing placeholders.
        :param context: Variables available for expansion.
        :param strict: Raise KeyError for a bare ${VAR} that is unset.
        :return: The expanded text.
        """
        expanded, missing = EnvironmentInterpolator.interpolate_with_missing(template, context)
        if strict and missing:
            raise KeyError(f"Variables not set: {', '.join(missing)}")
        return expanded

    @staticmethod
    def interpolate_with_missing(
        template: str, context: Mapping[str, str]
    ) -> Tuple[str, List[str]]:
        """
        Interpolates placeholders and reports bare variables that were unset.
        Unset bare variables expand to an empty string.
        """
        missing: List[str] = []

        def replace(match):
            if match.group(0) == '$$':
                return '$'
            name, modifier, alternative = match.group(1), match.group(2), match.group(3)
            value = context.get(name)
            if modifier == '-':
                return value if value else alternative
            if modifier == '+':
                return alternative if value else ''
            if value is None:
                if name not in missing:
                    missing.append(name)
                return ''
            return value

        return _PATTERN.sub(replace, template), missing
