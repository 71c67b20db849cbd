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
Parser for the pipeline settings file (devpipe.yml).
"""
import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from ..MODELS.settings import PipelineSettings
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "devpipe.yml"


class SettingsParser:
    """
    Loads PipelineSettings from YAML, expanding environment placeholders first.
    """
    def __init__(self, context: Optional[Mapping[str, str]] = None):
        """
        Initializes the parser with an optional interpolation context.

        :param context: Variables for interpolation. Defaults to os.environ.
        """
        self.context = dict(os.environ) if context is None else dict(context)

    def load(self, path: Optional[str] = None) -> PipelineSettings:
        """
        Loads settings from `path`. An absent default file yields defaults;
        an explicitly named file must exist.

        :param path: Settings file path, or None for devpipe.yml.
        :return: Parsed settings.
        """
        explicit = path is not None
        path = path or DEFAULT_SETTINGS_FILE
        if not os.path.exists(path):
            if explicit:
                raise ConfigError(f"Settings file not found: {path}")
            logger.debug("No settings file at %s, using defaults", path)
            return PipelineSettings()

        with open(path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse_from_string(content, source=path)

    def parse_from_string(self, content: str, source: str = "<string>") -> PipelineSettings:
        """
        Parses settings from YAML text.

        :param content: YAML document.
        :param source: Name used in error messages.
        :return: Parsed settings.
        """
        content, missing = EnvironmentInterpolator.interpolate_with_missing(content, self.context)
        for name in missing:
            logger.warning("%s references unset variable %s", source, name)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {source}", str(e)) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"{source} must contain a mapping at the top level")

        return self._build(data, source)

    @staticmethod
    def _build(data: Dict[str, Any], source: str) -> PipelineSettings:
        try:
            return PipelineSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {source}", str(e)) from e
