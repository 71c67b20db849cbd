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
Model for the result of a successful image build.
"""
from typing import Tuple

from pydantic import BaseModel, ConfigDict


class BuiltImage(BaseModel):
    """
    An image the builder produced and verified.

    A multi-platform image exists only in the registry (as a manifest list);
    `locally_loaded` is True only for single-platform builds loaded into the
    local image store.
    """

    model_config = ConfigDict(frozen=True)

    reference: str
    platforms: Tuple[str, ...]
    locally_loaded: bool = False
    pushed: bool = False
    strategy: str = ""
