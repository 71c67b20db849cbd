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
Models describing tag promotion outcomes.
"""
from enum import Enum
from typing import List

from pydantic import BaseModel


class PromotionMechanism(str, Enum):
    """How a tag is applied to the staging image."""

    LOCAL_RETAG = "local-retag"
    MANIFEST_COPY = "manifest-copy"


class PromotionOutcome(str, Enum):
    OK = "ok"
    FAILED = "failed"


class PromotionRecord(BaseModel):
    """Result of promoting the staging image to one tag."""

    source_reference: str
    tag: str
    destination: str = ""
    mechanism: PromotionMechanism
    outcome: PromotionOutcome
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == PromotionOutcome.OK


class PromotionReport(BaseModel):
    """All promotion records for one run, in TagSet order."""

    source_reference: str
    records: List[PromotionRecord] = []

    @property
    def succeeded(self) -> bool:
        """True when no tag failed. An empty TagSet trivially succeeds."""
        return all(record.ok for record in self.records)

    @property
    def promoted_tags(self) -> List[str]:
        return [record.tag for record in self.records if record.ok]

    @property
    def failed_tags(self) -> List[str]:
        return [record.tag for record in self.records if not record.ok]
