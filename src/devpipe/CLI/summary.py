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
Console summaries for validation, promotion and full pipeline runs.
"""
import click

from ..MANAGERS.pipeline import PipelineReport
from ..MODELS.promotion import PromotionReport
from ..MODELS.validation import ValidationResult


def check_status(result: ValidationResult, check) -> str:
    if check.skipped:
        return "SKIP"
    if check.passed:
        return "PASS"
    return "FAIL" if result.is_fatal(check) else "WARN"


def print_validation(result: ValidationResult) -> None:
    click.echo(f"\nChecks for {result.image_reference}")
    click.echo(f"{'CHECK':28} {'GROUP':16} {'STATUS':8} DETAIL")
    click.echo("-" * 80)
    for check in result.check_results:
        detail = check.detail.splitlines()[-1] if check.detail and not check.passed else ""
        click.echo(f"{check.name:28} {check.group:16} {check_status(result, check):8} {detail}")

    total = len(result.check_results)
    passed = sum(1 for c in result.check_results if c.passed)
    click.echo(f"{passed}/{total} passed, "
               f"{len(result.fatal_failures)} fatal, {len(result.advisory_failures)} advisory")


def print_promotion(report: PromotionReport) -> None:
    click.echo(f"\nPromotion of {report.source_reference}")
    if not report.records:
        click.echo("No tags to promote.")
        return
    click.echo(f"{'TAG':48} {'MECHANISM':14} {'OUTCOME':8}")
    click.echo("-" * 80)
    for record in report.records:
        click.echo(f"{record.destination or record.tag:48} {record.mechanism.value:14} "
                   f"{record.outcome.value.upper():8}")
        if not record.ok and record.detail:
            click.echo(f"    {record.detail.splitlines()[-1]}")


def print_pipeline(report: PipelineReport) -> None:
    if report.validation is not None:
        print_validation(report.validation)
    if report.promotion is not None:
        print_promotion(report.promotion)

    click.echo(f"\n{'STAGE':12} STATUS")
    click.echo("-" * 24)
    for stage, status in report.stages.items():
        click.echo(f"{stage:12} {status.value}")
    for warning in report.warnings:
        click.echo(f"Warning: {warning}")
    for error in report.errors:
        click.echo(f"Error: {error}", err=True)
    click.echo("Pipeline succeeded." if report.succeeded else "Pipeline failed.")
