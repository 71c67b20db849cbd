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
Command Line Interface for devpipe.
"""
import json
import logging
import os

import click
from dotenv import load_dotenv

from ..BUILDERS.image_builder import ImageBuilder
from ..BUILDERS.strategies import select_build_provider
from ..errors import (
    ConfigError,
    NetworkTransient,
    PipelineError,
    PromotionPartialFailure,
    ToolMissing,
    ValidationFailed,
)
from ..MANAGERS.environment_resolver import EnvironmentResolver
from ..MANAGERS.pipeline import PipelineOrchestrator
from ..MODELS.build_config import BuildMode
from ..PARSERS.env_parser import EnvParser
from ..PARSERS.settings_parser import SettingsParser
from ..PROMOTERS.tag_promoter import TagPromoter, promotable_tags
from ..REGISTRY.tag_policy import CiEvent, derive_tags, qualify_tags, read_tags_file, write_tags_file
from ..RUNNERS.act_runner import DEFAULT_JOB, DEFAULT_WORKFLOW, ActRunner
from ..RUNNERS.command_runner import CommandRunner
from ..UTILS.connectivity import DEFAULT_TARGETS, probe_all, registry_url, require_reachable
from ..VALIDATORS.image_validator import ImageValidator
from .summary import print_pipeline, print_promotion, print_validation

MODE_CHOICES = click.Choice(["ci", "local-act", "local"])


class EchoHandler(logging.Handler):
    """Writes log records to stderr through click, prefixed with the module."""

    def emit(self, record):
        try:
            record.stage = record.name.rsplit(".", 1)[-1]
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("devpipe")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = EchoHandler()
    handler.setFormatter(logging.Formatter("[%(stage)s] %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


def fail(error: PipelineError) -> None:
    """Print a pipeline error and exit with its code."""
    click.echo(f"Error: {error}", err=True)
    raise SystemExit(error.exit_code)


def resolve_config(ctx, mode=None, refresh=False):
    resolver = EnvironmentResolver(ctx.obj['settings'], runner=ctx.obj['runner'])
    return resolver.resolve(mode_override=mode, refresh=refresh)


@click.group()
@click.option('--config', '-c', 'config_path', default=None,
              help='Settings file (default: devpipe.yml if present)')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.pass_context
def cli(ctx, config_path, verbose):
    """
    devpipe - build, test and promote development container images.

    Runs the same way in CI and locally: CI builds every platform and
    pushes, local runs build the host platform into the local image store.
    """
    load_dotenv(os.path.join(os.getcwd(), ".env"), override=False)
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj.setdefault('runner', CommandRunner())
    try:
        ctx.obj['settings'] = SettingsParser().load(config_path)
    except ConfigError as e:
        fail(e)


@cli.command()
@click.option('--mode', '-m', type=MODE_CHOICES, default=None, help='Override mode detection')
@click.option('--refresh', is_flag=True, help='Ignore the environment cache')
@click.option('--format', 'output_format', type=click.Choice(['text', 'shell', 'json']),
              default='text')
@click.pass_context
def env(ctx, mode, refresh, output_format):
    """Resolve and show the build environment."""
    config = resolve_config(ctx, mode, refresh)
    values = EnvironmentResolver.to_cache(config)
    if output_format == 'shell':
        click.echo(EnvParser.dump(values), nl=False)
    elif output_format == 'json':
        click.echo(json.dumps(values, indent=2))
    else:
        for key, value in values.items():
            click.echo(f"{key:14} {value}")


@cli.command()
@click.option('--context', 'context_dir', default=None, help='Build context directory')
@click.option('--mode', '-m', type=MODE_CHOICES, default=None, help='Override mode detection')
@click.option('--refresh', is_flag=True, help='Ignore the environment cache')
@click.pass_context
def build(ctx, context_dir, mode, refresh):
    """Build the staging image."""
    settings, runner = ctx.obj['settings'], ctx.obj['runner']
    config = resolve_config(ctx, mode, refresh)
    try:
        provider = select_build_provider(runner)
        builder = ImageBuilder(provider, runner, settings.build, stream_output=True)
        image = builder.build(context_dir or settings.build.context_dir, config)
    except PipelineError as e:
        fail(e)
    where = "pushed" if image.pushed else "loaded locally"
    click.echo(f"Built {image.reference} ({', '.join(image.platforms)}, {where})")


@cli.command()
@click.argument('images', nargs=-1)
@click.option('--strict/--no-strict', default=None, envvar='STRICT_VALIDATION',
              help='Treat advisory check failures as fatal')
@click.option('--dind/--no-dind', default=None, envvar='DIND_TESTS',
              help='Run the nested docker daemon smoke test')
@click.pass_context
def test(ctx, images, strict, dind):
    """Run the check suite against IMAGES (default: the staging image)."""
    settings, runner = ctx.obj['settings'], ctx.obj['runner']
    updates = {}
    if strict is not None:
        updates['strict'] = strict
    if dind is not None:
        updates['dind_tests'] = dind
    validation_settings = settings.validation.model_copy(update=updates)

    config = resolve_config(ctx)
    if not images:
        images = (config.image_reference,)
    validator = ImageValidator.for_config(runner, validation_settings, config)
    results = validator.validate_many(list(images))

    failed = []
    for reference, result in results.items():
        print_validation(result)
        if not result.passed:
            failed.append(ValidationFailed(reference, result.fatal_failures))
    if failed:
        fail(failed[0])


@cli.command()
@click.argument('tags', nargs=-1)
@click.option('--tags-file', default=None, help='File with one tag per line')
@click.pass_context
def promote(ctx, tags, tags_file):
    """Promote the staging image to TAGS (default: the tags file)."""
    settings, runner = ctx.obj['settings'], ctx.obj['runner']
    config = resolve_config(ctx)
    if not tags:
        path = tags_file or config.tags_file
        if not os.path.exists(path):
            click.echo(f"No tags file present ({path}); nothing to do.")
            return
        tags = read_tags_file(path)

    promoter = TagPromoter(runner, config, settings.promotion)
    report = promoter.promote(config.image_reference, promotable_tags(tags))
    print_promotion(report)
    if not report.succeeded:
        fail(PromotionPartialFailure(report.failed_tags, report.promoted_tags))


@cli.command()
@click.option('--event', default=None, help='Event name (default: $GITHUB_EVENT_NAME)')
@click.option('--ref', default=None, help='Git ref (default: $GITHUB_REF)')
@click.option('--write', is_flag=True, help='Write the tags file')
@click.option('--tags-file', default=None, help='Tags file to write')
@click.pass_context
def tags(ctx, event, ref, write, tags_file):
    """Derive the final tags for a CI event."""
    settings = ctx.obj['settings']
    config = resolve_config(ctx)
    ci_event = CiEvent.from_env(os.environ, settings.promotion.default_branch)
    if event:
        ci_event.event_name = event
    if ref:
        ci_event.ref = ref
    final = qualify_tags(derive_tags(ci_event), config.registry, config.repository)
    for tag in final:
        click.echo(tag)
    if write:
        path = tags_file or config.tags_file
        write_tags_file(path, final)
        click.echo(f"Wrote {len(final)} tag(s) to {path}", err=True)


@cli.command()
@click.option('--context', 'context_dir', default=None, help='Build context directory')
@click.option('--tag', '-t', 'tag_list', multiple=True, help='Destination tag (repeatable)')
@click.option('--no-promote', is_flag=True, help='Stop after validation')
@click.option('--strict/--no-strict', default=None, envvar='STRICT_VALIDATION',
              help='Treat advisory check failures as fatal')
@click.option('--mode', '-m', type=MODE_CHOICES, default=None, help='Override mode detection')
@click.option('--refresh', is_flag=True, help='Ignore the environment cache')
@click.pass_context
def run(ctx, context_dir, tag_list, no_promote, strict, mode, refresh):
    """Resolve, build, validate and promote in one go."""
    settings, runner = ctx.obj['settings'], ctx.obj['runner']
    if strict is not None:
        settings = settings.model_copy(update={
            'validation': settings.validation.model_copy(update={'strict': strict})
        })
    orchestrator = PipelineOrchestrator(settings, runner, stream_output=True)
    report = orchestrator.run(
        context_dir=context_dir,
        tags=list(tag_list) if tag_list else None,
        promote=not no_promote,
        mode=mode,
        refresh=refresh,
    )
    print_pipeline(report)
    if report.exit_code:
        raise SystemExit(report.exit_code)


@cli.command()
@click.pass_context
def doctor(ctx):
    """Check build tools and registry connectivity."""
    settings, runner = ctx.obj['settings'], ctx.obj['runner']
    click.echo(f"{'TOOL':14} {'STATUS':10}")
    click.echo("-" * 40)
    for tool in ("docker", "devcontainer", "act"):
        path = runner.which(tool)
        click.echo(f"{tool:14} {'found' if path else 'missing':10} {path or ''}")
    docker_present = runner.which("docker") is not None
    if docker_present:
        buildx = runner.run(["docker", "buildx", "version"]).ok
        daemon = runner.run(["docker", "info"], timeout=15).ok
        click.echo(f"{'buildx':14} {'found' if buildx else 'missing':10}")
        click.echo(f"{'daemon':14} {'reachable' if daemon else 'unreachable':10}")

    click.echo("")
    click.echo(f"{'TARGET':44} {'STATUS':10}")
    click.echo("-" * 60)
    registry = registry_url(settings.registry)
    targets = [url for url in DEFAULT_TARGETS if url != registry]
    for result in probe_all(targets, attempts=2, timeout=10):
        status = 'ok' if result.reachable else 'failed'
        click.echo(f"{result.url:44} {status:10} {result.detail}")
    unreachable = None
    try:
        result = require_reachable(registry, attempts=2, timeout=10)
        click.echo(f"{registry:44} {'ok':10} {result.detail}")
    except NetworkTransient as e:
        click.echo(f"{registry:44} {'failed':10} {e.detail}")
        unreachable = e

    if not docker_present:
        fail(ToolMissing(["docker"], "docker is required to build and test images."))
    if unreachable is not None:
        fail(unreachable)


@cli.command('run-local', context_settings={'ignore_unknown_options': True})
@click.option('--workflow', '-w', default=DEFAULT_WORKFLOW, help='Workflow file')
@click.option('--job', '-j', default=DEFAULT_JOB, help='Job id')
@click.option('--mode', '-m', type=MODE_CHOICES, default='local-act', help='Matrix mode value')
@click.option('--ci', 'ci_mode', is_flag=True, help='Shortcut for --mode ci')
@click.option('--local', 'local_mode', is_flag=True, help='Shortcut for --mode local-act')
@click.argument('act_args', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run_local(ctx, workflow, job, mode, ci_mode, local_mode, act_args):
    """Run the CI workflow locally with act."""
    if ci_mode:
        mode = 'ci'
    if local_mode:
        mode = 'local-act'
    try:
        result = ActRunner(ctx.obj['runner']).run(workflow, job, BuildMode.parse(mode), act_args)
    except PipelineError as e:
        fail(e)
    if not result.ok:
        raise SystemExit(1)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
