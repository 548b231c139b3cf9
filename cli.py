import click
import json
import sys
from pathlib import Path

from cordforge_engine.artifact_manager import ArtifactLocator
from cordforge_engine.exceptions import ArtifactNotFoundError
from cordforge_engine.failure_handler import build_log_snippet
from cordforge_engine.job import BuildType, DEFAULT_REDACT_PREFIX, DEFAULT_SNIPPET_LINES, JobConfig
from cordforge_engine.logger_setup import logger # Global logger
from cordforge_engine.pipeline import BuildPipeline, EXIT_FAILURE

BUILD_TYPE_CHOICE = click.Choice([b.value for b in BuildType])


def load_job_config(config_file, build_type, workspace) -> JobConfig:
    overrides = {"build_type": build_type, "workspace_dir": workspace}
    try:
        return JobConfig.from_sources(config_file=Path(config_file) if config_file else None, overrides=overrides)
    except ValueError as e:
        raise click.UsageError(str(e))


@click.group()
def cli():
    """cordforge: builds a Cordova Android project and reports back to the app."""
    pass

@cli.command("run")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False), help="YAML file with settings under a 'build' key.")
@click.option("--build-type", type=BUILD_TYPE_CHOICE, help="Overrides INPUT_BUILDTYPE.")
@click.option("--workspace", type=click.Path(file_okay=False), help="Working directory for the build (default: current directory).")
def run_build(config_file, build_type, workspace):
    """Runs the full build pipeline for the configured job."""
    job = load_job_config(config_file, build_type, workspace)
    try:
        result = BuildPipeline(job).run()
    except Exception as e:
        # The failure path itself broke; nothing more can be reported
        logger.error(f"Unrecoverable error while handling build {job.build_id}: {e}", exc_info=True)
        sys.exit(EXIT_FAILURE)
    sys.exit(result.exit_code)

@cli.command("show-config")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False), help="YAML file with settings under a 'build' key.")
@click.option("--build-type", type=BUILD_TYPE_CHOICE, help="Overrides INPUT_BUILDTYPE.")
@click.option("--workspace", type=click.Path(file_okay=False), help="Working directory for the build.")
@click.option("--show-secrets", is_flag=True, help="Print credentials instead of masking them.")
def show_config(config_file, build_type, workspace, show_secrets):
    """Prints the resolved job configuration as JSON."""
    job = load_job_config(config_file, build_type, workspace)
    click.echo(json.dumps(job.to_dict(mask_secrets=not show_secrets), indent=2))

@cli.command("locate")
@click.argument("project_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--build-type", type=BUILD_TYPE_CHOICE, required=True)
def locate(project_dir, build_type):
    """Prints the path of the built artifact inside PROJECT_DIR."""
    try:
        artifact = ArtifactLocator().locate(Path(project_dir), BuildType(build_type))
    except ArtifactNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)
    click.echo(str(artifact))

@cli.command("snippet")
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--lines", "-n", default=DEFAULT_SNIPPET_LINES, show_default=True, type=click.IntRange(min=1))
@click.option("--redact-prefix", default=DEFAULT_REDACT_PREFIX, show_default=True, help="Path prefix replaced with [PROJECT_PATH].")
@click.option("--json", "as_json", is_flag=True, help="Print as an encoded JSON string.")
def snippet(log_file, lines, redact_prefix, as_json):
    """Prints the redacted tail of a build log, as sent in failure reports."""
    text = Path(log_file).read_text(encoding="utf-8", errors="replace")
    result = build_log_snippet(text, lines=lines, redact_prefix=redact_prefix)
    click.echo(json.dumps(result) if as_json else result)

if __name__ == '__main__':
    cli()
