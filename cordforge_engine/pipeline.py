import time
from dataclasses import dataclass
from typing import Callable, Optional

from .artifact_manager import ArtifactLocator, ArtifactUploader
from .build import Build, BuildState, StatusMessage
from .build_executor import BuildRunner
from .exceptions import BuildFailure
from .failure_handler import FailureHandler
from .job import JobConfig
from .logger_setup import logger, get_build_logger, close_build_logger
from .signing import SigningConfigurator
from .status_reporter import StatusReporter
from .workspace_manager import ArtifactFetcher, WorkspaceManager

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

MSG_STARTING = "Starting build process in secure container..."
MSG_DOWNLOADING = "Downloading and extracting project from storage..."
MSG_SIGNING = "Preparing release configuration (keystore)..."
MSG_INSTALLING = "Installing project dependencies (npm)..."
MSG_COMPILING = "Starting Android compilation (this may take a while)..."
MSG_UPLOADING = "Finalizing and uploading build results..."


@dataclass
class BuildResult:
    build: Build
    terminal_message: StatusMessage

    @property
    def success(self) -> bool:
        return self.build.state is BuildState.COMPLETE

    @property
    def exit_code(self) -> int:
        return EXIT_SUCCESS if self.success else EXIT_FAILURE


class BuildPipeline:
    """Runs one build job start to finish and reports exactly one terminal status."""

    def __init__(self, job: JobConfig,
                 reporter: Optional[StatusReporter] = None,
                 fetcher: Optional[ArtifactFetcher] = None,
                 signer: Optional[SigningConfigurator] = None,
                 runner: Optional[BuildRunner] = None,
                 locator: Optional[ArtifactLocator] = None,
                 uploader: Optional[ArtifactUploader] = None,
                 failure_handler: Optional[FailureHandler] = None,
                 clock: Callable[[], float] = time.time):
        self.job = job
        self.clock = clock
        self.workspace = WorkspaceManager(job.workspace_dir)
        self.reporter = reporter or StatusReporter(job.webhook_url, job.webhook_secret)
        self.fetcher = fetcher or ArtifactFetcher()
        self.signer = signer or SigningConfigurator(self.fetcher)
        self.runner = runner or BuildRunner(job.toolchain)
        self.locator = locator or ArtifactLocator()
        self.uploader = uploader or ArtifactUploader.for_job(job)
        self.failure_handler = failure_handler or FailureHandler(self.reporter, self.uploader, clock)
        self.build_logger = logger

    def _log_update(self, text: str):
        self.build_logger.info(text)
        self.reporter.report(StatusMessage.log_update(self.job.build_id, self.job.user_id, text))

    def run(self) -> BuildResult:
        job = self.job
        build = Build(build_id=job.build_id, user_id=job.user_id, build_type=job.build_type, start_time=self.clock())
        logger.info(f"Starting {job.build_type.value} build {job.build_id} for user {job.user_id}")

        try:
            try:
                self._prepare_workspace()
                download_url = self._run_steps(build)
            except Exception as e:
                # Single failure path: any step error lands here exactly once
                step = getattr(e, "step", "build")
                self.build_logger.error(f"Build failed during '{step}': {e}", exc_info=not isinstance(e, BuildFailure))
                terminal = self.failure_handler.handle(job, build, self.workspace, e)
                logger.error(f"Build {job.build_id} reported as failed after {build.duration_seconds()}s")
                return BuildResult(build=build, terminal_message=terminal)

            build.mark_complete(self.clock(), download_url)
            terminal = StatusMessage.complete(
                job.build_id, job.user_id,
                duration_seconds=build.duration_seconds(),
                download_url=download_url,
                ci_provider=job.ci_provider,
            )
            self.reporter.report(terminal)
            self.build_logger.info(f"Build complete: {download_url}")
            logger.info("--- Build process completed successfully! ---")
            return BuildResult(build=build, terminal_message=terminal)
        finally:
            close_build_logger(self.build_logger)

    def _prepare_workspace(self):
        self.workspace.create()
        self.build_logger, runner_log_path = get_build_logger(self.job.build_id, self.workspace.root)
        logger.info(f"Runner transcript: {runner_log_path}")

    def _run_steps(self, build: Build) -> str:
        """Runs every required step; returns the artifact's public URL."""
        job = self.job
        self._log_update(MSG_STARTING)
        build.mark_in_progress()
        self.reporter.report(StatusMessage.in_progress(job.build_id, job.user_id, job.ci_provider, job.run_id))

        self._log_update(MSG_DOWNLOADING)
        project_dir = self.fetcher.fetch(job.project_url, self.workspace)

        build_config = None
        if job.build_type.is_release:
            self._log_update(MSG_SIGNING)
            build_config = self.signer.configure(job, project_dir)

        self._log_update(MSG_INSTALLING)
        self.runner.install_dependencies(project_dir, self.workspace.install_log)

        self._log_update(MSG_COMPILING)
        self.runner.compile(job, project_dir, self.workspace.build_log, build_config)

        self._log_update(MSG_UPLOADING)
        artifact_path = self.locator.locate(project_dir, job.build_type)
        build.artifact_path = str(artifact_path)
        return self.uploader.upload_artifact(job, artifact_path)
