import re
import time
from pathlib import Path
from typing import Callable, Optional

from .artifact_manager import ArtifactUploader
from .build import Build, StatusMessage
from .exceptions import UploadError
from .job import DEFAULT_REDACT_PREFIX, DEFAULT_SNIPPET_LINES, JobConfig
from .logger_setup import logger
from .status_reporter import StatusReporter
from .workspace_manager import WorkspaceManager

NO_LOGS_PLACEHOLDER = "Build failed during initial setup. No logs generated."
PROJECT_PATH_PLACEHOLDER = "[PROJECT_PATH]"
PREPARING_LOGS_MESSAGE = "Build failed. Preparing logs for upload..."


def combine_logs(install_log: Path, build_log: Path, final_log: Path, error_message: Optional[str] = None) -> Path:
    """Writes whichever step logs exist, in pipeline order, into one file."""
    sources = [p for p in (install_log, build_log) if p.is_file()]
    with open(final_log, "w", encoding="utf-8", errors="replace") as out:
        if not sources:
            out.write(NO_LOGS_PLACEHOLDER + "\n")
        for source in sources:
            text = source.read_text(encoding="utf-8", errors="replace")
            out.write(text)
            if text and not text.endswith("\n"):
                out.write("\n")
        if error_message:
            out.write(f"ERROR: {error_message}\n")
    return final_log


def build_log_snippet(text: str, lines: int = DEFAULT_SNIPPET_LINES, redact_prefix: str = DEFAULT_REDACT_PREFIX) -> str:
    """Last `lines` lines of a log with workspace paths replaced by a placeholder.

    The result is plain text; JSON escaping happens when the status message is encoded.
    """
    tail = text.splitlines()[-lines:] if lines > 0 else []
    snippet = "\n".join(tail)
    prefix = redact_prefix.rstrip("/")
    if prefix:
        snippet = re.sub(re.escape(prefix) + r"(?:/\S*)?", PROJECT_PATH_PLACEHOLDER, snippet)
    return snippet


class FailureHandler:
    def __init__(self, reporter: StatusReporter, uploader: ArtifactUploader, clock: Callable[[], float] = time.time):
        self.reporter = reporter
        self.uploader = uploader
        self.clock = clock

    def handle(self, job: JobConfig, build: Build, workspace: WorkspaceManager, error: BaseException) -> StatusMessage:
        """Uploads the combined log and sends the terminal 'failed' status. Runs once per build."""
        error_message = str(error) or type(error).__name__
        logger.error(f"Build {job.build_id} failed: {error_message}")
        self.reporter.report(StatusMessage.log_update(job.build_id, job.user_id, PREPARING_LOGS_MESSAGE))

        log_url: Optional[str] = None
        final_log: Optional[Path] = None
        snippet = build_log_snippet(error_message, lines=job.snippet_lines, redact_prefix=job.redact_prefix)
        try:
            final_log = combine_logs(workspace.install_log, workspace.build_log, workspace.final_log, error_message)
            snippet = build_log_snippet(final_log.read_text(encoding="utf-8", errors="replace"),
                                        lines=job.snippet_lines, redact_prefix=job.redact_prefix)
        except OSError as e:
            logger.error(f"Could not assemble failure log for build {job.build_id}: {e}")

        if final_log is not None:
            try:
                log_url = self.uploader.upload_log(job, final_log)
                logger.info(f"Uploaded failure log to {log_url}")
            except (UploadError, OSError) as e:
                logger.error(f"Could not upload failure log for build {job.build_id}: {e}")

        build.log_url = log_url
        build.mark_failed(self.clock(), error_message, getattr(error, "step", None))
        message = StatusMessage.failed(
            job.build_id, job.user_id,
            duration_seconds=build.duration_seconds(),
            log_url=log_url,
            log_snippet=snippet,
            ci_provider=job.ci_provider,
        )
        self.reporter.report(message)
        return message
