from pathlib import Path
from typing import Optional


class BuildFailure(Exception):
    """A required pipeline step failed. Aborts the build and triggers failure handling."""
    step = "build"

    def __init__(self, message: str, log_path: Optional[Path] = None):
        super().__init__(message)
        self.log_path = log_path


class ArchiveFetchError(BuildFailure):
    step = "fetch"


class SigningError(BuildFailure):
    step = "signing"


class StepCommandError(BuildFailure):
    """A toolchain command exited non-zero (or could not be started)."""

    def __init__(self, message: str, returncode: Optional[int] = None, log_path: Optional[Path] = None):
        super().__init__(message, log_path=log_path)
        self.returncode = returncode


class DependencyInstallError(StepCommandError):
    step = "install"


class CompilationError(StepCommandError):
    step = "compile"


class ArtifactNotFoundError(BuildFailure):
    step = "locate"


class UploadError(BuildFailure):
    step = "upload"
