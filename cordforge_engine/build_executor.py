import os
import subprocess
from pathlib import Path
from typing import List, Optional, Type

from .exceptions import CompilationError, DependencyInstallError, StepCommandError
from .job import BuildType, JobConfig, Toolchain
from .logger_setup import logger

BUILD_START_MARKER = "--- Preparing Android Platform & Building ---"
BUILD_END_MARKER = "--- Cordova Build Finished ---"
GRADLE_ARGS = ["--", "--gradleArg=--no-daemon"]


class BuildRunner:
    """Runs npm and the Cordova CLI inside the extracted project."""

    def __init__(self, toolchain: Optional[Toolchain] = None, env: Optional[dict] = None):
        self.toolchain = toolchain or Toolchain()
        self.env = env

    def install_command(self) -> List[str]:
        return [self.toolchain.npm, "install"]

    def platform_command(self) -> List[str]:
        return [self.toolchain.cordova, "platform", "add", "android"]

    def build_command(self, build_type: BuildType, build_config: Optional[Path] = None) -> List[str]:
        if build_type is BuildType.DEBUG_APK:
            return [self.toolchain.cordova, "build", "android", "--debug"] + GRADLE_ARGS
        config_name = build_config.name if build_config else "build.json"
        return [self.toolchain.cordova, "build", "android", "--release", f"--buildConfig={config_name}"] + GRADLE_ARGS

    def install_dependencies(self, project_dir: Path, log_path: Path):
        with open(log_path, "w", encoding="utf-8", errors="replace") as log:
            self._run_logged(self.install_command(), project_dir, log, DependencyInstallError, log_path)
        logger.info("Dependencies installed.")

    def compile(self, job: JobConfig, project_dir: Path, log_path: Path, build_config: Optional[Path] = None):
        with open(log_path, "w", encoding="utf-8", errors="replace") as log:
            log.write(BUILD_START_MARKER + "\n")
            log.flush()
            self._run_logged(self.platform_command(), project_dir, log, CompilationError, log_path)
            self._run_logged(self.build_command(job.build_type, build_config), project_dir, log, CompilationError, log_path)
            log.write(BUILD_END_MARKER + "\n")
        logger.info(f"Cordova {job.build_type.value} build finished.")

    def _run_logged(self, command: List[str], cwd: Path, log, error_cls: Type[StepCommandError], log_path: Path):
        """Runs one command, streaming stdout and stderr into the open log file."""
        display = " ".join(command)
        logger.info(f"Running '{display}' in {cwd}")
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True, encoding='utf-8', errors='replace', env=env
            )
        except FileNotFoundError as e:
            log.write(f"ERROR: could not start '{display}': {e}\n")
            raise error_cls(f"'{command[0]}' is not installed or not on PATH", log_path=log_path) from e

        with process:
            for line in process.stdout:
                log.write(line)
            process.wait()
        log.flush()

        if process.returncode != 0:
            raise error_cls(f"'{display}' exited with code {process.returncode}",
                            returncode=process.returncode, log_path=log_path)
