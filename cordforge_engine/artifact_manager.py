import os
import subprocess
from pathlib import Path
from typing import Optional

from .exceptions import ArtifactNotFoundError, UploadError
from .job import BuildType, JobConfig, StorageConfig
from .logger_setup import logger


class ArtifactLocator:
    def locate(self, project_dir: Path, build_type: BuildType) -> Path:
        """Returns the first artifact of the build type's extension in its output directory.

        Only that one output tree is searched; a debug APK never satisfies a release lookup.
        """
        search_dir = project_dir / build_type.output_subdir
        pattern = f"*.{build_type.artifact_extension}"
        if search_dir.is_dir():
            matches = sorted(p for p in search_dir.rglob(pattern) if p.is_file())
            if matches:
                logger.info(f"Found build artifact: {matches[0]}")
                return matches[0]
        logger.error(f"No {pattern} found under {search_dir}")
        raise ArtifactNotFoundError(f"Build artifact not found in {build_type.output_subdir}")


class ObjectStorageClient:
    """Copies files into the S3-compatible bucket through the aws CLI."""

    def __init__(self, storage: StorageConfig, aws_bin: str = "aws"):
        self.storage = storage
        self.aws_bin = aws_bin

    def copy_command(self, local_path: Path, key: str):
        return [
            self.aws_bin, "s3", "cp", str(local_path),
            f"s3://{self.storage.bucket}/{key}",
            "--endpoint-url", self.storage.endpoint,
        ]

    def copy(self, local_path: Path, key: str) -> str:
        env = os.environ.copy()
        env["AWS_ACCESS_KEY_ID"] = self.storage.access_key_id
        env["AWS_SECRET_ACCESS_KEY"] = self.storage.secret_access_key
        logger.info(f"Uploading {local_path} to s3://{self.storage.bucket}/{key}")
        try:
            result = subprocess.run(self.copy_command(local_path, key), env=env,
                                    capture_output=True, text=True, encoding='utf-8', errors='replace')
        except FileNotFoundError as e:
            raise UploadError(f"'{self.aws_bin}' is not installed or not on PATH") from e
        except OSError as e:
            raise UploadError(f"Could not run '{self.aws_bin}': {e}") from e
        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise UploadError(f"Upload of {local_path.name} to {key} failed with code {result.returncode}: {output}")
        return key


class ArtifactUploader:
    def __init__(self, storage_client: ObjectStorageClient):
        self.storage_client = storage_client

    @property
    def storage(self) -> StorageConfig:
        return self.storage_client.storage

    def upload_artifact(self, job: JobConfig, artifact_path: Path) -> str:
        key = self.storage_client.copy(artifact_path, job.artifact_key())
        return self.storage.object_url(key)

    def upload_log(self, job: JobConfig, log_path: Path) -> str:
        key = self.storage_client.copy(log_path, job.log_key())
        return self.storage.object_url(key)

    @classmethod
    def for_job(cls, job: JobConfig, storage_client: Optional[ObjectStorageClient] = None) -> 'ArtifactUploader':
        return cls(storage_client or ObjectStorageClient(job.storage, aws_bin=job.toolchain.aws))
