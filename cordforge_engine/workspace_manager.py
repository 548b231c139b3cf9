import shutil
import zipfile
from pathlib import Path
from typing import Optional
import httpx

from .exceptions import ArchiveFetchError
from .logger_setup import logger

ARCHIVE_FILENAME = "cordovaProject.zip"
PROJECT_DIRNAME = "cordova-project"
INSTALL_LOG_FILENAME = "npm_install_log.txt"
BUILD_LOG_FILENAME = "build_log.txt"
FINAL_LOG_FILENAME = "final_log.txt"

DOWNLOAD_CHUNK_SIZE = 64 * 1024

class WorkspaceManager:
    """Fixed file layout of one build's working directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def archive_path(self) -> Path:
        return self.root / ARCHIVE_FILENAME

    @property
    def project_dir(self) -> Path:
        return self.root / PROJECT_DIRNAME

    @property
    def install_log(self) -> Path:
        return self.root / INSTALL_LOG_FILENAME

    @property
    def build_log(self) -> Path:
        return self.root / BUILD_LOG_FILENAME

    @property
    def final_log(self) -> Path:
        return self.root / FINAL_LOG_FILENAME

    def create(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Using workspace: {self.root}")
        return self.root

    def cleanup(self):
        if self.root.exists() and self.root.is_dir():
            try:
                shutil.rmtree(self.root)
                logger.info(f"Cleaned up workspace: {self.root}")
            except OSError as e:
                logger.error(f"Error cleaning up workspace {self.root}: {e}")
        else:
            logger.warning(f"Workspace {self.root} not found or not a directory.")


class ArtifactFetcher:
    """Downloads remote files (project archive, keystore) and unpacks the project."""

    def __init__(self, client: Optional[httpx.Client] = None,
                 timeout: httpx.Timeout = httpx.Timeout(30.0, read=300.0)):
        self.client = client
        self.timeout = timeout

    def download(self, url: str, dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading {_redact_query(url)} to {dest}")
        try:
            if self.client is not None:
                self._stream_to_file(self.client, url, dest)
            else:
                with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                    self._stream_to_file(client, url, dest)
        except httpx.HTTPStatusError as e:
            raise ArchiveFetchError(f"Download of {_redact_query(url)} failed with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ArchiveFetchError(f"Download of {_redact_query(url)} failed: {e}") from e
        except OSError as e:
            raise ArchiveFetchError(f"Could not write download to {dest}: {e}") from e
        return dest

    def _stream_to_file(self, client: httpx.Client, url: str, dest: Path):
        with client.stream("GET", url, follow_redirects=True) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)

    def extract(self, archive: Path, target: Path) -> Path:
        target.mkdir(parents=True, exist_ok=True)
        target_root = target.resolve()
        try:
            with zipfile.ZipFile(archive) as zf:
                for member in zf.namelist():
                    member_path = (target_root / member).resolve()
                    if member_path != target_root and target_root not in member_path.parents:
                        raise ArchiveFetchError(f"Archive member '{member}' would extract outside {target}")
                zf.extractall(target_root)
                _restore_modes(zf, target_root)
        except zipfile.BadZipFile as e:
            raise ArchiveFetchError(f"Project archive {archive} is not a valid zip file: {e}") from e
        except OSError as e:
            raise ArchiveFetchError(f"Could not extract {archive}: {e}") from e
        logger.info(f"Extracted {archive.name} into {target}")
        return target

    def fetch(self, url: str, workspace: WorkspaceManager) -> Path:
        self.download(url, workspace.archive_path)
        return self.extract(workspace.archive_path, workspace.project_dir)


def _redact_query(url: str) -> str:
    # Presigned URLs carry credentials in the query string
    return url.split("?", 1)[0]


def _restore_modes(zf: zipfile.ZipFile, target_root: Path):
    """Applies the Unix permission bits recorded in the archive, as unzip does."""
    for info in zf.infolist():
        mode = (info.external_attr >> 16) & 0o777
        if mode and not info.is_dir():
            (target_root / info.filename).chmod(mode)
