import json
from pathlib import Path
from typing import Optional

from .exceptions import ArchiveFetchError, SigningError
from .job import JobConfig, RELEASE_KEYS
from .logger_setup import logger
from .workspace_manager import ArtifactFetcher

KEYSTORE_FILENAME = "release.jks"
BUILD_CONFIG_FILENAME = "build.json"


def build_signing_config(job: JobConfig) -> dict:
    """The Cordova build.json document for a release build."""
    signing = job.signing
    return {
        "android": {
            "release": {
                "keystore": KEYSTORE_FILENAME,
                "storePassword": signing.store_password,
                "alias": signing.key_alias,
                "password": signing.key_password,
                "packageType": job.build_type.package_type,
            }
        }
    }


class SigningConfigurator:
    def __init__(self, fetcher: ArtifactFetcher):
        self.fetcher = fetcher

    def configure(self, job: JobConfig, project_dir: Path) -> Optional[Path]:
        """Fetches the keystore and writes build.json for release builds.

        Returns the build.json path, or None for debug builds (nothing is written).
        """
        if not job.build_type.is_release:
            return None
        missing = job.signing.missing() if job.signing is not None else list(RELEASE_KEYS)
        if missing:
            raise SigningError(f"Release build {job.build_id} is missing signing values: {', '.join(missing)}")

        try:
            self.fetcher.download(job.signing.keystore_url, project_dir / KEYSTORE_FILENAME)
        except ArchiveFetchError as e:
            raise SigningError(f"Could not fetch keystore: {e}") from e

        config_path = project_dir / BUILD_CONFIG_FILENAME
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(build_signing_config(job), f)
            f.write("\n")
        logger.info(f"Wrote release signing config ({job.build_type.package_type}) to {config_path}")
        return config_path
