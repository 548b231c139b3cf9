"""
Shared fixtures for the cordforge test suite.

External collaborators are replaced at their seams: HTTP through
httpx.MockTransport, the npm/cordova CLIs through small shell scripts, and
object storage through a client that copies into a local directory.
"""

import io
import json
import shutil
import stat
import zipfile
from pathlib import Path
from typing import Dict, List

import httpx
import pytest

from cordforge_engine.artifact_manager import ArtifactUploader, ObjectStorageClient
from cordforge_engine.exceptions import UploadError
from cordforge_engine.job import BuildType, JobConfig, StorageConfig, SigningCredentials, Toolchain
from cordforge_engine.status_reporter import StatusReporter
from cordforge_engine.workspace_manager import ArtifactFetcher

PROJECT_URL = "https://storage.example.com/projects/proj-1.zip?X-Amz-Signature=abc"
KEYSTORE_URL = "https://storage.example.com/keys/user-1.jks"
APP_BASE_URL = "https://app.example.com"
PUBLIC_URL = "https://cdn.example.com"


# ============================================================================
# Job configuration
# ============================================================================


@pytest.fixture
def workspace_dir(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def make_job(workspace_dir, tmp_path):
    """Factory for JobConfig objects pointing at the test workspace and fake toolchain."""

    def _make(build_type: str = "debug-apk", **overrides) -> JobConfig:
        bt = BuildType(build_type)
        signing = None
        if bt.is_release:
            signing = SigningCredentials(
                keystore_url=KEYSTORE_URL,
                store_password="store-pass",
                key_alias="upload",
                key_password="key-pass",
            )
        params = dict(
            build_id="build-42",
            user_id="user-7",
            project_url=PROJECT_URL,
            build_type=bt,
            app_base_url=APP_BASE_URL,
            webhook_secret="s3cret",
            storage=StorageConfig(
                access_key_id="AKIA",
                secret_access_key="SECRET",
                account_id="acct",
                bucket="apps",
                public_url=PUBLIC_URL,
            ),
            signing=signing,
            run_id="9001",
            workspace_dir=workspace_dir,
            redact_prefix=str(workspace_dir),
            toolchain=Toolchain(
                npm=str(tmp_path / "bin" / "npm"),
                cordova=str(tmp_path / "bin" / "cordova"),
            ),
        )
        params.update(overrides)
        return JobConfig(**params)

    return _make


@pytest.fixture
def base_env() -> Dict[str, str]:
    return {
        "INPUT_BUILDID": "build-42",
        "INPUT_USERID": "user-7",
        "INPUT_PROJECTURL": PROJECT_URL,
        "INPUT_BUILDTYPE": "debug-apk",
        "INPUT_APPBASEURL": APP_BASE_URL,
        "INPUT_WEBHOOKSECRET": "s3cret",
        "INPUT_R2ACCESSKEYID": "AKIA",
        "INPUT_R2SECRETACCESSKEY": "SECRET",
        "INPUT_R2ACCOUNTID": "acct",
        "INPUT_R2BUCKETNAME": "apps",
        "INPUT_R2PUBLICURL": PUBLIC_URL,
        "GITHUB_RUN_ID": "9001",
    }


# ============================================================================
# HTTP
# ============================================================================


def make_project_zip(files: Dict[str, str] = None) -> bytes:
    files = files or {
        "package.json": json.dumps({"name": "demo-app", "version": "1.0.0"}),
        "config.xml": "<widget id=\"com.example.demo\"/>",
        "www/index.html": "<html></html>",
    }
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


class FakeRemote:
    """Serves the project archive and keystore, and records webhook posts."""

    def __init__(self):
        self.project_zip = make_project_zip()
        self.keystore = b"\xfe\xed\xfe\xed fake keystore"
        self.webhook_status = 200
        self.webhook_error = None
        self.project_status = 200
        self.posts: List[dict] = []
        self.post_headers: List[httpx.Headers] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/api/github-webhook":
            self.posts.append(json.loads(request.content))
            self.post_headers.append(request.headers)
            if self.webhook_error is not None:
                raise self.webhook_error
            return httpx.Response(self.webhook_status, json={"ok": True})
        if request.url.path == "/projects/proj-1.zip":
            if self.project_status != 200:
                return httpx.Response(self.project_status, text="denied")
            return httpx.Response(200, content=self.project_zip)
        if request.url.path == "/keys/user-1.jks":
            return httpx.Response(200, content=self.keystore)
        return httpx.Response(404, text="not found")

    @property
    def statuses(self) -> List[str]:
        return [p["status"] for p in self.posts]

    @property
    def messages(self) -> List[str]:
        return [p["message"] for p in self.posts if p["status"] == "log_update"]


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def http_client(remote):
    client = httpx.Client(transport=httpx.MockTransport(remote.handler), follow_redirects=True)
    yield client
    client.close()


@pytest.fixture
def reporter(http_client, make_job):
    job = make_job()
    return StatusReporter(job.webhook_url, job.webhook_secret, client=http_client)


@pytest.fixture
def fetcher(http_client):
    return ArtifactFetcher(client=http_client)


# ============================================================================
# Object storage
# ============================================================================


class LocalStorageClient(ObjectStorageClient):
    """Copies objects into a local directory instead of calling the aws CLI."""

    def __init__(self, storage: StorageConfig, bucket_dir: Path, fail: bool = False):
        super().__init__(storage)
        self.bucket_dir = bucket_dir
        self.fail = fail
        self.keys: List[str] = []

    def copy(self, local_path: Path, key: str) -> str:
        if self.fail:
            raise UploadError(f"Upload of {local_path.name} to {key} failed with code 1: access denied")
        dest = self.bucket_dir / key
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(local_path, dest)
        self.keys.append(key)
        return key


@pytest.fixture
def bucket_dir(tmp_path):
    path = tmp_path / "bucket"
    path.mkdir()
    return path


@pytest.fixture
def storage_client(make_job, bucket_dir):
    return LocalStorageClient(make_job().storage, bucket_dir)


@pytest.fixture
def uploader(storage_client):
    return ArtifactUploader(storage_client)


# ============================================================================
# Toolchain
# ============================================================================


FAKE_NPM_OK = """#!/bin/sh
echo "added 120 packages in 3s"
"""

FAKE_NPM_FAIL = """#!/bin/sh
echo "npm ERR! code E404" >&2
echo "npm ERR! 404 Not Found - GET https://registry.npmjs.org/not-a-package"
exit 1
"""

# Writes the artifact Gradle would produce for the requested build flavour.
FAKE_CORDOVA_OK = """#!/bin/sh
OUT=platforms/android/app/build/outputs
if [ "$1" = "platform" ]; then
  echo "Adding android project..."
  exit 0
fi
case "$*" in
  *--debug*)
    mkdir -p "$OUT/apk/debug"
    echo "apk" > "$OUT/apk/debug/app-debug.apk"
    echo "Built the following apk(s): $PWD/$OUT/apk/debug/app-debug.apk"
    ;;
  *--release*)
    if grep -q '"packageType": "bundle"' build.json; then
      mkdir -p "$OUT/bundle/release"
      echo "aab" > "$OUT/bundle/release/app-release.aab"
      echo "Built the following bundle(s): $PWD/$OUT/bundle/release/app-release.aab"
    else
      mkdir -p "$OUT/apk/release"
      echo "apk" > "$OUT/apk/release/app-release.apk"
      echo "Built the following apk(s): $PWD/$OUT/apk/release/app-release.apk"
    fi
    ;;
esac
"""

FAKE_CORDOVA_FAIL = """#!/bin/sh
if [ "$1" = "platform" ]; then
  echo "Adding android project..."
  exit 0
fi
echo "FAILURE: Build failed with an exception."
echo "* What went wrong: Execution failed for task ':app:bundleRelease'."
echo "> Keystore file '$PWD/release.jks' \\"corrupt\\""
printf '%s\\n' 'at C:\\gradle\\cache'
exit 1
"""

# Build "succeeds" without producing anything.
FAKE_CORDOVA_NO_OUTPUT = """#!/bin/sh
echo "BUILD SUCCESSFUL in 1s"
"""


def write_script(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_toolchain(tmp_path):
    """Installs fake npm/cordova scripts; call with alternative bodies to simulate failures."""

    def _install(npm: str = FAKE_NPM_OK, cordova: str = FAKE_CORDOVA_OK):
        bin_dir = tmp_path / "bin"
        write_script(bin_dir / "npm", npm)
        write_script(bin_dir / "cordova", cordova)
        return bin_dir

    return _install


@pytest.fixture
def project_dir(workspace_dir):
    path = workspace_dir / "cordova-project"
    path.mkdir()
    return path


class SteppingClock:
    """Returns the given instants in order, then repeats the last one."""

    def __init__(self, *instants: float):
        self.instants = list(instants)

    def __call__(self) -> float:
        if len(self.instants) > 1:
            return self.instants.pop(0)
        return self.instants[0]
