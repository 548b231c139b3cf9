import json

import pytest

from cordforge_engine.exceptions import SigningError
from cordforge_engine.job import SigningCredentials
from cordforge_engine.signing import SigningConfigurator

from conftest import KEYSTORE_URL


def test_debug_build_writes_nothing(make_job, fetcher, project_dir):
    assert SigningConfigurator(fetcher).configure(make_job("debug-apk"), project_dir) is None
    assert not (project_dir / "build.json").exists()
    assert not (project_dir / "release.jks").exists()


@pytest.mark.parametrize("build_type,package_type", [
    ("release-apk", "apk"),
    ("release-aab", "bundle"),
])
def test_release_build_config(make_job, fetcher, remote, project_dir, build_type, package_type):
    config_path = SigningConfigurator(fetcher).configure(make_job(build_type), project_dir)
    assert config_path == project_dir / "build.json"
    assert json.loads(config_path.read_text()) == {
        "android": {
            "release": {
                "keystore": "release.jks",
                "storePassword": "store-pass",
                "alias": "upload",
                "password": "key-pass",
                "packageType": package_type,
            }
        }
    }
    assert (project_dir / "release.jks").read_bytes() == remote.keystore


def test_passwords_with_quotes_stay_valid_json(make_job, fetcher, project_dir):
    job = make_job("release-apk")
    signing = SigningCredentials(job.signing.keystore_url, 'pa"ss\\word', "al ias", "k")
    job = make_job("release-apk", signing=signing)
    config_path = SigningConfigurator(fetcher).configure(job, project_dir)
    assert json.loads(config_path.read_text())["android"]["release"]["storePassword"] == 'pa"ss\\word'


def test_keystore_download_failure_is_fatal(make_job, fetcher, project_dir):
    signing = SigningCredentials("https://storage.example.com/keys/missing.jks", "a", "b", "c")
    with pytest.raises(SigningError):
        SigningConfigurator(fetcher).configure(make_job("release-aab", signing=signing), project_dir)
    assert not (project_dir / "build.json").exists()


def test_missing_signing_values_are_fatal(make_job, fetcher, remote, project_dir):
    signing = SigningCredentials(KEYSTORE_URL, "store-pass", None, "")
    with pytest.raises(SigningError) as excinfo:
        SigningConfigurator(fetcher).configure(make_job("release-apk", signing=signing), project_dir)
    assert "key_alias, key_password" in str(excinfo.value)
    assert not (project_dir / "release.jks").exists()
    assert not (project_dir / "build.json").exists()
