from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional
import os
import yaml
from pathlib import Path

ANDROID_OUTPUTS_DIR = Path("platforms") / "android" / "app" / "build" / "outputs"
DEFAULT_WORKSPACE_DIR = "."
DEFAULT_REDACT_PREFIX = "/github/workspace"
DEFAULT_SNIPPET_LINES = 20
WEBHOOK_PATH = "/api/github-webhook"
MASK = "***"


class BuildType(Enum):
    DEBUG_APK = "debug-apk"
    RELEASE_APK = "release-apk"
    RELEASE_AAB = "release-aab"

    @classmethod
    def parse(cls, value: str) -> 'BuildType':
        try:
            return cls(value)
        except ValueError:
            accepted = ", ".join(b.value for b in cls)
            raise ValueError(f"Unknown build type '{value}'. Expected one of: {accepted}")

    @property
    def is_release(self) -> bool:
        return self is not BuildType.DEBUG_APK

    @property
    def package_type(self) -> Optional[str]:
        """Cordova packageType for build.json; None for debug builds."""
        if self is BuildType.RELEASE_AAB:
            return "bundle"
        if self is BuildType.RELEASE_APK:
            return "apk"
        return None

    @property
    def artifact_extension(self) -> str:
        return "aab" if self is BuildType.RELEASE_AAB else "apk"

    @property
    def output_subdir(self) -> Path:
        """Gradle output directory (relative to the Cordova project) holding this type's artifact."""
        if self is BuildType.RELEASE_AAB:
            return ANDROID_OUTPUTS_DIR / "bundle" / "release"
        if self is BuildType.RELEASE_APK:
            return ANDROID_OUTPUTS_DIR / "apk" / "release"
        return ANDROID_OUTPUTS_DIR / "apk" / "debug"


@dataclass(frozen=True)
class StorageConfig:
    access_key_id: str
    secret_access_key: str
    account_id: str
    bucket: str
    public_url: str
    endpoint_url: Optional[str] = None # Defaults to the account's R2 endpoint

    @property
    def endpoint(self) -> str:
        return self.endpoint_url or f"https://{self.account_id}.r2.cloudflarestorage.com"

    def object_url(self, key: str) -> str:
        return f"{self.public_url.rstrip('/')}/{key}"

    def to_dict(self, mask_secrets: bool = True) -> dict:
        return {
            "access_key_id": MASK if mask_secrets else self.access_key_id,
            "secret_access_key": MASK if mask_secrets else self.secret_access_key,
            "account_id": self.account_id,
            "bucket": self.bucket,
            "public_url": self.public_url,
            "endpoint": self.endpoint,
        }


@dataclass(frozen=True)
class SigningCredentials:
    keystore_url: Optional[str]
    store_password: Optional[str]
    key_alias: Optional[str]
    key_password: Optional[str]

    def missing(self) -> List[str]:
        """Setting names (see RELEASE_KEYS) that have no value."""
        values = [self.keystore_url, self.store_password, self.key_alias, self.key_password]
        return [key for key, val in zip(RELEASE_KEYS, values) if not val]

    def to_dict(self, mask_secrets: bool = True) -> dict:
        return {
            "keystore_url": self.keystore_url,
            "store_password": MASK if mask_secrets and self.store_password else self.store_password,
            "key_alias": self.key_alias,
            "key_password": MASK if mask_secrets and self.key_password else self.key_password,
        }


@dataclass(frozen=True)
class Toolchain:
    npm: str = "npm"
    cordova: str = "cordova"
    aws: str = "aws"

    def to_dict(self) -> dict:
        return {"npm": self.npm, "cordova": self.cordova, "aws": self.aws}


# Setting name -> environment variable, as passed to the build container
ENV_KEYS: Dict[str, str] = {
    "build_id": "INPUT_BUILDID",
    "user_id": "INPUT_USERID",
    "project_url": "INPUT_PROJECTURL",
    "build_type": "INPUT_BUILDTYPE",
    "app_base_url": "INPUT_APPBASEURL",
    "webhook_secret": "INPUT_WEBHOOKSECRET",
    "r2_access_key_id": "INPUT_R2ACCESSKEYID",
    "r2_secret_access_key": "INPUT_R2SECRETACCESSKEY",
    "r2_account_id": "INPUT_R2ACCOUNTID",
    "r2_bucket": "INPUT_R2BUCKETNAME",
    "r2_public_url": "INPUT_R2PUBLICURL",
    "r2_endpoint_url": "CORDFORGE_R2_ENDPOINT",
    "keystore_url": "INPUT_KEYSTOREURL",
    "keystore_password": "INPUT_KEYSTOREPASSWORD",
    "key_alias": "INPUT_KEYALIAS",
    "key_password": "INPUT_KEYPASSWORD",
    "run_id": "GITHUB_RUN_ID",
    "workspace_dir": "CORDFORGE_WORKSPACE",
}

REQUIRED_KEYS: List[str] = [
    "build_id", "user_id", "project_url", "build_type", "app_base_url", "webhook_secret",
    "r2_access_key_id", "r2_secret_access_key", "r2_account_id", "r2_bucket", "r2_public_url",
]
RELEASE_KEYS: List[str] = ["keystore_url", "keystore_password", "key_alias", "key_password"]
# Passed through verbatim; surrounding whitespace can be part of the value
SECRET_KEYS = {"webhook_secret", "r2_access_key_id", "r2_secret_access_key", "keystore_password", "key_password"}


@dataclass(frozen=True)
class JobConfig:
    build_id: str
    user_id: str
    project_url: str
    build_type: BuildType
    app_base_url: str
    webhook_secret: str
    storage: StorageConfig
    signing: Optional[SigningCredentials] = None
    ci_provider: str = "github"
    run_id: Optional[str] = None
    workspace_dir: Path = field(default_factory=lambda: Path(DEFAULT_WORKSPACE_DIR))
    redact_prefix: str = DEFAULT_REDACT_PREFIX
    snippet_lines: int = DEFAULT_SNIPPET_LINES
    toolchain: Toolchain = field(default_factory=Toolchain)

    @property
    def webhook_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}{WEBHOOK_PATH}"

    def artifact_key(self) -> str:
        filename = f"{self.build_type.value}-{self.build_id}.{self.build_type.artifact_extension}"
        return f"builds/{self.user_id}/{filename}"

    def log_key(self) -> str:
        return f"logs/{self.user_id}/{self.build_id}.log"

    def to_dict(self, mask_secrets: bool = True) -> dict:
        return {
            "build_id": self.build_id,
            "user_id": self.user_id,
            "project_url": self.project_url,
            "build_type": self.build_type.value,
            "app_base_url": self.app_base_url,
            "webhook_url": self.webhook_url,
            "webhook_secret": MASK if mask_secrets else self.webhook_secret,
            "storage": self.storage.to_dict(mask_secrets),
            "signing": self.signing.to_dict(mask_secrets) if self.signing else None,
            "ci_provider": self.ci_provider,
            "run_id": self.run_id,
            "workspace_dir": str(self.workspace_dir),
            "redact_prefix": self.redact_prefix,
            "snippet_lines": self.snippet_lines,
            "toolchain": self.toolchain.to_dict(),
        }

    @classmethod
    def from_settings(cls, settings: Mapping[str, object], source: str = "settings") -> 'JobConfig':
        """Builds a config from a flat mapping of setting names (see ENV_KEYS)."""
        def value(key: str) -> Optional[str]:
            raw = settings.get(key)
            if raw is None:
                return None
            text = str(raw)
            if not text.strip():
                return None
            return text if key in SECRET_KEYS else text.strip()

        missing = [key for key in REQUIRED_KEYS if value(key) is None]
        if missing:
            raise ValueError(f"Build configuration from {source} is missing required values: {', '.join(missing)}")

        build_type = BuildType.parse(value("build_type"))

        # Missing signing values are rejected by SigningConfigurator during the build
        signing: Optional[SigningCredentials] = None
        if build_type.is_release:
            signing = SigningCredentials(
                keystore_url=value("keystore_url"),
                store_password=value("keystore_password"),
                key_alias=value("key_alias"),
                key_password=value("key_password"),
            )

        snippet_lines_val = settings.get("snippet_lines", DEFAULT_SNIPPET_LINES)
        try:
            snippet_lines = int(snippet_lines_val)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid 'snippet_lines' value '{snippet_lines_val}' in {source}. It must be an integer.")
        if snippet_lines < 1:
            raise ValueError(f"'snippet_lines' in {source} must be at least 1, got {snippet_lines}.")

        toolchain_data = settings.get("toolchain") or {}
        if not isinstance(toolchain_data, Mapping):
            raise ValueError(f"'toolchain' in {source} must be a mapping of executable names. Found type: {type(toolchain_data)}")

        return cls(
            build_id=value("build_id"),
            user_id=value("user_id"),
            project_url=value("project_url"),
            build_type=build_type,
            app_base_url=value("app_base_url"),
            webhook_secret=value("webhook_secret"),
            storage=StorageConfig(
                access_key_id=value("r2_access_key_id"),
                secret_access_key=value("r2_secret_access_key"),
                account_id=value("r2_account_id"),
                bucket=value("r2_bucket"),
                public_url=value("r2_public_url"),
                endpoint_url=value("r2_endpoint_url"),
            ),
            signing=signing,
            ci_provider=value("ci_provider") or "github",
            run_id=value("run_id"),
            workspace_dir=Path(value("workspace_dir") or DEFAULT_WORKSPACE_DIR),
            redact_prefix=value("redact_prefix") or DEFAULT_REDACT_PREFIX,
            snippet_lines=snippet_lines,
            toolchain=Toolchain(**{k: str(v) for k, v in toolchain_data.items() if k in ("npm", "cordova", "aws")}),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'JobConfig':
        return cls.from_settings(settings_from_env(environ), source="environment")

    @classmethod
    def from_yaml(cls, file_path: Path, raw_yaml_content: str) -> 'JobConfig':
        return cls.from_settings(settings_from_yaml(file_path, raw_yaml_content), source=file_path.name)

    @classmethod
    def from_sources(cls, config_file: Optional[Path] = None,
                     environ: Optional[Mapping[str, str]] = None,
                     overrides: Optional[Mapping[str, object]] = None) -> 'JobConfig':
        """Layers CLI overrides over environment over the YAML file."""
        settings: Dict[str, object] = {}
        source = "environment"
        if config_file:
            settings.update(settings_from_yaml(config_file, config_file.read_text(encoding="utf-8")))
            source = f"{config_file.name} and environment"
        settings.update(settings_from_env(environ))
        if overrides:
            settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_settings(settings, source=source)


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = os.environ if environ is None else environ
    return {key: env[var] for key, var in ENV_KEYS.items() if env.get(var)}


def settings_from_yaml(file_path: Path, raw_yaml_content: str) -> Dict[str, object]:
    config = yaml.safe_load(raw_yaml_content) or {}
    if not isinstance(config, dict) or not isinstance(config.get('build', {}), dict):
        raise ValueError(f"Build config {file_path.name} must be a mapping with settings under the 'build' key.")
    build_data = config.get('build', {})
    unknown = sorted(set(build_data) - set(ENV_KEYS) - {"ci_provider", "redact_prefix", "snippet_lines", "toolchain"})
    if unknown:
        raise ValueError(f"Build config {file_path.name} has unknown settings: {', '.join(unknown)}")
    return dict(build_data)
