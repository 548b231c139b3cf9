from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from enum import Enum
import json

from .job import BuildType

class BuildJobStatus(Enum):
    LOG_UPDATE = "log_update" # Progress message, not a lifecycle state
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class BuildState(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BuildState.COMPLETE, BuildState.FAILED)


# Dataclass field -> webhook JSON key
_WIRE_KEYS = {
    "build_id": "buildId",
    "user_id": "userId",
    "status": "status",
    "message": "message",
    "ci_provider": "ciProvider",
    "run_id": "runId",
    "duration_seconds": "durationSeconds",
    "download_url": "downloadUrl",
    "log_url": "logUrl",
    "log_snippet": "logSnippet",
}


@dataclass(frozen=True)
class StatusMessage:
    build_id: str
    user_id: str
    status: BuildJobStatus
    message: Optional[str] = None
    ci_provider: Optional[str] = None
    run_id: Optional[str] = None
    duration_seconds: Optional[int] = None
    download_url: Optional[str] = None
    log_url: Optional[str] = None
    log_snippet: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        payload = {}
        for attr, key in _WIRE_KEYS.items():
            val = getattr(self, attr)
            if val is None:
                continue
            if isinstance(val, BuildJobStatus):
                val = val.value
            elif attr == "duration_seconds":
                val = str(val) # The webhook contract carries durations as strings
            payload[key] = val
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def log_update(cls, build_id: str, user_id: str, message: str) -> 'StatusMessage':
        return cls(build_id=build_id, user_id=user_id, status=BuildJobStatus.LOG_UPDATE, message=message)

    @classmethod
    def in_progress(cls, build_id: str, user_id: str, ci_provider: str, run_id: Optional[str]) -> 'StatusMessage':
        return cls(build_id=build_id, user_id=user_id, status=BuildJobStatus.IN_PROGRESS,
                   ci_provider=ci_provider, run_id=run_id or "")

    @classmethod
    def complete(cls, build_id: str, user_id: str, duration_seconds: int,
                 download_url: str, ci_provider: str) -> 'StatusMessage':
        return cls(build_id=build_id, user_id=user_id, status=BuildJobStatus.COMPLETE,
                   duration_seconds=duration_seconds, download_url=download_url, ci_provider=ci_provider)

    @classmethod
    def failed(cls, build_id: str, user_id: str, duration_seconds: int, log_url: Optional[str],
               log_snippet: str, ci_provider: str) -> 'StatusMessage':
        return cls(build_id=build_id, user_id=user_id, status=BuildJobStatus.FAILED,
                   duration_seconds=duration_seconds, log_url=log_url, log_snippet=log_snippet,
                   ci_provider=ci_provider)


@dataclass
class Build:
    build_id: str
    user_id: str
    build_type: BuildType
    start_time: float # Epoch seconds
    state: BuildState = BuildState.PENDING
    end_time: Optional[float] = None
    artifact_path: Optional[str] = None
    download_url: Optional[str] = None
    log_url: Optional[str] = None
    error_message: Optional[str] = None
    failed_step: Optional[str] = None

    def duration_seconds(self, now: Optional[float] = None) -> int:
        end = now if now is not None else self.end_time
        if end is None:
            raise ValueError(f"Build {self.build_id} has no end time to measure duration against.")
        return max(0, int(end - self.start_time))

    def mark_in_progress(self):
        if self.state is not BuildState.PENDING:
            raise RuntimeError(f"Build {self.build_id} cannot start from state {self.state.value}.")
        self.state = BuildState.IN_PROGRESS

    def mark_complete(self, end_time: float, download_url: str):
        self._finish(BuildState.COMPLETE, end_time)
        self.download_url = download_url

    def mark_failed(self, end_time: float, error_message: str, failed_step: Optional[str] = None):
        self._finish(BuildState.FAILED, end_time)
        self.error_message = error_message
        self.failed_step = failed_step

    def _finish(self, state: BuildState, end_time: float):
        if self.state.is_terminal:
            raise RuntimeError(f"Build {self.build_id} already finished with state {self.state.value}.")
        self.state = state
        self.end_time = end_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "build_id": self.build_id,
            "user_id": self.user_id,
            "build_type": self.build_type.value,
            "state": self.state.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "artifact_path": self.artifact_path,
            "download_url": self.download_url,
            "log_url": self.log_url,
            "error_message": self.error_message,
            "failed_step": self.failed_step,
        }
