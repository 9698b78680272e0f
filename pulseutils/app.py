import datetime
import enum
import os
from dataclasses import dataclass
from typing import Optional


class PermissionState(enum.Enum):
    UNDETERMINED = 0
    GRANTED = 1
    DENIED_RETRIABLE = 2
    DENIED_PERMANENTLY = 3


class CaptureStatus(enum.Enum):
    IDLE = 0
    RECORDING = 1
    STOPPED = 2
    FAILED = 3


class UploadStatus(enum.Enum):
    PENDING = 0
    IN_PROGRESS = 1
    SUCCEEDED = 2
    FAILED = 3


class VideoHandle:
    """A recorded video on local disk.

    Only one owner holds a handle at a time. `release()` deletes the file unless the handle was created with
    `owned=False` (e.g. a video the user pointed us at).
    """

    def __init__(self, path, owned=True) -> None:
        self.path = str(path)
        self.owned = owned
        self.released = False

    @property
    def name(self):
        return os.path.basename(self.path) or "ppg_video.mp4"

    def exists(self) -> bool:
        return not self.released and os.path.isfile(self.path)

    def size(self) -> int:
        return os.path.getsize(self.path) if self.exists() else 0

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self.owned and os.path.isfile(self.path):
            os.remove(self.path)

    def __repr__(self) -> str:
        return f"VideoHandle({self.path!r})"


@dataclass(frozen=True)
class RecordingOutcome:
    video: Optional[VideoHandle]
    stopped_by_user: bool = False


@dataclass(frozen=True)
class MeasurementResult:
    bpm: int
    captured_at: datetime.datetime

    def to_dict(self) -> dict:
        return {"bpm": self.bpm, "when": self.captured_at.isoformat()}


class CaptureSession:
    def __init__(self) -> None:
        self.status = CaptureStatus.IDLE
        self.started_at = None
        self.video = None

    def begin(self):
        self.status = CaptureStatus.RECORDING
        self.started_at = datetime.datetime.now()

    def hand_off(self) -> Optional[VideoHandle]:
        video, self.video = self.video, None
        return video


class UploadTaskState:
    def __init__(self) -> None:
        self.status = UploadStatus.PENDING
        self.bytes_sent = 0
        self.bytes_expected = 0
        self.result = None
        self.error = None

    @property
    def progress(self) -> float:
        if self.bytes_expected <= 0:
            return 0.0
        return min(1.0, self.bytes_sent / self.bytes_expected)


class AppState:
    def __init__(self) -> None:
        self.permission = PermissionState.UNDETERMINED
        self.session = None
        self.upload = None
        self.bpm = None
        self.error = None

    @property
    def status(self) -> CaptureStatus:
        return self.session.status if self.session is not None else CaptureStatus.IDLE

    @property
    def is_busy(self) -> bool:
        if self.status == CaptureStatus.RECORDING:
            return True
        return self.upload is not None and self.upload.status in [UploadStatus.PENDING, UploadStatus.IN_PROGRESS]

    def to_dict(self) -> dict:
        return {
            "permission": self.permission.name,
            "status": self.status.name,
            "upload": self.upload.status.name if self.upload is not None else None,
            "progress": round(self.upload.progress, 3) if self.upload is not None else None,
            "bpm": self.bpm,
            "error": self.error,
        }
