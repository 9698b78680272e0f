from .app import (AppState, CaptureSession, CaptureStatus, MeasurementResult, PermissionState, RecordingOutcome,
                  UploadStatus, UploadTaskState, VideoHandle)
from .history import HistoryStore, ScanHistory
