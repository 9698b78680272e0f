import asyncio
import datetime
import logging

from pulseutils.app import AppState, CaptureSession, CaptureStatus, PermissionState, UploadStatus, VideoHandle
from pulseutils.errors import CaptureFailed, NoFileProduced, PulseScanError
from pulseutils.history import ScanHistory
from pulseutils.renderer import NullRenderer

from .permission import PermissionGate
from .upload import DEFAULT_TIMEOUT_S, UploadTask

_logger = logging.getLogger(__name__)

MEASUREMENT_DURATION_S = 8


def print_alert(title, message):
    print(f"{title}: {message}")


class PulseScanController:
    """Drives one pulse measurement at a time: permission, recording with the torch on, upload, result.

    Every failure ends up in `app.error` plus a single call to `alert`; nothing is retried automatically and a
    new measurement always starts with a fresh recording.
    """

    def __init__(self,
                 capture,
                 http,
                 url,
                 history: ScanHistory,
                 renderer=None,
                 duration_s=MEASUREMENT_DURATION_S,
                 timeout_s=DEFAULT_TIMEOUT_S,
                 quality="480p",
                 alert=print_alert,
                 on_progress=None) -> None:
        self.capture = capture
        self.http = http
        self.url = url
        self.history = history
        self.renderer = renderer if renderer is not None else NullRenderer()
        self.duration_s = duration_s
        self.timeout_s = timeout_s
        self.quality = quality
        self.alert = alert
        self.on_progress = on_progress

        self.gate = PermissionGate(capture)
        self.app = AppState()
        self.result = None
        self.prompt = None
        self.torch_on = False
        self.uploads_started = 0

    async def enter(self) -> PermissionState:
        self.history.mount()
        self.app.permission = await self.gate.enter()
        self.prompt = self.gate.prompt()
        return self.app.permission

    async def grant(self, answer=None) -> PermissionState:
        self.app.permission = await self.gate.grant(answer)
        self.prompt = self.gate.prompt()
        return self.app.permission

    async def start(self) -> bool:
        """Record, upload and show one measurement. Returns False if nothing was started."""
        if self.app.is_busy:
            _logger.info("Measurement already in progress, ignoring start")
            self.alert("Camera Busy", "Please try again.")
            return False

        self.app.permission = self.gate.check_permission()
        if self.app.permission != PermissionState.GRANTED:
            self.prompt = self.gate.prompt()
            _logger.info("Cannot start, camera permission is %s", self.app.permission.name)
            return False

        self.reset()
        self.app.session = CaptureSession()
        self.app.session.begin()
        self._set_torch(True)

        try:
            outcome = await self.capture.record_video(self.duration_s,
                                                      mute=True,
                                                      quality=self.quality,
                                                      on_frame=self.renderer.put_nowait)
        except asyncio.CancelledError:
            self._finish_recording(None, CaptureFailed("Measurement was cancelled"), quiet=True)
            raise
        except PulseScanError as e:
            video = self._finish_recording(None, e)
        except Exception as e:
            _logger.exception("Capture failed")
            video = self._finish_recording(None, CaptureFailed(str(e) or type(e).__name__))
        else:
            video = self._finish_recording(outcome)

        if video is not None:
            await self._upload(video)
        return True

    def stop(self) -> bool:
        if self.app.status != CaptureStatus.RECORDING:
            return False
        _logger.info("Stopping recording early")
        self.capture.stop_recording()
        return True

    def reset(self) -> bool:
        """Back to IDLE ("measure again") with no result and no error."""
        if self.app.is_busy:
            return False
        self.app.session = None
        self.app.upload = None
        self.app.bpm = None
        self.app.error = None
        self.result = None
        return True

    async def analyze_file(self, path) -> bool:
        """Send a video recorded elsewhere through the same upload path. The file is left in place."""
        if self.app.is_busy:
            self.alert("Camera Busy", "Please try again.")
            return False

        self.reset()
        self.app.session = CaptureSession()
        self.app.session.started_at = datetime.datetime.now()
        self.app.session.status = CaptureStatus.STOPPED
        await self._upload(VideoHandle(path, owned=False))
        return True

    def _finish_recording(self, outcome, failure=None, quiet=False):
        # Single way out of RECORDING: the torch goes off whatever happened
        self._set_torch(False)
        session = self.app.session

        if failure is None and outcome.video is None and not outcome.stopped_by_user:
            failure = NoFileProduced()

        if failure is not None:
            session.status = CaptureStatus.FAILED
            if outcome is not None and outcome.video is not None:
                outcome.video.release()
            if not quiet:
                self._fail(failure)
            return None

        session.video = outcome.video
        session.status = CaptureStatus.STOPPED
        if outcome.stopped_by_user:
            _logger.info("Recording stopped by user")
        return session.hand_off()

    async def _upload(self, video):
        task = UploadTask(self.http, self.url, video, timeout_s=self.timeout_s, on_progress=self._progress)
        self.app.upload = task.state
        self.uploads_started += 1
        try:
            result = await task.run()
        except asyncio.CancelledError:
            self.app.session.status = CaptureStatus.FAILED
            raise
        except PulseScanError as e:
            self.app.session.status = CaptureStatus.FAILED
            self._fail(e)
            return

        self.result = result
        self.app.bpm = result.bpm
        self.history.add(result.to_dict())
        _logger.info("Measured %d BPM", result.bpm)

    def _progress(self, sent, expected):
        if self.on_progress is not None:
            self.on_progress(sent, expected)

    def _fail(self, error):
        _logger.warning("Measurement failed: %r", error)
        self.app.error = error.user_message
        self.alert(error.title, error.user_message)

    def _set_torch(self, on):
        self.capture.set_torch(on)
        self.renderer.set_torch(on)
        self.torch_on = bool(on)

    @property
    def uploading(self) -> bool:
        return self.app.upload is not None and self.app.upload.status == UploadStatus.IN_PROGRESS
