import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass

import cv2

from .app import PermissionState, RecordingOutcome, VideoHandle
from .errors import CaptureFailed, NoFileProduced

_logger = logging.getLogger(__name__)

QUALITY_SIZES = {
    "480p": (640, 480),
    "720p": (1280, 720),
    "1080p": (1920, 1080),
}


class CameraRecorder:
    """Records short clips from an OpenCV camera into temporary mp4 files.

    Stands in for the phone camera: `set_torch` only tracks the requested state because OpenCV has no portable
    flashlight control, and permissions are delegated to whatever `permissions` object is passed in.
    """

    def __init__(self, camera_id, permissions, fps=None, tmp_dir=None) -> None:
        self.camera_id = int(camera_id)
        self.permissions = permissions
        self.fps = fps
        self.tmp_dir = tmp_dir
        self.torch_on = False
        self._stop = False
        self._recording = False

    def check_permission(self) -> PermissionState:
        return self.permissions.check()

    async def request_permission(self, answer=None) -> PermissionState:
        return await self.permissions.request(answer)

    def set_torch(self, on) -> None:
        if bool(on) != self.torch_on:
            _logger.debug("Torch %s", "on" if on else "off")
        self.torch_on = bool(on)

    def stop_recording(self) -> None:
        self._stop = True

    async def record_video(self, max_duration_s, mute=True, quality="480p", on_frame=None) -> RecordingOutcome:
        if self._recording:
            raise CaptureFailed("Another recording in progress")

        self._recording = True
        self._stop = False
        try:
            return await self._record(max_duration_s, quality, on_frame)
        finally:
            self._recording = False

    async def _record(self, max_duration_s, quality, on_frame) -> RecordingOutcome:
        videocap = cv2.VideoCapture(self.camera_id)
        if not videocap.isOpened():
            raise CaptureFailed(f"Could not open camera {self.camera_id}")

        try:
            width, height = QUALITY_SIZES.get(quality, QUALITY_SIZES["480p"])
            videocap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            videocap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            if self.fps is not None:
                videocap.set(cv2.CAP_PROP_FPS, self.fps)
            fps = videocap.get(cv2.CAP_PROP_FPS)
            if fps <= 0:
                fps = 30.0
            frame_duration_s = 1.0 / fps

            fd, path = tempfile.mkstemp(prefix="ppg_", suffix=".mp4", dir=self.tmp_dir)
            os.close(fd)
            video = VideoHandle(path)
            writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"mp4v"), fps, (width, height))
            if not writer.isOpened():
                video.release()
                raise CaptureFailed("Could not open the video writer")

            frames = 0
            start = time.monotonic()
            try:
                while not self._stop:
                    elapsed = time.monotonic() - start
                    if elapsed >= max_duration_s:
                        break
                    await asyncio.sleep(frame_duration_s)
                    if self._stop:
                        break

                    read, frame = videocap.read()
                    if not read or frame is None or frame.size == 0:
                        raise CaptureFailed("Camera read failed")
                    if frame.shape[1] != width or frame.shape[0] != height:
                        frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
                    writer.write(frame)
                    frames += 1

                    if on_frame is not None:
                        await on_frame(frame, elapsed)
            except (Exception, asyncio.CancelledError):
                writer.release()
                video.release()
                raise
            writer.release()
        finally:
            videocap.release()

        _logger.info("Recorded %d frames at %.1f fps into %s", frames, fps, video.path)
        if frames == 0:
            video.release()
            if self._stop:
                return RecordingOutcome(None, stopped_by_user=True)
            raise NoFileProduced()

        return RecordingOutcome(video, stopped_by_user=self._stop)


@dataclass
class PreparedImage:
    data: bytes
    name: str
    content_type: str
    width: int = 0
    height: int = 0


def prepare_image(path, max_width=1600, quality=80) -> PreparedImage:
    """Shrink a photo to `max_width` and re-encode it as JPEG. Falls back to the original bytes if OpenCV can't."""
    name = os.path.basename(path) or "photo.jpg"
    ext = os.path.splitext(name)[1].lower()
    image = cv2.imread(path, cv2.IMREAD_COLOR)
    if image is None:
        _logger.warning("Could not decode %s, uploading it unchanged", path)
        with open(path, "rb") as f:
            data = f.read()
        return PreparedImage(data, name, "image/png" if ext == ".png" else "image/jpeg")

    height, width = image.shape[:2]
    if width > max_width:
        scale = max_width / width
        image = cv2.resize(image, (max_width, int(round(height * scale))), interpolation=cv2.INTER_AREA)
        height, width = image.shape[:2]

    ok, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        _logger.warning("Could not re-encode %s, uploading it unchanged", path)
        with open(path, "rb") as f:
            data = f.read()
        return PreparedImage(data, name, "image/png" if ext == ".png" else "image/jpeg", width, height)

    jpg_name = os.path.splitext(name)[0] + ".jpg"
    return PreparedImage(encoded.tobytes(), jpg_name, "image/jpeg", width, height)
