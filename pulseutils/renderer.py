import asyncio
import datetime

import cv2
import numpy as np

from .app import CaptureStatus, MeasurementResult, UploadStatus

_message_action = {
    CaptureStatus.IDLE: "Press 's' to start",
    CaptureStatus.RECORDING: "Press Esc to stop",
    CaptureStatus.STOPPED: "Press 'r' to measure again",
    CaptureStatus.FAILED: "Press 'r' to measure again",
}

_message_state = {
    CaptureStatus.IDLE: "Place your finger on the camera",
    CaptureStatus.RECORDING: "Measuring... Keep your finger still.",
    CaptureStatus.STOPPED: "Measurement completed",
    CaptureStatus.FAILED: "Measurement failed",
}

TIPS = [
    "Remove any case if it covers the flash.",
    "Don't press too hard.",
    "Keep hand and phone as still as possible.",
]


def format_bpm(result) -> str:
    bpm = result.bpm if isinstance(result, MeasurementResult) else result
    return f"{bpm} BPM"


def render_lines(app) -> list:
    """Text rendering of the pulse screen for the given AppState."""
    lines = []
    if app.upload is not None and app.upload.status == UploadStatus.IN_PROGRESS:
        lines.append(f"Analyzing... {app.upload.progress * 100:.0f}% uploaded")
    elif app.status == CaptureStatus.RECORDING:
        lines.append(_message_state[CaptureStatus.RECORDING])
    if app.bpm is not None and app.status != CaptureStatus.RECORDING:
        lines.append("Heart Rate")
        lines.append(format_bpm(app.bpm))
    if app.error and app.status != CaptureStatus.RECORDING:
        lines.append(f"Error: {app.error}")
    if app.status in [CaptureStatus.STOPPED, CaptureStatus.FAILED]:
        lines.append("Measure again")
    return lines


class Renderer():
    """OpenCV preview of the camera while measuring.

    Frames are fed by the recorder through `put_nowait`; `render()` runs as its own task until `close()`.
    """

    def __init__(self, version, image_src_name, app, duration_s, on_stop=None, on_reset=None, sf=1.0):
        self._render_queue = asyncio.Queue(1)
        self._version = version
        self._image_src_name = image_src_name
        self._app = app
        self._duration_s = duration_s
        self._on_stop = on_stop
        self._on_reset = on_reset
        self._sf = sf if sf > 0 else 1.0
        self._closed = False
        self._elapsed_s = 0.0
        self._torch_on = False

    async def render(self):
        render_image = None
        while not self._closed:
            try:
                render_image, self._elapsed_s = self._render_queue.get_nowait()
            except asyncio.QueueEmpty:
                pass

            if render_image is not None:
                render_image_copy = np.copy(render_image)
                self._draw_on_image(render_image_copy)
                cv2.imshow(f"pulsescan {self._version}", render_image_copy)
                k = cv2.waitKey(1)
                if k in [ord('q'), 27] and self._app.status == CaptureStatus.RECORDING:
                    if self._on_stop is not None:
                        self._on_stop()
                elif k in [ord('r')] and self._app.status in [CaptureStatus.STOPPED, CaptureStatus.FAILED]:
                    if self._on_reset is not None:
                        self._on_reset()

            await asyncio.sleep(0.01)

        cv2.destroyAllWindows()

    async def put_nowait(self, image, elapsed_s):
        try:
            if self._sf == 1.0:
                rimage = np.copy(image)
            else:
                rimage = cv2.resize(image, (0, 0), fx=self._sf, fy=self._sf, interpolation=cv2.INTER_AREA)
            self._render_queue.put_nowait((rimage, elapsed_s))
        except asyncio.QueueFull:
            pass

    def set_torch(self, on):
        self._torch_on = bool(on)

    def close(self):
        self._closed = True

    def _draw_on_image(self, render_image):
        # Render the current time (so user knows things aren't frozen)
        now = datetime.datetime.now()
        self._draw_text(f"{now.strftime('%X')}",
                        render_image, (render_image.shape[1] - 70, 15),
                        fg=(0, 128, 0) if now.second % 2 == 0 else (0, 0, 0))

        c = 2
        r = 15
        r = self._draw_text(f"{self._image_src_name} (torch {'on' if self._torch_on else 'off'})", render_image,
                            (c, r))

        # No action is offered while the upload runs, it can't be cancelled
        uploading = self._app.is_busy and self._app.status != CaptureStatus.RECORDING
        if not uploading:
            r = self._draw_text(_message_action[self._app.status], render_image, (c, r), fg=(255, 0, 0))

        if self._app.status == CaptureStatus.RECORDING:
            remaining = max(0.0, self._duration_s - self._elapsed_s)
            r = self._draw_text(f"{remaining:.0f}s left", render_image, (c, r))

        for line in render_lines(self._app) or [_message_state[self._app.status]]:
            r = self._draw_text(line, render_image, (c, r))

    def _draw_text(self, msg, render_image, origin, fs=None, fg=None, bg=None):
        FONT = cv2.FONT_HERSHEY_SIMPLEX
        AA = cv2.LINE_AA
        THICK = 1
        PAD = 3
        fs = 0.45 if fs is None else fs * 0.45
        fg = (0, 0, 0) if fg is None else fg
        bg = (255, 255, 255) if bg is None else bg

        sz, baseline = cv2.getTextSize(msg, FONT, fs, THICK)
        cv2.rectangle(render_image, (origin[0] - PAD, origin[1] - sz[1] - PAD),
                      (origin[0] + sz[0] + PAD, origin[1] + sz[1] - baseline * 2 + PAD),
                      bg,
                      thickness=-1)
        cv2.putText(render_image, msg, origin, FONT, fs, fg, THICK, AA)

        return origin[1] + sz[1] + baseline + 1


class NullRenderer():
    async def render(self):
        pass

    async def put_nowait(self, image, elapsed_s):
        pass

    def set_torch(self, _):
        pass

    def close(self):
        pass
