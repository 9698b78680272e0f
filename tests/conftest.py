from __future__ import annotations

import asyncio
import contextlib

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from pulseutils.app import PermissionState, RecordingOutcome, VideoHandle
from pulseutils.history import HistoryStore


class FakeCapture:
    """In-memory stand-in for the camera: records 'clip.mp4' when asked, honours stop and max duration."""

    def __init__(self, folder, permission=PermissionState.GRANTED, answer=PermissionState.GRANTED, fail=None,
                 payload=b"\x00\x00\x00\x18ftypmp42" + b"x" * 4096, produce_on_stop=True, permissions=None) -> None:
        self.permissions = permissions
        self.folder = folder
        self.permission = permission
        self.answer = answer
        self.fail = fail
        self.payload = payload
        self.produce_on_stop = produce_on_stop
        self.torch_on = False
        self.torch_while_recording = None
        self.recordings = 0
        self.permission_requests = 0
        self.recording = False
        self.videos = []
        self._stopped = None

    def check_permission(self):
        if self.permissions is not None:
            return self.permissions.check()
        return self.permission

    async def request_permission(self, answer=None):
        self.permission_requests += 1
        if self.permissions is not None:
            return await self.permissions.request(answer)
        self.permission = self.answer
        return self.permission

    def set_torch(self, on):
        self.torch_on = bool(on)

    def stop_recording(self):
        if self._stopped is not None:
            self._stopped.set()

    async def record_video(self, max_duration_s, mute=True, quality="480p", on_frame=None):
        self.recordings += 1
        self.recording = True
        self.torch_while_recording = self.torch_on
        self._stopped = asyncio.Event()
        try:
            if self.fail is not None:
                await asyncio.sleep(0)
                raise self.fail
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=max_duration_s)
                stopped_by_user = True
            except asyncio.TimeoutError:
                stopped_by_user = False
        finally:
            self.recording = False

        if stopped_by_user and not self.produce_on_stop:
            return RecordingOutcome(None, stopped_by_user=True)

        path = self.folder / f"clip{self.recordings}.mp4"
        path.write_bytes(self.payload)
        video = VideoHandle(path)
        self.videos.append(video)
        return RecordingOutcome(video, stopped_by_user=stopped_by_user)


@contextlib.asynccontextmanager
async def fake_backend(handler, path="/analyze_ppg_video"):
    app = web.Application()
    app.router.add_post(path, handler)
    server = TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url(path))
    finally:
        await server.close()


@pytest.fixture
def make_capture(tmp_path):
    def _make(**kwargs):
        return FakeCapture(tmp_path, **kwargs)

    return _make


@pytest.fixture
def backend():
    return fake_backend


@pytest.fixture
def store(tmp_path):
    return HistoryStore(str(tmp_path / "history.json"))


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "ppg_video.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"v" * 200_000)
    return path
