import asyncio
import datetime
import json
import logging
import math
from typing import Any, Optional, Union

import aiohttp
from pydantic import BaseModel, StrictFloat, StrictInt, ValidationError

from pulseutils.app import MeasurementResult, UploadStatus, UploadTaskState
from pulseutils.errors import (MalformedResponse, MissingResultField, NetworkError, NoFileProduced, PulseScanError,
                              ServerError)

_logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_TIMEOUT_S = 60.0


class PulseAnalysis(BaseModel):
    bpm: Optional[Union[StrictInt, StrictFloat]] = None


class ErrorBody(BaseModel):
    detail: Optional[Any] = None
    message: Optional[str] = None


def decode_json(text):
    try:
        return json.loads(text)
    except ValueError as e:
        raise MalformedResponse(text) from e


def error_detail(text) -> Optional[str]:
    """Pull a human readable message out of an error response body, if there is one."""
    try:
        body = json.loads(text)
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None

    try:
        err = ErrorBody.model_validate(body)
    except ValidationError:
        return None
    if err.detail:
        # FastAPI validation errors come back as a list of dicts
        return err.detail if isinstance(err.detail, str) else json.dumps(err.detail)
    return err.message or None


def parse_pulse_response(status, text, captured_at=None) -> MeasurementResult:
    if not 200 <= status < 300:
        raise ServerError(status, error_detail(text))

    body = decode_json(text)
    if not isinstance(body, dict):
        raise MalformedResponse(text, "Unexpected response shape from server")

    try:
        analysis = PulseAnalysis.model_validate(body)
    except ValidationError as e:
        raise MalformedResponse(text, "Server returned an invalid heart rate") from e
    if analysis.bpm is None:
        raise MissingResultField("bpm")
    if not math.isfinite(analysis.bpm):
        raise MalformedResponse(text, "Server returned an invalid heart rate")

    return MeasurementResult(bpm=int(round(analysis.bpm)),
                             captured_at=captured_at if captured_at is not None else datetime.datetime.now())


async def _read_chunks(path, state, on_progress):
    """Yield the file in chunks for the request body.

    Progress counts bytes handed to aiohttp, not bytes acknowledged by the server, so it can reach 100% while the
    last chunks are still in flight.
    """
    with open(path, "rb") as f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            state.bytes_sent += len(chunk)
            if on_progress is not None:
                on_progress(state.bytes_sent, state.bytes_expected)
            yield chunk


async def post(session, url, timeout_s, **kwargs):
    """POST and return (status, text). Transport failures and timeouts become NetworkError."""
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    try:
        async with session.post(url, timeout=timeout, **kwargs) as resp:
            raw = await resp.read()
            return resp.status, raw.decode("utf-8", errors="replace")
    except asyncio.TimeoutError as e:
        raise NetworkError(e, timed_out=True) from e
    except aiohttp.ClientError as e:
        raise NetworkError(e) from e


class UploadTask:
    """Uploads one recorded video to the analysis backend and parses the heart rate out of the response.

    The task owns the video for the duration of the transfer and releases it whatever the outcome. It is not
    retried: a failed upload means a fresh recording.
    """

    def __init__(self,
                 session: aiohttp.ClientSession,
                 url: str,
                 video,
                 field_name: str = "file",
                 content_type: str = "video/mp4",
                 timeout_s: float = DEFAULT_TIMEOUT_S,
                 on_progress=None) -> None:
        self.session = session
        self.url = url
        self.video = video
        self.field_name = field_name
        self.content_type = content_type
        self.timeout_s = timeout_s
        self.on_progress = on_progress
        self.state = UploadTaskState()

    async def run(self) -> MeasurementResult:
        try:
            result = await self._upload()
        except PulseScanError as e:
            self.state.status = UploadStatus.FAILED
            self.state.error = e
            raise
        except asyncio.CancelledError:
            self.state.status = UploadStatus.FAILED
            raise
        finally:
            self.video.release()

        self.state.status = UploadStatus.SUCCEEDED
        self.state.result = result
        return result

    async def _upload(self) -> MeasurementResult:
        if not self.video.exists() or self.video.size() <= 0:
            raise NoFileProduced()

        self.state.bytes_expected = self.video.size()
        form = aiohttp.FormData()
        form.add_field(self.field_name,
                       _read_chunks(self.video.path, self.state, self.on_progress),
                       filename=self.video.name,
                       content_type=self.content_type)

        self.state.status = UploadStatus.IN_PROGRESS
        _logger.info("Uploading %s (%d bytes) to %s", self.video.name, self.state.bytes_expected, self.url)
        status, text = await post(self.session, self.url, self.timeout_s, data=form)
        _logger.debug("Analysis backend answered %d: %s", status, text[:200])

        return parse_pulse_response(status, text)
