from __future__ import annotations

import asyncio

import aiohttp
import cv2
import numpy as np
import pytest
from aiohttp import web
from aiohttp.test_utils import unused_port

from pulseutils.errors import NetworkError, ServerError
from pulsescan.barcode import scan_barcode


@pytest.fixture
def barcode_photo(tmp_path):
    path = tmp_path / "barcode.jpg"
    image = np.full((200, 400, 3), 255, dtype=np.uint8)
    image[:, ::8] = 0
    cv2.imwrite(str(path), image)
    return str(path)


def scan(backend, handler, photo):
    async def run():
        async with backend(handler, path="/barcode/") as url, aiohttp.ClientSession() as http:
            return await scan_barcode(http, url, photo, timeout_s=10)

    return asyncio.run(run())


def test_falls_back_to_image_field(backend, barcode_photo) -> None:
    seen = []

    async def handler(request):
        data = await request.post()
        seen.append(list(data.keys()))
        if "image" not in data:
            return web.json_response({"detail": "image required"}, status=422)
        return web.json_response({"barcode": "8901063010314", "product": "Biscuits"})

    record = scan(backend, handler, barcode_photo)

    assert seen == [["file"], ["image"]]
    assert record["method"] == "upload"
    assert record["field"] == "image"
    assert record["status"] == 200
    assert record["body"]["barcode"] == "8901063010314"
    assert "when" in record


def test_plain_text_body_is_kept_raw(backend, barcode_photo) -> None:
    async def handler(request):
        await request.read()
        return web.Response(text="code: 8901063010314")

    record = scan(backend, handler, barcode_photo)
    assert record["field"] == "file"
    assert record["body"] == {"rawText": "code: 8901063010314"}


def test_bare_number_body_stays_a_number(backend, barcode_photo) -> None:
    async def handler(request):
        await request.read()
        return web.Response(text="8901063010314")

    record = scan(backend, handler, barcode_photo)
    assert record["body"] == 8901063010314


def test_all_fields_rejected(backend, barcode_photo) -> None:
    async def handler(request):
        await request.read()
        return web.Response(status=400, text="no barcode found")

    with pytest.raises(ServerError) as exc_info:
        scan(backend, handler, barcode_photo)
    assert exc_info.value.status == 400
    assert "no barcode found" in exc_info.value.user_message


def test_unreachable_backend(barcode_photo) -> None:
    async def run():
        async with aiohttp.ClientSession() as http:
            await scan_barcode(http, f"http://127.0.0.1:{unused_port()}/barcode/", barcode_photo, timeout_s=5)

    with pytest.raises(NetworkError):
        asyncio.run(run())
