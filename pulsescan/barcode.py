import datetime
import json
import logging

import aiohttp

from pulseutils.errors import NetworkError, ServerError, UploadError
from pulseutils.opencvhelpers import prepare_image

from .upload import post

_logger = logging.getLogger(__name__)

# The backend has used both names for the upload field
FIELDS = ["file", "image"]


async def scan_barcode(http, url, image_path, timeout_s) -> dict:
    """Upload a barcode photo and return the record that goes into the scan history."""
    prepared = prepare_image(image_path)

    last_error = None
    for field in FIELDS:
        form = aiohttp.FormData()
        form.add_field(field, prepared.data, filename=prepared.name, content_type=prepared.content_type)
        try:
            status, text = await post(http, url, timeout_s, data=form)
        except NetworkError as e:
            _logger.info("Upload with field '%s' failed: %s", field, e)
            last_error = e
            continue

        if 200 <= status < 300:
            try:
                body = json.loads(text)
            except ValueError:
                body = {"rawText": text}
            return {
                "method": "upload",
                "field": field,
                "status": status,
                "body": body,
                "when": datetime.datetime.now().isoformat(),
            }

        _logger.info("Upload with field '%s' was rejected with %d", field, status)
        last_error = ServerError(status, f"status {status}: {text.strip()}")

    raise last_error if last_error is not None else UploadError("Upload failed")
