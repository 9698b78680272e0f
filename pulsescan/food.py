import logging
import re
from typing import Any, List, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, ValidationError

from pulseutils.errors import MalformedResponse, ServerError
from pulseutils.opencvhelpers import prepare_image

from .upload import decode_json, error_detail, post

_logger = logging.getLogger(__name__)

NUTRIENTS = ["carbs", "fat", "fiber", "protein"]
_NUMBER = re.compile(r"[-+]?(\d+\.?\d*|\.\d+)")


class FoodItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    quantity: Optional[Any] = None
    calories: Optional[Any] = None
    carbs: Optional[Any] = None
    fat: Optional[Any] = None
    fiber: Optional[Any] = None
    protein: Optional[Any] = None

    def as_row(self) -> dict:
        return {
            "Name": self.name,
            "Quantity": self.quantity,
            "Calories": self.calories,
            "Carbs": self.carbs,
            "Fat": self.fat,
            "Fiber": self.fiber,
            "Protein": self.protein,
        }


class FoodAnalysis(BaseModel):
    model_config = ConfigDict(extra="allow")

    foods: List[FoodItem]


def parse_grams(value) -> float:
    """Parse "12.5 g" as 12.5. Anything without a leading number counts as 0."""
    if value is None or value == "":
        return 0.0
    cleaned = re.sub(r"[^\d.-]", "", str(value))
    match = _NUMBER.match(cleaned)
    return float(match.group()) if match else 0.0


def compute_totals(foods) -> dict:
    totals = {k: 0.0 for k in NUTRIENTS}
    for food in foods:
        for k in NUTRIENTS:
            totals[k] += parse_grams(getattr(food, k))
    return {k: f"{v:.2f}g" for k, v in totals.items()}


async def analyze_food(http, url, image_path, timeout_s) -> FoodAnalysis:
    prepared = prepare_image(image_path)
    _logger.info("Uploading %s (%dx%d, %d bytes) for food analysis", prepared.name, prepared.width, prepared.height,
                 len(prepared.data))

    form = aiohttp.FormData()
    form.add_field("image", prepared.data, filename=prepared.name, content_type=prepared.content_type)
    status, text = await post(http, url, timeout_s, data=form)

    if not 200 <= status < 300:
        raise ServerError(status, f"Server returned {status}: {error_detail(text) or text.strip()}".strip())

    body = decode_json(text)
    try:
        return FoodAnalysis.model_validate(body)
    except ValidationError as e:
        raise MalformedResponse(text, "Unexpected response shape from server") from e
