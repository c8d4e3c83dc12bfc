"""
Soil Analysis Service
Sends a soil photo to Google Gemini and turns the reply into a
``SoilAnalysisRecord``.

The model is asked for one JSON object following a fixed schema. Replies are
untrusted: enum values are matched against the known sets and replaced by
safe defaults, scores are clamped, crops are re-ranked, and only then is the
payload validated into the record model.
"""
import json
import logging
import math
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import AnalysisProviderError, InvalidAnalysisPayload, UnparsableResponse
from ..models import SoilAnalysisRecord
from .acquisition import parse_data_uri
from .demo_data import get_demo_analysis

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1/models/{model}:generateContent"

LEVELS = ("Low", "Medium", "High")
HEALTH_STATUSES = ("Poor", "Fair", "Good", "Excellent")
PH_CATEGORIES = (
    "Very Acidic",
    "Acidic",
    "Slightly Acidic",
    "Neutral",
    "Slightly Alkaline",
    "Alkaline",
    "Very Alkaline",
)
MOISTURE_LEVELS = ("Dry", "Moist", "Wet", "Waterlogged")
MARKET_TYPES = ("Local", "Regional", "Export")
SCORED_NUTRIENTS = ("nitrogen", "phosphorus", "potassium", "calcium", "magnesium")
OPTIONAL_NUTRIENTS = ("calcium", "magnesium")
CALLER_FIELDS = ("id", "timestamp", "farmName", "location", "imageData")

SOIL_ANALYSIS_PROMPT = """You are an expert agricultural soil scientist and crop advisor specializing in African farming systems. Analyze the provided soil image carefully.

Examine these visual indicators:
- Soil COLOR: Dark/black = high organic matter; Reddish/orange = iron-rich laterite; Pale/white = low organic matter or salinity; Grey = poor drainage
- Soil TEXTURE: Coarse/grainy = sandy; Fine/smooth = clay; Mixed = loam; Crumbly = good structure
- MOISTURE: Surface sheen = wet; Moist clumps = optimal; Dusty/cracked = dry
- STRUCTURE: Crumb structure = excellent; Blocky = clay; Single-grain = sandy; Compacted/hard = poor
- ORGANIC MATTER: Dark color, visible plant material, earthworm holes = good organic content

Return ONLY a valid JSON object (no markdown, no explanation) with this exact structure:

{
  "soilHealth": {
    "score": <number 0-100>,
    "status": "<Poor|Fair|Good|Excellent>",
    "description": "<2-3 sentence assessment>"
  },
  "soilType": "<Sandy|Sandy Loam|Loam|Clay Loam|Clay|Silt|Laterite|Peat>",
  "soilTypeDescription": "<1-2 sentences about this soil type for farmers>",
  "pH": {
    "estimate": <number like 6.2>,
    "range": "<e.g. 5.8 – 6.6>",
    "description": "<brief description>",
    "category": "<Very Acidic|Acidic|Slightly Acidic|Neutral|Slightly Alkaline|Alkaline|Very Alkaline>"
  },
  "moisture": {
    "level": "<Dry|Moist|Wet|Waterlogged>",
    "description": "<observation>",
    "recommendation": "<practical advice>"
  },
  "nutrients": {
    "nitrogen": {"level": "<Low|Medium|High>", "score": <0-100>},
    "phosphorus": {"level": "<Low|Medium|High>", "score": <0-100>},
    "potassium": {"level": "<Low|Medium|High>", "score": <0-100>},
    "organicMatter": {"percentage": <number>, "level": "<Low|Medium|High>"},
    "calcium": {"level": "<Low|Medium|High>", "score": <0-100>},
    "magnesium": {"level": "<Low|Medium|High>", "score": <0-100>}
  },
  "topCrops": [
    {
      "name": "<crop name>",
      "localName": "<local/alternative name>",
      "emoji": "<single emoji>",
      "suitabilityScore": <0-100>,
      "reason": "<why this crop suits the soil>",
      "plantingMonths": ["<month>"],
      "harvestMonths": ["<month>"],
      "expectedYield": "<range like 3-5 tonnes/hectare>",
      "shelfLife": {
        "days": <number>,
        "description": "<how long and conditions>",
        "storageMethod": "<practical storage advice>"
      },
      "marketPrice": {
        "estimate": "<price range>",
        "demand": "<Low|Medium|High>",
        "bestMarket": "<where to sell>"
      },
      "transportRecommendation": "<when and how to transport>",
      "waterRequirement": "<Low|Medium|High>",
      "growthDuration": "<time range>"
    }
  ],
  "transport": {
    "urgency": "<Low|Medium|High>",
    "recommendedTimeframe": "<practical timing advice>",
    "storageAdvice": "<how to store produce>",
    "nearestMarketType": "<Local|Regional|Export>",
    "estimatedRevenue": "<revenue estimate per hectare>",
    "packagingAdvice": "<how to package for transport>",
    "transportMethods": ["<method 1>", "<method 2>"],
    "bestSellTime": "<when to sell for best price>"
  },
  "improvements": ["<actionable improvement 1>", "<actionable improvement 2>", "<actionable improvement 3>"],
  "warnings": ["<warning if any>"],
  "opportunities": ["<market/crop opportunity>"],
  "summary": "<2-3 sentence overall assessment and key recommendation>",
  "confidence": "<Low|Medium|High>"
}

Include exactly 5 crop recommendations sorted by suitability score (highest first). Focus on crops commonly grown in Sub-Saharan Africa. Be practical and specific."""

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)```")
_FENCED_ANY = re.compile(r"```\s*([\s\S]*?)```")
_BRACE_SPAN = re.compile(r"(\{[\s\S]*\})")


def build_prompt(farm_name: Optional[str] = None, location: Optional[str] = None) -> str:
    prompt = SOIL_ANALYSIS_PROMPT
    if farm_name:
        prompt += f"\n\nFarm name: {farm_name}"
    if location:
        prompt += f"\nLocation: {location}"
    return prompt


def extract_json_object(text: str) -> Dict[str, Any]:
    """Pull the JSON object out of a model reply.

    Tried in order: a ```json fenced block, any fenced block, then the span
    from the first ``{`` to the last ``}``. The first candidate that parses to
    a JSON object wins.
    """
    text = text or ""
    for pattern in (_FENCED_JSON, _FENCED_ANY, _BRACE_SPAN):
        match = pattern.search(text)
        if not match:
            continue
        try:
            data = json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise UnparsableResponse()


# -- payload hardening -------------------------------------------------------

def _enum(value: Any, allowed: Iterable[str], default: str) -> str:
    if isinstance(value, str):
        wanted = value.strip().lower()
        for option in allowed:
            if option.lower() == wanted:
                return option
    return default


def _finite(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or None when it is not a finite number."""
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _score(value: Any, default: int = 0) -> int:
    number = _finite(value)
    if number is None:
        return default
    return min(max(int(round(number)), 0), 100)


def _text_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def health_status_for(score: int) -> str:
    if score >= 80:
        return "Excellent"
    if score >= 60:
        return "Good"
    if score >= 40:
        return "Fair"
    return "Poor"


def ph_category_for(estimate: float) -> str:
    bands = ((4.5, "Very Acidic"), (5.5, "Acidic"), (6.5, "Slightly Acidic"),
             (7.3, "Neutral"), (7.8, "Slightly Alkaline"), (8.5, "Alkaline"))
    for upper, category in bands:
        if estimate < upper:
            return category
    return "Very Alkaline"


def _normalize_crop(crop: Dict[str, Any]) -> Dict[str, Any]:
    crop = dict(crop)
    crop["suitabilityScore"] = _score(crop.get("suitabilityScore"))
    crop["waterRequirement"] = _enum(crop.get("waterRequirement"), LEVELS, "Medium")
    crop["plantingMonths"] = _text_list(crop.get("plantingMonths"))
    crop["harvestMonths"] = _text_list(crop.get("harvestMonths"))
    if not crop.get("localName"):
        crop.pop("localName", None)
    shelf = crop.get("shelfLife")
    if isinstance(shelf, dict):
        shelf = dict(shelf)
        days = _finite(shelf.get("days"))
        shelf["days"] = max(int(round(days)), 0) if days is not None else 0
        crop["shelfLife"] = shelf
    market = crop.get("marketPrice")
    if isinstance(market, dict):
        market = dict(market)
        market["demand"] = _enum(market.get("demand"), LEVELS, "Medium")
        crop["marketPrice"] = market
    return crop


def normalize_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a parsed model reply towards the record schema.

    Unknown enum values fall back to defaults, scores are clamped to
    [0, 100] and ``topCrops`` is sorted by descending suitability. Structural
    gaps (missing sub-records or text fields) are left for validation.
    """
    data = {k: v for k, v in data.items() if k not in CALLER_FIELDS}

    health = data.get("soilHealth")
    if isinstance(health, dict):
        health = dict(health)
        health["score"] = _score(health.get("score"))
        health["status"] = _enum(health.get("status"), HEALTH_STATUSES, health_status_for(health["score"]))
        data["soilHealth"] = health

    ph = data.get("pH")
    if isinstance(ph, dict):
        ph = dict(ph)
        estimate = _finite(ph.get("estimate"))
        if estimate is None:
            # Left for validation to reject; NaN would otherwise read as "Very Alkaline".
            ph["estimate"] = None
            default_category = "Neutral"
        else:
            ph["estimate"] = round(estimate, 1)
            default_category = ph_category_for(ph["estimate"])
        ph["category"] = _enum(ph.get("category"), PH_CATEGORIES, default_category)
        data["pH"] = ph

    moisture = data.get("moisture")
    if isinstance(moisture, dict):
        data["moisture"] = dict(moisture, level=_enum(moisture.get("level"), MOISTURE_LEVELS, "Moist"))

    nutrients = data.get("nutrients")
    if isinstance(nutrients, dict):
        nutrients = dict(nutrients)
        for name in SCORED_NUTRIENTS:
            entry = nutrients.get(name)
            if isinstance(entry, dict):
                nutrients[name] = dict(entry, level=_enum(entry.get("level"), LEVELS, "Medium"), score=_score(entry.get("score")))
            elif name in OPTIONAL_NUTRIENTS:
                nutrients.pop(name, None)
        organic = nutrients.get("organicMatter")
        if isinstance(organic, dict):
            nutrients["organicMatter"] = dict(organic, level=_enum(organic.get("level"), LEVELS, "Medium"))
        data["nutrients"] = nutrients

    crops = data.get("topCrops")
    if isinstance(crops, list):
        crops = [_normalize_crop(c) for c in crops if isinstance(c, dict)]
        crops.sort(key=lambda c: c["suitabilityScore"], reverse=True)
        data["topCrops"] = crops

    transport = data.get("transport")
    if isinstance(transport, dict):
        transport = dict(transport)
        transport["urgency"] = _enum(transport.get("urgency"), LEVELS, "Medium")
        transport["nearestMarketType"] = _enum(transport.get("nearestMarketType"), MARKET_TYPES, "Local")
        transport["transportMethods"] = _text_list(transport.get("transportMethods"))
        data["transport"] = transport

    for key in ("improvements", "warnings", "opportunities"):
        data[key] = _text_list(data.get(key))
    data["confidence"] = _enum(data.get("confidence"), LEVELS, "Low")
    return data


def build_record(data: Dict[str, Any], farm_name: Optional[str] = None, location: Optional[str] = None) -> SoilAnalysisRecord:
    """Create a record with a fresh id/timestamp and the caller's metadata."""
    payload = normalize_payload(data)
    payload.update(
        id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc).isoformat(),
        farmName=farm_name or None,
        location=location or None,
    )
    try:
        return SoilAnalysisRecord.model_validate(payload)
    except ValidationError as e:
        raise InvalidAnalysisPayload(f"AI response does not match the soil analysis schema: {e.error_count()} error(s)") from e


# -- provider ----------------------------------------------------------------

def _response_text(response: Dict[str, Any]) -> str:
    candidates = response.get("candidates") or []
    if not candidates:
        raise AnalysisProviderError("No response candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    if not text.strip():
        raise AnalysisProviderError("Empty content in Gemini response")
    return text


class SoilAnalysisClient:
    """Client for the hosted vision model.

    Without configured keys (or with ``demo=True``) no request is made and the
    demo record is returned instead.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None):
        self.settings = settings
        self._http_client = http_client

    def uses_demo(self, demo: bool = False) -> bool:
        return demo or not self.settings.has_credentials

    def analyze(self, image_data: str, farm_name: Optional[str] = None, location: Optional[str] = None, demo: bool = False) -> SoilAnalysisRecord:
        if self.uses_demo(demo):
            return get_demo_analysis(farmName=farm_name, location=location)

        media_type, image_base64 = parse_data_uri(image_data)
        text = self.generate(build_prompt(farm_name, location), image_base64, media_type)
        data = extract_json_object(text)
        return build_record(data, farm_name, location)

    def generate(self, prompt: str, image_base64: str, media_type: str = "image/jpeg") -> str:
        """Run one generateContent call, rotating keys on HTTP 429."""
        payload = {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": media_type, "data": image_base64}},
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 0.4,
                "maxOutputTokens": self.settings.max_output_tokens,
            },
        }
        url = GEMINI_API_URL.format(model=self.settings.model)
        keys = self.settings.api_keys

        for idx, api_key in enumerate(keys):
            started = time.perf_counter()
            try:
                response = self._post(url, payload, api_key)
                elapsed = time.perf_counter() - started
                logger.info("[Gemini] key #%d status=%s elapsed=%.2fs", idx + 1, response.status_code, elapsed)
                response.raise_for_status()
                return _response_text(response.json())
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429 and idx + 1 < len(keys):
                    logger.warning("[Gemini] key #%d rate limited; trying next key", idx + 1)
                    continue
                raise AnalysisProviderError(f"Gemini returned HTTP {status}") from e
            except httpx.HTTPError as e:
                raise AnalysisProviderError(f"Gemini request failed: {e}") from e
            except AnalysisProviderError:
                raise
            except ValueError as e:
                raise AnalysisProviderError(f"Gemini returned invalid JSON: {e}") from e

        raise AnalysisProviderError("GEMINI_API_KEY not configured")

    def _post(self, url: str, payload: Dict[str, Any], api_key: str) -> httpx.Response:
        params = {"key": api_key}
        headers = {"Content-Type": "application/json"}
        if self._http_client is not None:
            return self._http_client.post(url, params=params, json=payload, headers=headers)
        with httpx.Client(timeout=self.settings.timeout) as client:
            return client.post(url, params=params, json=payload, headers=headers)
