"""
View models for the results and dashboard screens.

Each function takes a record (or history entries) and returns plain dicts
ready to be serialised by the API.
"""
import math
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from .models import CropRecommendation, HistoryEntry, SoilAnalysisRecord

TABS = ("soil", "crops", "transport")
DEFAULT_TAB = "soil"
PERISHABLE_DAYS = 5


def score_band(score: int) -> str:
    if score >= 70:
        return "good"
    if score >= 45:
        return "fair"
    return "poor"


def nutrient_band(score: int) -> str:
    if score >= 66:
        return "high"
    if score >= 33:
        return "medium"
    return "low"


def shelf_life_label(days: int) -> str:
    if days >= 365:
        return "12+ mo"
    if days >= 30:
        return f"{days // 30}mo"
    return f"{days}d"


def soil_profile_view(record: SoilAnalysisRecord) -> Dict[str, Any]:
    nutrients = record.nutrients
    bars = []
    for name in ("nitrogen", "phosphorus", "potassium", "calcium", "magnesium"):
        entry = getattr(nutrients, name)
        if entry is None:
            continue
        bars.append({
            "name": name.capitalize(),
            "level": entry.level,
            "score": entry.score,
            "band": nutrient_band(entry.score),
        })
    return {
        "tab": "soil",
        "soilHealth": {**record.soilHealth.model_dump(), "band": score_band(record.soilHealth.score)},
        "confidence": record.confidence,
        "soilType": record.soilType,
        "soilTypeDescription": record.soilTypeDescription,
        "pH": record.pH.model_dump(),
        "moisture": record.moisture.model_dump(),
        "nutrients": bars,
        "organicMatter": nutrients.organicMatter.model_dump(),
        "improvements": list(record.improvements),
        "warnings": list(record.warnings),
        "opportunities": list(record.opportunities),
        "summary": record.summary,
    }


def _crop_card(crop: CropRecommendation, rank: int) -> Dict[str, Any]:
    card = crop.model_dump(exclude_none=True)
    card.update(
        rank=rank,
        # Only the top recommendation starts expanded.
        expanded=rank == 1,
        shelfLifeLabel=shelf_life_label(crop.shelfLife.days),
        perishable=crop.shelfLife.days <= PERISHABLE_DAYS,
    )
    return card


def crops_view(record: SoilAnalysisRecord) -> Dict[str, Any]:
    return {
        "tab": "crops",
        "count": len(record.topCrops),
        "crops": [_crop_card(crop, rank) for rank, crop in enumerate(record.topCrops, start=1)],
    }


def transport_view(record: SoilAnalysisRecord) -> Dict[str, Any]:
    crops = [
        {
            "name": crop.name,
            "emoji": crop.emoji,
            "shelfLifeDays": crop.shelfLife.days,
            "shelfLifeLabel": shelf_life_label(crop.shelfLife.days),
            "perishable": crop.shelfLife.days <= PERISHABLE_DAYS,
            "transportRecommendation": crop.transportRecommendation,
        }
        for crop in record.topCrops
    ]
    return {"tab": "transport", "transport": record.transport.model_dump(), "crops": crops}


_RENDERERS = {
    "soil": soil_profile_view,
    "crops": crops_view,
    "transport": transport_view,
}


def render_view(record: SoilAnalysisRecord, tab: Optional[str] = None) -> Dict[str, Any]:
    tab = tab or DEFAULT_TAB
    if tab not in _RENDERERS:
        raise ValueError(f"Unknown tab {tab!r}; expected one of {', '.join(TABS)}")
    view = _RENDERERS[tab](record)
    view.update(
        id=record.id,
        timestamp=record.timestamp,
        farmName=record.farmName,
        location=record.location,
        tabs=list(TABS),
    )
    return view


def export_text(record: SoilAnalysisRecord) -> str:
    """Plain-text summary used by the copy-to-clipboard action."""
    top = record.top_crop
    return (
        "SoilSync Analysis\n"
        f"Soil Health: {record.soilHealth.score}/100 ({record.soilHealth.status})\n"
        f"Soil Type: {record.soilType}\n"
        f"pH: {record.pH.estimate} ({record.pH.category})\n"
        f"Top Crop: {top.name if top else 'Unknown'}\n\n"
        f"{record.summary}"
    )


def dashboard_summary(entries: Sequence[HistoryEntry]) -> Dict[str, Any]:
    if not entries:
        return {"count": 0, "averageScore": None, "mostRecommendedCrop": None}
    average = math.floor(sum(e.soilHealthScore for e in entries) / len(entries) + 0.5)
    # Counter keeps first-seen order, so ties go to the most recent crop.
    most_common: List = Counter(e.topCrop for e in entries).most_common(1)
    return {
        "count": len(entries),
        "averageScore": average,
        "mostRecommendedCrop": most_common[0][0] if most_common else None,
    }
