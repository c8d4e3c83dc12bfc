"""
Data model for soil analyses.

Field names follow the JSON contract shared with the vision model prompt and
the frontend (camelCase), so records round-trip through ``model_dump`` without
any aliasing.
"""
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Level = Literal["Low", "Medium", "High"]
HealthStatus = Literal["Poor", "Fair", "Good", "Excellent"]
PHCategory = Literal[
    "Very Acidic",
    "Acidic",
    "Slightly Acidic",
    "Neutral",
    "Slightly Alkaline",
    "Alkaline",
    "Very Alkaline",
]
MoistureLevel = Literal["Dry", "Moist", "Wet", "Waterlogged"]
MarketType = Literal["Local", "Regional", "Export"]

Score = Annotated[int, Field(ge=0, le=100)]

HISTORY_IMAGE_PREFIX = 500
UNKNOWN_CROP = "Unknown"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SoilNutrient(_Frozen):
    level: Level
    score: Score
    unit: Optional[str] = None


class OrganicMatter(_Frozen):
    percentage: float = Field(allow_inf_nan=False)
    level: Level


class SoilNutrients(_Frozen):
    nitrogen: SoilNutrient
    phosphorus: SoilNutrient
    potassium: SoilNutrient
    organicMatter: OrganicMatter
    calcium: Optional[SoilNutrient] = None
    magnesium: Optional[SoilNutrient] = None


class SoilHealth(_Frozen):
    score: Score
    status: HealthStatus
    description: str


class PHReading(_Frozen):
    estimate: float = Field(allow_inf_nan=False)
    range: str
    description: str
    category: PHCategory


class MoistureReading(_Frozen):
    level: MoistureLevel
    description: str
    recommendation: str


class ShelfLife(_Frozen):
    days: int = Field(..., ge=0)
    description: str
    storageMethod: str


class MarketPrice(_Frozen):
    estimate: str
    demand: Level
    bestMarket: str


class CropRecommendation(_Frozen):
    name: str
    localName: Optional[str] = None
    emoji: str
    suitabilityScore: Score
    reason: str
    plantingMonths: List[str] = Field(default_factory=list)
    harvestMonths: List[str] = Field(default_factory=list)
    expectedYield: str
    shelfLife: ShelfLife
    marketPrice: MarketPrice
    transportRecommendation: str
    waterRequirement: Level
    growthDuration: str


class TransportRecommendation(_Frozen):
    urgency: Level
    recommendedTimeframe: str
    storageAdvice: str
    nearestMarketType: MarketType
    estimatedRevenue: str
    packagingAdvice: str
    transportMethods: List[str] = Field(default_factory=list)
    bestSellTime: str


class SoilAnalysisRecord(_Frozen):
    id: str
    timestamp: str
    farmName: Optional[str] = None
    location: Optional[str] = None

    soilHealth: SoilHealth
    soilType: str
    soilTypeDescription: str
    pH: PHReading
    moisture: MoistureReading
    nutrients: SoilNutrients

    topCrops: List[CropRecommendation] = Field(..., min_length=1)
    transport: TransportRecommendation

    improvements: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)
    summary: str
    confidence: Level

    @model_validator(mode="after")
    def _crops_ranked(self):
        scores = [c.suitabilityScore for c in self.topCrops]
        if scores != sorted(scores, reverse=True):
            raise ValueError("topCrops must be ordered by descending suitabilityScore")
        return self

    @property
    def top_crop(self) -> Optional[CropRecommendation]:
        return self.topCrops[0] if self.topCrops else None

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class HistoryEntry(_Frozen):
    """Lossy projection of a record kept in the capped history log."""

    id: str
    timestamp: str
    farmName: Optional[str] = None
    location: Optional[str] = None
    soilHealthScore: int
    topCrop: str = UNKNOWN_CROP
    imageData: Optional[str] = None

    @classmethod
    def from_record(cls, record: SoilAnalysisRecord, image_data: Optional[str] = None) -> "HistoryEntry":
        top = record.top_crop
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            farmName=record.farmName,
            location=record.location,
            soilHealthScore=record.soilHealth.score,
            topCrop=top.name if top and top.name else UNKNOWN_CROP,
            imageData=image_data[:HISTORY_IMAGE_PREFIX] if image_data else None,
        )


class AnalyzeRequest(BaseModel):
    imageData: Optional[str] = None
    farmName: Optional[str] = None
    location: Optional[str] = None
    demo: Optional[bool] = False


class AnalyzeResponse(BaseModel):
    success: bool = True
    data: SoilAnalysisRecord
    warning: Optional[str] = None
