"""
Pydantic models for every stored entity, its insertable subset, the API
request bodies and the JSON shapes expected back from the completion API.

Attributes are snake_case in Python and camelCase on the wire. `Insert*`
models reject unknown keys, so server-assigned fields (`id`, `createdAt`,
`lastUpdated`) can never be supplied by a caller.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InsertModel(CamelModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Nested value objects
# ---------------------------------------------------------------------------

class GeoPoint(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class NPK(CamelModel):
    nitrogen: float = Field(..., ge=0)
    phosphorus: float = Field(..., ge=0)
    potassium: float = Field(..., ge=0)


class SoilData(CamelModel):
    moisture: float = Field(..., ge=0, le=100)
    ph: float = Field(..., ge=0, le=14)
    npk: NPK
    temperature: float
    conductivity: float = Field(..., ge=0)
    organic_matter: float = Field(..., ge=0, le=100)


class ForecastDay(CamelModel):
    day: str
    high: float
    low: float
    icon: str


# ---------------------------------------------------------------------------
# Entities and their insertable subsets
# ---------------------------------------------------------------------------

class InsertUser(InsertModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class User(InsertUser):
    id: str


class PublicUser(CamelModel):
    id: str
    username: str


class InsertFarmData(InsertModel):
    user_id: str = Field(..., min_length=1)
    farm_name: str = Field(..., min_length=1)
    location: Optional[GeoPoint] = None
    area: float = Field(..., gt=0)
    soil_data: Optional[SoilData] = None


class FarmData(InsertFarmData):
    id: str
    created_at: datetime


class FarmDataUpdate(InsertModel):
    user_id: Optional[str] = Field(None, min_length=1)
    farm_name: Optional[str] = Field(None, min_length=1)
    location: Optional[GeoPoint] = None
    area: Optional[float] = Field(None, gt=0)
    soil_data: Optional[SoilData] = None

    @field_validator("user_id", "farm_name", "area")
    @classmethod
    def _not_null(cls, value):
        # omitted means unchanged; null would blank a required field
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class InsertCropRecommendation(InsertModel):
    farm_id: str = Field(..., min_length=1)
    crop_name: str = Field(..., min_length=1)
    match_score: int = Field(..., ge=0, le=100)
    expected_yield: str
    profit_margin: str
    water_requirement: str
    sustainability: str
    market_demand: str
    reasoning: Optional[str] = None


class CropRecommendation(InsertCropRecommendation):
    id: str
    created_at: datetime


class InsertDiseaseDetection(InsertModel):
    farm_id: str = Field(..., min_length=1)
    image_path: str
    disease_name: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    severity: Optional[str] = None
    treatment: Optional[str] = None
    prevention_tips: Optional[str] = None


class DiseaseDetection(InsertDiseaseDetection):
    id: str
    created_at: datetime


class InsertChatMessage(InsertModel):
    user_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    response: Optional[str] = None
    language: str = "en"


class ChatMessage(InsertChatMessage):
    id: str
    created_at: datetime


class InsertSatelliteData(InsertModel):
    farm_id: str = Field(..., min_length=1)
    ndvi: float = Field(..., ge=0.0, le=1.0)
    field_boundary: float = Field(..., ge=0)
    vegetation_health: str


class SatelliteData(InsertSatelliteData):
    id: str
    last_updated: datetime


class InsertMarketData(InsertModel):
    crop_name: str = Field(..., min_length=1)
    current_price: float = Field(..., ge=0)
    price_change: float
    weather_favorability: int = Field(..., ge=0, le=100)
    risk_assessment: str


class MarketData(InsertMarketData):
    id: str
    last_updated: datetime


class InsertWeatherData(InsertModel):
    location: str = Field(..., min_length=1)
    temperature: float
    humidity: int = Field(..., ge=0, le=100)
    condition: str
    forecast: List[ForecastDay] = Field(default_factory=list)


class WeatherData(InsertWeatherData):
    id: str
    last_updated: datetime


# ---------------------------------------------------------------------------
# Completion API response shapes
# ---------------------------------------------------------------------------

class CropSuggestion(CamelModel):
    crop_name: str
    match_score: int = Field(..., ge=0, le=100)
    expected_yield: str
    profit_margin: str
    water_requirement: str
    sustainability: str
    market_demand: str
    reasoning: str


class RecommendationBatch(CamelModel):
    recommendations: List[CropSuggestion] = Field(..., min_length=3, max_length=5)


class DiseaseAnalysis(CamelModel):
    disease_name: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: str
    treatment: str
    prevention_tips: str


class ChatReply(CamelModel):
    response: str
    follow_up_questions: Optional[List[str]] = None


class MarketTrends(CamelModel):
    price_analysis: str
    demand_forecast: str
    recommendations: str


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class GenerateRecommendationsRequest(CamelModel):
    farm_id: str = Field(..., min_length=1)
    location: Optional[str] = None


class DiseaseAnalyzeRequest(CamelModel):
    farm_id: str = Field(..., min_length=1)
    image_data: str = Field(..., min_length=1)


class ChatRequest(CamelModel):
    user_id: Optional[str] = None
    message: str = Field(..., min_length=1)
    language: Optional[str] = "en"


class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginRequest(CamelModel):
    username: str
    password: str
