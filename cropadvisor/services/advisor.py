"""
Advisory operations backed by the completion API.

Each operation composes a fixed system instruction plus a user prompt that
embeds the serialized farm context, asks the completion API for a JSON
object, and validates that object before handing it back. Anything that
does not match the expected shape (for example a match score of 101 or a
confidence of 1.5) is rejected with an `UpstreamError`; nothing partial is
returned and nothing is retried here.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError

from ..config import Settings
from ..errors import UpstreamError
from ..schemas import (
    ChatReply,
    CropSuggestion,
    DiseaseAnalysis,
    MarketData,
    MarketTrends,
    RecommendationBatch,
    SoilData,
    WeatherData,
)
from .llm import CompletionClient

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Languages the assistant can answer in, keyed by the code the dashboard sends
SUPPORTED_LANGUAGES = {
    "en": "English",
    "hi": "Hindi (हिंदी)",
    "bn": "Bengali (বাংলা)",
    "te": "Telugu (తెలుగు)",
    "mr": "Marathi (मराठी)",
    "ta": "Tamil (தமிழ்)",
    "gu": "Gujarati (ગુજરાતી)",
    "kn": "Kannada (ಕನ್ನಡ)",
    "ml": "Malayalam (മലയാളം)",
    "pa": "Punjabi (ਪੰਜਾਬੀ)",
    "or": "Odia (ଓଡ଼ିଆ)",
}

RECOMMENDATION_SYSTEM = "You are an expert agricultural AI advisor specializing in Indian farming conditions and crops."

RECOMMENDATION_PROMPT = """You are an expert agricultural AI advisor. Based on the following data, provide crop recommendations for an Indian farmer:

Soil Data: {soil}
Weather Data: {weather}
Market Data: {market}
Location: {location}

Provide 3-5 crop recommendations with match scores (integer 0-100), expected yield, profit margins in Indian Rupees, water requirements, sustainability rating, and market demand. Consider Indian agricultural conditions and crops suitable for the region.

Respond with JSON in this format: {{ "recommendations": [{{ "cropName": "string", "matchScore": number, "expectedYield": "string", "profitMargin": "string", "waterRequirement": "string", "sustainability": "string", "marketDemand": "string", "reasoning": "string" }}] }}"""

DISEASE_SYSTEM = ("You are an expert plant pathologist. Analyze crop disease images and provide diagnosis "
                  "with treatment recommendations suitable for Indian farmers.")

DISEASE_PROMPT = """Analyze this crop image for diseases. Provide disease name, confidence score (0.0-1.0), severity level, treatment recommendations, and prevention tips. Focus on diseases common in Indian agriculture. If the plant looks healthy, say so in diseaseName and keep treatment short.

Respond with JSON: { "diseaseName": "string", "confidence": number, "severity": "string", "treatment": "string", "preventionTips": "string" }"""

CHAT_SYSTEM = "You are an expert agricultural AI assistant specializing in Indian farming. Respond in {language} if specified."

CHAT_PROMPT = """You are an AI agricultural assistant helping Indian farmers.

User's question: {message}
Context (farm data): {context}
Response language: {language}

Provide helpful agricultural advice based on the context. If responding in a language other than English, ensure the response is culturally appropriate and uses agricultural terms familiar to farmers in that region.

Respond with JSON: {{ "response": "string", "followUpQuestions": ["string"] }}"""

MARKET_SYSTEM = "You are an expert agricultural market analyst specializing in Indian commodity markets."

MARKET_PROMPT = """Analyze market trends for {crop} in {region}, India. Provide:
1. Current price analysis and trends
2. Demand forecast for the next 3-6 months
3. Recommendations for farmers

Consider seasonal patterns, government policies, and regional market conditions.

Respond with JSON: {{ "priceAnalysis": "string", "demandForecast": "string", "recommendations": "string" }}"""

DISEASE_MAX_TOKENS = 2048


def language_name(code: Optional[str]) -> str:
    """Full language name for a short code; unknown codes fall back to English."""
    return SUPPORTED_LANGUAGES.get((code or "en").lower(), "English")


def _to_json(value: Any) -> str:
    return json.dumps(jsonable_encoder(value), ensure_ascii=False)


def _validate(model: Type[ModelT], raw: Dict[str, Any], operation: str) -> ModelT:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in e.errors())
        logger.error("[%s] completion response failed validation on: %s", operation, fields)
        raise UpstreamError(operation, f"invalid fields: {fields}") from e


class CropAdvisor:
    def __init__(self, client: CompletionClient):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "CropAdvisor":
        client = CompletionClient(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            timeout=settings.ai_timeout_seconds,
            max_retries=settings.ai_max_retries,
        )
        return cls(client)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def generate_crop_recommendations(
        self,
        soil_data: Optional[SoilData],
        weather_data: Optional[WeatherData],
        market_data: Optional[MarketData],
        location: str,
    ) -> List[CropSuggestion]:
        operation = "crop_recommendations"
        prompt = RECOMMENDATION_PROMPT.format(
            soil=_to_json(soil_data),
            weather=_to_json(weather_data),
            market=_to_json(market_data),
            location=location,
        )
        raw = await self._client.complete_json(
            [
                {"role": "system", "content": RECOMMENDATION_SYSTEM},
                {"role": "user", "content": prompt},
            ],
            operation=operation,
        )
        batch = _validate(RecommendationBatch, raw, operation)
        logger.info("[%s] %d recommendations for %s", operation, len(batch.recommendations), location)
        return batch.recommendations

    async def analyze_disease_from_image(self, base64_image: str, mime_type: str = "image/jpeg") -> DiseaseAnalysis:
        operation = "disease_analysis"
        raw = await self._client.complete_json(
            [
                {"role": "system", "content": DISEASE_SYSTEM},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": DISEASE_PROMPT},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{base64_image}"}},
                    ],
                },
            ],
            operation=operation,
            max_tokens=DISEASE_MAX_TOKENS,
        )
        analysis = _validate(DiseaseAnalysis, raw, operation)
        logger.info("[%s] %s (confidence %.2f)", operation, analysis.disease_name, analysis.confidence)
        return analysis

    async def generate_chat_response(self, message: str, context: Dict[str, Any], language: str = "en") -> ChatReply:
        operation = "chat"
        response_language = language_name(language)
        prompt = CHAT_PROMPT.format(message=message, context=_to_json(context), language=response_language)
        raw = await self._client.complete_json(
            [
                {"role": "system", "content": CHAT_SYSTEM.format(language=response_language)},
                {"role": "user", "content": prompt},
            ],
            operation=operation,
        )
        return _validate(ChatReply, raw, operation)

    async def analyze_market_trends(self, crop_name: str, region: str) -> MarketTrends:
        operation = "market_trends"
        raw = await self._client.complete_json(
            [
                {"role": "system", "content": MARKET_SYSTEM},
                {"role": "user", "content": MARKET_PROMPT.format(crop=crop_name, region=region)},
            ],
            operation=operation,
        )
        return _validate(MarketTrends, raw, operation)
