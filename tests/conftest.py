import pytest
from fastapi.testclient import TestClient

from cropadvisor.config import Settings
from cropadvisor.main import create_app
from cropadvisor.schemas import ChatReply, CropSuggestion, DiseaseAnalysis, MarketTrends
from cropadvisor.storage import MemStorage


class StubAdvisor:
    """Stands in for CropAdvisor and records every call it receives."""

    def __init__(self):
        self.calls = []
        self.error = None
        self.recommendations = [
            CropSuggestion(
                crop_name="Wheat",
                match_score=92,
                expected_yield="4.5 t/ha",
                profit_margin="₹45,000/ha",
                water_requirement="Medium",
                sustainability="High",
                market_demand="High",
                reasoning="Loamy soil with neutral pH suits wheat",
            ),
            CropSuggestion(
                crop_name="Mustard",
                match_score=78,
                expected_yield="1.8 t/ha",
                profit_margin="₹30,000/ha",
                water_requirement="Low",
                sustainability="Medium",
                market_demand="Medium",
                reasoning="Low water need for the rabi season",
            ),
        ]
        self.disease = DiseaseAnalysis(
            disease_name="Early Blight",
            confidence=0.87,
            severity="Medium",
            treatment="Remove infected leaves and apply a copper fungicide",
            prevention_tips="Rotate crops and avoid overhead irrigation",
        )
        self.chat_reply = ChatReply(
            response="Irrigate lightly in the early morning.",
            follow_up_questions=["Which crop are you growing?"],
        )
        self.market = MarketTrends(
            price_analysis="Prices are firm after procurement started",
            demand_forecast="Demand stays steady for three months",
            recommendations="Stagger sales over the season",
        )

    def call_count(self, name):
        return sum(1 for call_name, _ in self.calls if call_name == name)

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    async def generate_crop_recommendations(self, soil_data, weather_data, market_data, location):
        self._record("generate_crop_recommendations", soil_data=soil_data, weather_data=weather_data,
                     market_data=market_data, location=location)
        return list(self.recommendations)

    async def analyze_disease_from_image(self, base64_image, mime_type="image/jpeg"):
        self._record("analyze_disease_from_image", base64_image=base64_image, mime_type=mime_type)
        return self.disease

    async def generate_chat_response(self, message, context, language="en"):
        self._record("generate_chat_response", message=message, context=context, language=language)
        return self.chat_reply

    async def analyze_market_trends(self, crop_name, region):
        self._record("analyze_market_trends", crop_name=crop_name, region=region)
        return self.market


@pytest.fixture
def settings():
    return Settings(openai_api_key="test-key", jwt_secret="test-secret-0123456789abcdef0123456789")


@pytest.fixture
def storage():
    return MemStorage()


@pytest.fixture
def advisor():
    return StubAdvisor()


@pytest.fixture
def app(settings, storage, advisor):
    return create_app(settings=settings, storage=storage, advisor=advisor)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
