"""
Storage layer.

`Storage` is the repository interface the route layer talks to; `MemStorage`
keeps everything in process memory. Lookups never raise for missing
records: they return `None` or an empty list and the caller decides what
absence means.

Mutations of a collection are serialized by that collection's lock, so the
read-then-write of the natural-key upserts cannot interleave with another
writer and produce duplicates or lost updates.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .schemas import (
    NPK,
    ChatMessage,
    CropRecommendation,
    DiseaseDetection,
    FarmData,
    FarmDataUpdate,
    ForecastDay,
    GeoPoint,
    InsertChatMessage,
    InsertCropRecommendation,
    InsertDiseaseDetection,
    InsertFarmData,
    InsertMarketData,
    InsertSatelliteData,
    InsertUser,
    InsertWeatherData,
    MarketData,
    SatelliteData,
    SoilData,
    User,
    WeatherData,
)

logger = logging.getLogger(__name__)

DEMO_USER_ID = "demo-user-1"
DEMO_FARM_ID = "demo-farm-1"


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Storage(ABC):
    # users
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    async def create_user(self, data: InsertUser) -> User: ...

    # farms
    @abstractmethod
    async def get_farm_data(self, user_id: str) -> List[FarmData]: ...

    @abstractmethod
    async def get_farm(self, farm_id: str) -> Optional[FarmData]: ...

    @abstractmethod
    async def create_farm_data(self, data: InsertFarmData) -> FarmData: ...

    @abstractmethod
    async def update_farm_data(self, farm_id: str, updates: FarmDataUpdate) -> Optional[FarmData]: ...

    # crop recommendations
    @abstractmethod
    async def get_crop_recommendations(self, farm_id: str) -> List[CropRecommendation]: ...

    @abstractmethod
    async def create_crop_recommendation(self, data: InsertCropRecommendation) -> CropRecommendation: ...

    # disease detections
    @abstractmethod
    async def get_disease_detections(self, farm_id: str) -> List[DiseaseDetection]: ...

    @abstractmethod
    async def create_disease_detection(self, data: InsertDiseaseDetection) -> DiseaseDetection: ...

    # chat
    @abstractmethod
    async def get_chat_messages(self, user_id: str, limit: int = 50) -> List[ChatMessage]: ...

    @abstractmethod
    async def create_chat_message(self, data: InsertChatMessage) -> ChatMessage: ...

    # satellite, keyed by farm id
    @abstractmethod
    async def get_satellite_data(self, farm_id: str) -> Optional[SatelliteData]: ...

    @abstractmethod
    async def create_or_update_satellite_data(self, data: InsertSatelliteData) -> SatelliteData: ...

    # market, keyed by crop name
    @abstractmethod
    async def get_market_data(self, crop_name: str) -> Optional[MarketData]: ...

    @abstractmethod
    async def create_or_update_market_data(self, data: InsertMarketData) -> MarketData: ...

    # weather, keyed by location
    @abstractmethod
    async def get_weather_data(self, location: str) -> Optional[WeatherData]: ...

    @abstractmethod
    async def create_or_update_weather_data(self, data: InsertWeatherData) -> WeatherData: ...


class MemStorage(Storage):
    """Process-lifetime store backed by dicts keyed on the generated id."""

    COLLECTIONS = ("users", "farms", "recommendations", "detections", "chat", "satellite", "market", "weather")

    def __init__(self, seed: bool = True):
        self._users: Dict[str, User] = {}
        self._farms: Dict[str, FarmData] = {}
        self._recommendations: Dict[str, CropRecommendation] = {}
        self._detections: Dict[str, DiseaseDetection] = {}
        self._chat: Dict[str, ChatMessage] = {}
        self._satellite: Dict[str, SatelliteData] = {}
        self._market: Dict[str, MarketData] = {}
        self._weather: Dict[str, WeatherData] = {}
        self._locks = {name: asyncio.Lock() for name in self.COLLECTIONS}
        if seed:
            self._seed_demo_data()

    def _seed_demo_data(self) -> None:
        now = _now()
        self._users[DEMO_USER_ID] = User(
            id=DEMO_USER_ID,
            username="demo_farmer",
            password="hashed_password",
        )
        self._farms[DEMO_FARM_ID] = FarmData(
            id=DEMO_FARM_ID,
            user_id=DEMO_USER_ID,
            farm_name="Green Valley Farm",
            location=GeoPoint(lat=28.6139, lng=77.2090),
            area=5.2,
            soil_data=SoilData(
                moisture=34,
                ph=6.8,
                npk=NPK(nitrogen=120, phosphorus=45, potassium=78),
                temperature=24.5,
                conductivity=1.2,
                organic_matter=3.8,
            ),
            created_at=now,
        )
        self._satellite["demo-satellite-1"] = SatelliteData(
            id="demo-satellite-1",
            farm_id=DEMO_FARM_ID,
            ndvi=0.72,
            field_boundary=4.8,
            vegetation_health="Healthy vegetation detected",
            last_updated=now,
        )
        self._weather["demo-weather-1"] = WeatherData(
            id="demo-weather-1",
            location="Delhi, India",
            temperature=32,
            humidity=65,
            condition="Clear sky",
            forecast=[
                ForecastDay(day="Today", high=32, low=24, icon="☀️"),
                ForecastDay(day="Tomorrow", high=30, low=22, icon="⛅"),
                ForecastDay(day="Thu", high=28, low=20, icon="🌧️"),
            ],
            last_updated=now,
        )
        self._market["demo-market-1"] = MarketData(
            id="demo-market-1",
            crop_name="Wheat",
            current_price=2150,
            price_change=5,
            weather_favorability=85,
            risk_assessment="Low",
            last_updated=now,
        )
        logger.debug("seeded demo user %s with farm %s", DEMO_USER_ID, DEMO_FARM_ID)

    # -- users -------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self._users.values() if u.username == username), None)

    async def create_user(self, data: InsertUser) -> User:
        async with self._locks["users"]:
            if any(u.username == data.username for u in self._users.values()):
                raise ValueError("username_taken")
            user = User(id=_new_id(), **dict(data))
            self._users[user.id] = user
            return user

    # -- farms -------------------------------------------------------------

    async def get_farm_data(self, user_id: str) -> List[FarmData]:
        return [f for f in self._farms.values() if f.user_id == user_id]

    async def get_farm(self, farm_id: str) -> Optional[FarmData]:
        return self._farms.get(farm_id)

    async def create_farm_data(self, data: InsertFarmData) -> FarmData:
        async with self._locks["farms"]:
            farm = FarmData(id=_new_id(), created_at=_now(), **dict(data))
            self._farms[farm.id] = farm
            return farm

    async def update_farm_data(self, farm_id: str, updates: FarmDataUpdate) -> Optional[FarmData]:
        async with self._locks["farms"]:
            existing = self._farms.get(farm_id)
            if existing is None:
                return None
            changes = {name: getattr(updates, name) for name in updates.model_fields_set}
            updated = FarmData.model_validate({**dict(existing), **changes})
            self._farms[farm_id] = updated
            return updated

    # -- crop recommendations ----------------------------------------------

    async def get_crop_recommendations(self, farm_id: str) -> List[CropRecommendation]:
        return [r for r in self._recommendations.values() if r.farm_id == farm_id]

    async def create_crop_recommendation(self, data: InsertCropRecommendation) -> CropRecommendation:
        async with self._locks["recommendations"]:
            rec = CropRecommendation(id=_new_id(), created_at=_now(), **dict(data))
            self._recommendations[rec.id] = rec
            return rec

    # -- disease detections ------------------------------------------------

    async def get_disease_detections(self, farm_id: str) -> List[DiseaseDetection]:
        return [d for d in self._detections.values() if d.farm_id == farm_id]

    async def create_disease_detection(self, data: InsertDiseaseDetection) -> DiseaseDetection:
        async with self._locks["detections"]:
            detection = DiseaseDetection(id=_new_id(), created_at=_now(), **dict(data))
            self._detections[detection.id] = detection
            return detection

    # -- chat --------------------------------------------------------------

    async def get_chat_messages(self, user_id: str, limit: int = 50) -> List[ChatMessage]:
        """Return the most recent `limit` messages of a user, oldest first."""
        if limit <= 0:
            return []
        # sorted() is stable, so same-timestamp messages keep insertion order
        messages = sorted(
            (m for m in self._chat.values() if m.user_id == user_id),
            key=lambda m: m.created_at,
        )
        return messages[-limit:]

    async def create_chat_message(self, data: InsertChatMessage) -> ChatMessage:
        async with self._locks["chat"]:
            message = ChatMessage(id=_new_id(), created_at=_now(), **dict(data))
            self._chat[message.id] = message
            return message

    # -- satellite ---------------------------------------------------------

    async def get_satellite_data(self, farm_id: str) -> Optional[SatelliteData]:
        return next((s for s in self._satellite.values() if s.farm_id == farm_id), None)

    async def create_or_update_satellite_data(self, data: InsertSatelliteData) -> SatelliteData:
        async with self._locks["satellite"]:
            existing = next((s for s in self._satellite.values() if s.farm_id == data.farm_id), None)
            return self._upsert(self._satellite, SatelliteData, existing, data)

    # -- market ------------------------------------------------------------

    async def get_market_data(self, crop_name: str) -> Optional[MarketData]:
        wanted = crop_name.lower()
        return next((m for m in self._market.values() if m.crop_name.lower() == wanted), None)

    async def create_or_update_market_data(self, data: InsertMarketData) -> MarketData:
        async with self._locks["market"]:
            wanted = data.crop_name.lower()
            existing = next((m for m in self._market.values() if m.crop_name.lower() == wanted), None)
            return self._upsert(self._market, MarketData, existing, data)

    # -- weather -----------------------------------------------------------

    async def get_weather_data(self, location: str) -> Optional[WeatherData]:
        """First record whose location contains `location`, ignoring case."""
        wanted = location.lower()
        return next((w for w in self._weather.values() if wanted in w.location.lower()), None)

    async def create_or_update_weather_data(self, data: InsertWeatherData) -> WeatherData:
        async with self._locks["weather"]:
            wanted = data.location.lower()
            existing = next((w for w in self._weather.values() if w.location.lower() == wanted), None)
            return self._upsert(self._weather, WeatherData, existing, data)

    @staticmethod
    def _upsert(collection, model, existing, data):
        fields = dict(data)
        if existing is not None:
            updated = existing.model_copy(update={**fields, "last_updated": _now()})
            collection[existing.id] = updated
            return updated
        record = model(id=_new_id(), last_updated=_now(), **fields)
        collection[record.id] = record
        return record
