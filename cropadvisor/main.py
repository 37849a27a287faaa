import asyncio
import base64
import binascii
import hashlib
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from . import auth as auth_module
from .config import Settings, configure_logging
from .errors import (
    BadRequestError,
    ClientDisconnectedError,
    CropAdvisorError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
)
from .schemas import (
    ChatReply,
    ChatRequest,
    DiseaseAnalyzeRequest,
    FarmData,
    FarmDataUpdate,
    GenerateRecommendationsRequest,
    InsertChatMessage,
    InsertCropRecommendation,
    InsertDiseaseDetection,
    InsertFarmData,
    InsertMarketData,
    InsertSatelliteData,
    InsertUser,
    InsertWeatherData,
    LoginRequest,
    MarketData,
    PublicUser,
    RegisterRequest,
    SatelliteData,
    WeatherData,
)
from .services.advisor import CropAdvisor
from .storage import MemStorage, Storage

logger = logging.getLogger(__name__)

T = TypeVar("T")

DATA_URL_PREFIX = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,")
DEFAULT_IMAGE_MIME = "image/jpeg"
IMAGE_EXTENSIONS = {"image/jpeg": ".jpg", "image/jpg": ".jpg", "image/png": ".png", "image/webp": ".webp"}
DISCONNECT_POLL_SECONDS = 0.5

router = APIRouter()


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_advisor(request: Request) -> CropAdvisor:
    return request.app.state.advisor


async def _await_unless_disconnected(request: Request, awaitable: Awaitable[T]) -> T:
    """Await an AI call, cancelling it if the client goes away meanwhile."""
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("client disconnected from %s, cancelling AI call", request.url.path)
                task.cancel()
                raise ClientDisconnectedError()
    finally:
        if not task.done():
            task.cancel()


def _strip_image_data(image_data: str):
    """Split an upload into (base64 payload, mime type, raw bytes)."""
    data = image_data.strip()
    mime_type = DEFAULT_IMAGE_MIME
    match = DATA_URL_PREFIX.match(data)
    if match:
        mime_type = match.group(1).lower()
        data = data[match.end():]
    if not data:
        raise BadRequestError("Image data is required")
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise BadRequestError("Image data is not valid base64")
    return data, mime_type, raw


def _image_reference(raw: bytes, mime_type: str) -> str:
    ext = IMAGE_EXTENSIONS.get(mime_type, ".bin")
    return f"uploads/{hashlib.sha256(raw).hexdigest()[:16]}{ext}"


# =============================================================================
# HEALTH
# =============================================================================

@router.get("/healthz")
def healthz():
    return {"status": "ok"}


# =============================================================================
# DASHBOARD
# =============================================================================

@router.get("/api/dashboard/{user_id}")
async def dashboard(user_id: str, storage: Storage = Depends(get_storage), settings: Settings = Depends(get_settings)):
    farms = await storage.get_farm_data(user_id)
    if not farms:
        raise NotFoundError("No farm data found")

    farm = farms[0]
    return {
        "farm": farm,
        "soilData": farm.soil_data,
        "satelliteData": await storage.get_satellite_data(farm.id),
        "weatherData": await storage.get_weather_data(settings.default_location),
        "marketData": await storage.get_market_data(settings.default_crop),
        "recommendations": await storage.get_crop_recommendations(farm.id),
    }


# =============================================================================
# CROP RECOMMENDATIONS
# =============================================================================

@router.post("/api/recommendations/generate")
async def generate_recommendations(
    req: GenerateRecommendationsRequest,
    request: Request,
    storage: Storage = Depends(get_storage),
    advisor: CropAdvisor = Depends(get_advisor),
    settings: Settings = Depends(get_settings),
):
    farm = await storage.get_farm(req.farm_id)
    if farm is None:
        raise NotFoundError("Farm not found")

    location = req.location or settings.default_location
    weather = await storage.get_weather_data(location)
    market = await storage.get_market_data(settings.default_crop)

    suggestions = await _await_unless_disconnected(
        request,
        advisor.generate_crop_recommendations(
            soil_data=farm.soil_data,
            weather_data=weather,
            market_data=market,
            location=location,
        ),
    )

    # Validate the whole batch before storing any of it
    rows = [InsertCropRecommendation(farm_id=farm.id, **s.model_dump()) for s in suggestions]
    stored = [await storage.create_crop_recommendation(row) for row in rows]
    logger.info("stored %d recommendations for farm %s", len(stored), farm.id)
    return {"recommendations": stored}


@router.get("/api/recommendations/{farm_id}")
async def list_recommendations(farm_id: str, storage: Storage = Depends(get_storage)):
    return {"recommendations": await storage.get_crop_recommendations(farm_id)}


# =============================================================================
# DISEASE DETECTION
# =============================================================================

@router.post("/api/disease/analyze")
async def analyze_disease(
    req: DiseaseAnalyzeRequest,
    request: Request,
    storage: Storage = Depends(get_storage),
    advisor: CropAdvisor = Depends(get_advisor),
):
    base64_image, mime_type, raw = _strip_image_data(req.image_data)

    farm = await storage.get_farm(req.farm_id)
    if farm is None:
        raise NotFoundError("Farm not found")

    analysis = await _await_unless_disconnected(
        request, advisor.analyze_disease_from_image(base64_image, mime_type=mime_type)
    )

    detection = await storage.create_disease_detection(InsertDiseaseDetection(
        farm_id=farm.id,
        image_path=_image_reference(raw, mime_type),
        disease_name=analysis.disease_name,
        confidence=analysis.confidence,
        severity=analysis.severity,
        treatment=analysis.treatment,
        prevention_tips=analysis.prevention_tips,
    ))
    return {"detection": {**analysis.model_dump(by_alias=True), "id": detection.id}}


@router.get("/api/disease/{farm_id}")
async def list_detections(farm_id: str, storage: Storage = Depends(get_storage)):
    return {"detections": await storage.get_disease_detections(farm_id)}


# =============================================================================
# CHAT
# =============================================================================

@router.post("/api/chat", response_model=ChatReply, response_model_exclude_none=True)
async def chat(
    req: ChatRequest,
    request: Request,
    authorization: Optional[str] = Header(None),
    storage: Storage = Depends(get_storage),
    advisor: CropAdvisor = Depends(get_advisor),
    settings: Settings = Depends(get_settings),
):
    user_id = req.user_id
    if not user_id:
        token_user = auth_module.user_from_authorization(authorization, settings.jwt_secret)
        user_id = token_user["id"] if token_user else settings.default_user_id
    language = req.language or "en"

    context: Dict[str, Any] = {}
    farms = await storage.get_farm_data(user_id)
    if farms:
        context = {
            "farm": farms[0],
            "satelliteData": await storage.get_satellite_data(farms[0].id),
            "weatherData": await storage.get_weather_data(settings.default_location),
        }

    reply = await _await_unless_disconnected(
        request, advisor.generate_chat_response(req.message, context, language)
    )

    await storage.create_chat_message(InsertChatMessage(
        user_id=user_id,
        message=req.message,
        response=reply.response,
        language=language,
    ))
    return reply


@router.get("/api/chat/{user_id}")
async def chat_history(user_id: str, storage: Storage = Depends(get_storage), settings: Settings = Depends(get_settings)):
    messages = await storage.get_chat_messages(user_id, limit=settings.chat_history_limit)
    return {"messages": messages}


# =============================================================================
# MARKET / SATELLITE / WEATHER
# =============================================================================

@router.get("/api/market/{crop_name}")
async def market_analysis(
    crop_name: str,
    request: Request,
    region: str = "India",
    storage: Storage = Depends(get_storage),
    advisor: CropAdvisor = Depends(get_advisor),
):
    market = await storage.get_market_data(crop_name)
    analysis = await _await_unless_disconnected(request, advisor.analyze_market_trends(crop_name, region or "India"))
    return {"marketData": market, "analysis": analysis}


@router.post("/api/market", response_model=MarketData)
async def upsert_market(data: InsertMarketData, storage: Storage = Depends(get_storage)):
    return await storage.create_or_update_market_data(data)


@router.get("/api/satellite/{farm_id}", response_model=SatelliteData)
async def satellite(farm_id: str, storage: Storage = Depends(get_storage)):
    record = await storage.get_satellite_data(farm_id)
    if record is None:
        raise NotFoundError("No satellite data found")
    return record


@router.post("/api/satellite", response_model=SatelliteData)
async def upsert_satellite(data: InsertSatelliteData, storage: Storage = Depends(get_storage)):
    if await storage.get_farm(data.farm_id) is None:
        raise NotFoundError("Farm not found")
    return await storage.create_or_update_satellite_data(data)


@router.get("/api/weather/{location}", response_model=WeatherData)
async def weather(location: str, storage: Storage = Depends(get_storage)):
    record = await storage.get_weather_data(location)
    if record is None:
        raise NotFoundError("No weather data found")
    return record


@router.post("/api/weather", response_model=WeatherData)
async def upsert_weather(data: InsertWeatherData, storage: Storage = Depends(get_storage)):
    return await storage.create_or_update_weather_data(data)


# =============================================================================
# FARMS
# =============================================================================

@router.post("/api/farms", response_model=FarmData)
async def create_farm(data: InsertFarmData, storage: Storage = Depends(get_storage)):
    if await storage.get_user(data.user_id) is None:
        raise NotFoundError("User not found")
    return await storage.create_farm_data(data)


@router.get("/api/farms/{user_id}")
async def list_farms(user_id: str, storage: Storage = Depends(get_storage)):
    return {"farms": await storage.get_farm_data(user_id)}


@router.patch("/api/farms/{farm_id}", response_model=FarmData)
async def update_farm(farm_id: str, updates: FarmDataUpdate, storage: Storage = Depends(get_storage)):
    if updates.user_id is not None and await storage.get_user(updates.user_id) is None:
        raise NotFoundError("User not found")
    farm = await storage.update_farm_data(farm_id, updates)
    if farm is None:
        raise NotFoundError("Farm not found")
    return farm


# =============================================================================
# USERS
# =============================================================================

def _public(user) -> Dict[str, Any]:
    return PublicUser(id=user.id, username=user.username).model_dump(by_alias=True)


@router.post("/api/register")
async def register(req: RegisterRequest, storage: Storage = Depends(get_storage), settings: Settings = Depends(get_settings)):
    try:
        user = await storage.create_user(InsertUser(
            username=req.username,
            password=auth_module.hash_password(req.password),
        ))
    except ValueError as e:
        if str(e) == "username_taken":
            raise BadRequestError("username already exists")
        raise
    public = _public(user)
    token = auth_module.create_access_token(public, settings.jwt_secret, settings.jwt_expires_days)
    return {"user": public, "token": token}


@router.post("/api/login")
async def login(req: LoginRequest, storage: Storage = Depends(get_storage), settings: Settings = Depends(get_settings)):
    user = await storage.get_user_by_username(req.username)
    if user is None or not auth_module.verify_password(req.password, user.password):
        raise UnauthorizedError("invalid_credentials")
    public = _public(user)
    token = auth_module.create_access_token(public, settings.jwt_secret, settings.jwt_expires_days)
    return {"user": public, "token": token}


# =============================================================================
# ERROR HANDLING
# =============================================================================

def _describe_validation_errors(errors: List[Dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        parts.append(f"{'.'.join(loc) or 'body'}: {err.get('msg', 'invalid')}")
    return "; ".join(parts) or "Invalid request"


async def _handle_app_error(request: Request, exc: CropAdvisorError):
    if isinstance(exc, UpstreamError):
        logger.error("%s %s -> %s (%s)", request.method, request.url.path, exc.message, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def _handle_request_validation(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"message": _describe_validation_errors(exc.errors())})


async def _handle_http_exception(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=exc.headers)


async def _handle_unexpected(request: Request, exc: Exception):
    logger.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    advisor: Optional[CropAdvisor] = None,
) -> FastAPI:
    """Build the API. Missing collaborators are created from `settings`.

    Without explicit settings the environment is read and a missing
    OPENAI_API_KEY aborts startup with `ConfigError`.
    """
    if settings is None:
        settings = Settings.from_env()
    configure_logging(settings.log_level)

    owns_advisor = advisor is None
    if advisor is None:
        advisor = CropAdvisor.from_settings(settings)
    if storage is None:
        storage = MemStorage()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("CropAdvisor API starting (model=%s)", settings.openai_model)
        yield
        if owns_advisor:
            await advisor.aclose()

    app = FastAPI(title="AI CropAdvisor API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.advisor = advisor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CropAdvisorError, _handle_app_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(Exception, _handle_unexpected)

    app.include_router(router)
    return app


def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run("cropadvisor.main:create_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
