from __future__ import annotations

import logging
from functools import lru_cache
from typing import Callable

from fastapi import Body, Depends, FastAPI, Path
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import Settings
from .errors import HistoryFetchFailed
from .models import PlaceCandidate
from .parser import parse_itinerary
from .persistence import RestItineraryStore
from .pipeline import ItineraryPipeline
from .user_context import StaticUserContext, UserContextProvider

API_PREFIX = "/api/v1"

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


app = FastAPI(title="Turistik Itinerary API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ItineraryRequest(BaseModel):
    userId: int = Field(gt=0)
    places: list[PlaceCandidate]

    @field_validator("places")
    @classmethod
    def ensure_places(cls, value: list[PlaceCandidate]) -> list[PlaceCandidate]:
        if not value:
            raise ValueError("Select at least one place")
        return value


class ParseRequest(BaseModel):
    text: str


PipelineFactory = Callable[[UserContextProvider], ItineraryPipeline]


def get_pipeline_factory() -> PipelineFactory:
    settings = get_settings()
    return lambda user_context: ItineraryPipeline.from_settings(settings, user_context)


def get_history_store() -> RestItineraryStore:
    settings = get_settings()
    return RestItineraryStore(settings.api_base_url, timeout=settings.timeout_short)


@app.get(f"{API_PREFIX}/health")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.post(f"{API_PREFIX}/itinerary")
async def generate_itinerary(
    request: ItineraryRequest = Body(...),
    build_pipeline: PipelineFactory = Depends(get_pipeline_factory),
):
    pipeline = build_pipeline(StaticUserContext(request.userId))
    result = await pipeline.run(request.places)
    if result.failure is None:
        return JSONResponse(result.to_response())
    status_code = 422 if result.failure.kind == "InvalidInput" else 502
    return JSONResponse(result.to_response(), status_code=status_code)


@app.post(f"{API_PREFIX}/itinerary/parse")
def parse_raw_itinerary(request: ParseRequest = Body(...)):
    parsed = parse_itinerary(request.text, strict_order=get_settings().strict_place_order)
    if not parsed.ok:
        logger.warning("Stored itinerary text could not be parsed: %s", parsed.failure.message)
        return JSONResponse(parsed.failure.model_dump(), status_code=422)
    return JSONResponse(parsed.itinerary.model_dump())


@app.get(f"{API_PREFIX}/itinerary/history/{{user_id}}")
async def itinerary_history(
    user_id: int = Path(gt=0),
    store: RestItineraryStore = Depends(get_history_store),
):
    try:
        history = await store.fetch_history(user_id)
    except HistoryFetchFailed as exc:
        logger.error("Itinerary history for user %s failed: %s", user_id, exc, exc_info=True)
        return JSONResponse(
            {"kind": exc.kind, "message": exc.user_message, "detail": exc.detail or str(exc)},
            status_code=502,
        )
    return JSONResponse([entry.model_dump() for entry in history])
