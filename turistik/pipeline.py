from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field

from .config import DEFAULT_LANGUAGE, Settings
from .errors import (
    GenerativeError,
    InvalidInputError,
    LinksSaveFailed,
    PlacesSaveFailed,
    PreferenceFetchFailed,
    RecommendationFailed,
    RouteSaveFailed,
    TuristikError,
)
from .generative import build_generative_client, extract_candidate_text
from .models import Itinerary, PlaceCandidate, PreferenceAnswer, PreferenceTuple
from .parser import parse_itinerary
from .persistence import ItineraryPersistence, RestItineraryStore
from .preferences import (
    AnswerSource,
    PreferenceAggregator,
    reduce_answers,
    summarize_answers,
    validate_user_id,
)
from .prompt import build_prompt
from .recommendation import RecommendationClient
from .user_context import UserContextProvider

logger = logging.getLogger(__name__)

PARSE_USER_MESSAGES = {
    "SyntaxError": "El resultado no tiene el formato esperado.",
    "SchemaError": "El itinerario generado está incompleto.",
}


class PipelineStage(str, Enum):
    IDLE = "Idle"
    FETCHING_PREFERENCES = "FetchingPreferences"
    COMPOSING = "Composing"
    GENERATING = "Generating"
    PARSING = "Parsing"
    PERSISTING = "Persisting"
    DONE = "Done"
    FAILED = "Failed"


class PipelineFailure(BaseModel):
    stage: PipelineStage
    kind: str
    message: str
    detail: Optional[str] = None


class PipelineResult(BaseModel):
    status: Literal["Done", "PartiallyPersisted", "Failed"]
    itinerary: Optional[Itinerary] = None
    routeId: Optional[int] = None
    placeIds: List[Optional[int]] = Field(default_factory=list)
    failure: Optional[PipelineFailure] = None
    warnings: List[str] = Field(default_factory=list)
    stages: List[PipelineStage] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status != "Failed"

    def to_response(self) -> Dict[str, Any]:
        if self.failure is not None:
            return self.failure.model_dump(mode="json")
        body = self.itinerary.model_dump() if self.itinerary else {"metadata": {}, "places": {}}
        return {
            **body,
            "routeId": self.routeId,
            "status": self.status,
            "warnings": self.warnings,
        }


class _Run:
    """Mutable bookkeeping for a single pipeline invocation."""

    def __init__(self) -> None:
        self.stages: List[PipelineStage] = [PipelineStage.IDLE]
        self.warnings: List[str] = []

    @property
    def stage(self) -> PipelineStage:
        return self.stages[-1]

    def enter(self, stage: PipelineStage) -> None:
        logger.info("Itinerary pipeline: %s -> %s", self.stage.value, stage.value)
        self.stages.append(stage)

    def fail(self, kind: str, message: str, detail: Optional[str] = None) -> PipelineResult:
        failure = PipelineFailure(stage=self.stage, kind=kind, message=message, detail=detail)
        logger.error("Itinerary pipeline failed at %s: %s (%s)", failure.stage.value, kind, detail or message)
        self.stages.append(PipelineStage.FAILED)
        return PipelineResult(status="Failed", failure=failure, warnings=self.warnings, stages=self.stages)

    def fail_with(self, exc: TuristikError) -> PipelineResult:
        return self.fail(exc.kind, exc.user_message, exc.detail or str(exc))


class ItineraryPipeline:
    """Preferences -> prompt -> generation -> parsing -> persistence.

    Every stage is attempted once. Preference and recommendation failures
    degrade personalization; generation, parsing and route persistence
    failures end the run. Cancelling the awaiting task cancels whichever
    network call is in flight; stages already persisted are not rolled back.
    """

    def __init__(
        self,
        user_context: UserContextProvider,
        aggregator: PreferenceAggregator,
        generator: Any,
        persistence: ItineraryPersistence,
        recommender: Optional[RecommendationClient] = None,
        strict_order: bool = False,
        language: str = DEFAULT_LANGUAGE,
    ):
        self.user_context = user_context
        self.aggregator = aggregator
        self.generator = generator
        self.persistence = persistence
        self.recommender = recommender
        self.strict_order = strict_order
        self.language = language

    @classmethod
    def from_settings(cls, settings: Settings, user_context: UserContextProvider) -> "ItineraryPipeline":
        recommender = None
        if settings.recommendation_url:
            recommender = RecommendationClient(settings.recommendation_url, timeout=settings.timeout_medium)
        return cls(
            user_context=user_context,
            aggregator=PreferenceAggregator(AnswerSource(settings.api_base_url, timeout=settings.timeout_short)),
            generator=build_generative_client(settings),
            persistence=ItineraryPersistence(RestItineraryStore(settings.api_base_url, timeout=settings.timeout_short)),
            recommender=recommender,
            strict_order=settings.strict_place_order,
            language=settings.response_language,
        )

    async def _load_preferences(self, run: _Run, user_id: int) -> List[PreferenceAnswer]:
        try:
            return await self.aggregator.fetch(user_id)
        except PreferenceFetchFailed as exc:
            logger.warning("Continuing without stored preferences: %s", exc, exc_info=True)
            run.warnings.append(exc.kind)
            return []

    async def _recommend(self, run: _Run, preferences: PreferenceTuple) -> Optional[str]:
        if self.recommender is None or preferences.is_empty():
            return None
        try:
            recommendation = await self.recommender.recommend(preferences)
        except RecommendationFailed as exc:
            logger.warning("Continuing without place-type recommendation: %s", exc, exc_info=True)
            run.warnings.append(exc.kind)
            return None
        return recommendation.finalRecommendation

    async def run(self, places: Sequence[PlaceCandidate]) -> PipelineResult:
        run = _Run()
        places = list(places)
        try:
            if not places:
                raise InvalidInputError("At least one place is required")
            user_id = validate_user_id(await self.user_context.get_user_id())
        except InvalidInputError as exc:
            return run.fail(exc.kind, exc.user_message, str(exc))

        try:
            return await self._run(run, places, user_id)
        except asyncio.CancelledError:
            logger.info("Itinerary pipeline cancelled during %s; result discarded", run.stage.value)
            raise

    async def _run(self, run: _Run, places: List[PlaceCandidate], user_id: int) -> PipelineResult:
        run.enter(PipelineStage.FETCHING_PREFERENCES)
        answers = await self._load_preferences(run, user_id)
        preferences = reduce_answers(answers)
        recommended_type = await self._recommend(run, preferences)

        run.enter(PipelineStage.COMPOSING)
        prompt = build_prompt(
            places,
            summarize_answers(answers),
            language=self.language,
            recommended_type=recommended_type,
        )

        run.enter(PipelineStage.GENERATING)
        try:
            envelope = await self.generator.generate(prompt)
            raw_text = extract_candidate_text(envelope)
        except GenerativeError as exc:
            return run.fail_with(exc)
        logger.debug("Raw itinerary text: %s", raw_text)

        run.enter(PipelineStage.PARSING)
        parsed = parse_itinerary(raw_text, strict_order=self.strict_order)
        if not parsed.ok:
            failure = parsed.failure
            return run.fail(failure.kind, PARSE_USER_MESSAGES[failure.kind], f"{failure.message}\n\n{failure.originalText}")
        itinerary = parsed.itinerary
        if len(itinerary.places) != len(places):
            logger.warning("Requested %d places, itinerary has %d", len(places), len(itinerary.places))
            run.warnings.append("PlaceCountMismatch")

        run.enter(PipelineStage.PERSISTING)
        try:
            stored = await self.persistence.save(itinerary, user_id)
        except RouteSaveFailed as exc:
            return run.fail_with(exc)
        except (PlacesSaveFailed, LinksSaveFailed) as exc:
            logger.warning("Itinerary %s kept without full persistence: %s", exc.route_id, exc)
            run.warnings.append(exc.kind)
            run.enter(PipelineStage.DONE)
            return PipelineResult(
                status="PartiallyPersisted",
                itinerary=itinerary,
                routeId=exc.route_id,
                placeIds=exc.place_ids,
                warnings=run.warnings,
                stages=run.stages,
            )

        status = "Done"
        if not stored.complete:
            status = "PartiallyPersisted"
            run.warnings.append("LinksSaveFailed" if stored.failed_links else "PlacesSaveFailed")
        run.enter(PipelineStage.DONE)
        return PipelineResult(
            status=status,
            itinerary=itinerary,
            routeId=stored.routeId,
            placeIds=stored.placeIds,
            warnings=run.warnings,
            stages=run.stages,
        )
