from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class PlaceCandidate(BaseModel):
    """A place the user picked on the map."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(min_length=1)
    description: str = ""
    coordinates: Optional[Coordinates] = None


class PreferenceAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    questionText: str
    answerValue: str
    questionId: Optional[int] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PreferenceAnswer":
        question_id = record.get("Question_ID")
        return cls(
            questionText=str(record.get("Question_Text") or ""),
            answerValue=str(record.get("Answer") or ""),
            questionId=question_id if isinstance(question_id, int) else None,
        )


class PreferenceTuple(BaseModel):
    """Six normalized answers, in the order the recommendation service expects.

    The slot order is positional and shared with the external recommendation
    endpoint (transporte, gastronomia, presupuesto, acompanado, actividad,
    comida). Reordering the slots breaks that service.
    """

    model_config = ConfigDict(frozen=True)

    SLOTS: ClassVar[Tuple[str, ...]] = (
        "transport",
        "diet",
        "budget",
        "companionship",
        "activityLevel",
        "foodInclusion",
    )
    RECOMMENDATION_KEYS: ClassVar[Tuple[str, ...]] = (
        "transporte",
        "gastronomia",
        "presupuesto",
        "acompanado",
        "actividad",
        "comida",
    )

    transport: str = ""
    diet: str = ""
    budget: str = ""
    companionship: str = ""
    activityLevel: str = ""
    foodInclusion: str = ""

    @classmethod
    def from_values(cls, values: List[str]) -> "PreferenceTuple":
        padded = list(values[: len(cls.SLOTS)]) + [""] * (len(cls.SLOTS) - len(values))
        return cls(**dict(zip(cls.SLOTS, padded)))

    def values(self) -> Tuple[str, ...]:
        return tuple(getattr(self, slot) for slot in self.SLOTS)

    def is_empty(self) -> bool:
        return not any(self.values())

    def as_recommendation_payload(self) -> Dict[str, str]:
        return dict(zip(self.RECOMMENDATION_KEYS, self.values()))


class ItineraryMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    generalDescription: str = ""
    totalDuration: str = ""
    totalDistance: str = ""
    startCoordinate: str = ""
    endCoordinate: str = ""

    def to_payload(self) -> Dict[str, str]:
        return {
            "titulo": self.title,
            "descripcion_general": self.generalDescription,
            "total_duracion": self.totalDuration,
            "total_distancia": self.totalDistance,
            "coordenada_start": self.startCoordinate,
            "coordenada_end": self.endCoordinate,
        }


class ItineraryPlace(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: int = Field(ge=1)
    name: str
    averageCost: str = ""
    recommendations: str = ""
    notes: str = ""
    coordinates: str = ""

    def to_payload(self) -> Dict[str, str]:
        return {
            "nombre": self.name,
            "costo_promedio": self.averageCost,
            "recomendaciones": self.recommendations,
            "notas": self.notes,
            "coordenadas": self.coordinates,
        }


class Itinerary(BaseModel):
    model_config = ConfigDict(frozen=True)

    metadata: ItineraryMetadata
    places: Dict[str, ItineraryPlace]

    def ordered_places(self) -> List[ItineraryPlace]:
        return sorted(self.places.values(), key=lambda place: place.order)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize back into the shape the model is asked to produce."""
        return {
            "metadata": self.metadata.to_payload(),
            "lugares": {str(place.order): place.to_payload() for place in self.ordered_places()},
        }


class ParseFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["SyntaxError", "SchemaError"]
    message: str
    originalText: str


class ParseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    itinerary: Optional[Itinerary] = None
    failure: Optional[ParseFailure] = None

    @property
    def ok(self) -> bool:
        return self.itinerary is not None

    @classmethod
    def success(cls, itinerary: Itinerary) -> "ParseResult":
        return cls(itinerary=itinerary)

    @classmethod
    def fail(cls, kind: str, message: str, original_text: str) -> "ParseResult":
        return cls(failure=ParseFailure(kind=kind, message=message, originalText=original_text))


class PlaceTypeScore(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    placeType: str = Field(alias="place_type")
    probability: float = Field(alias="probabilidad")


class Recommendation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recommendations: List[PlaceTypeScore] = Field(default_factory=list, alias="recomendaciones")
    finalRecommendation: Optional[str] = Field(default=None, alias="recomendacion_final")


class PersistedRoute(BaseModel):
    routeId: int
    userId: int
    name: str
    description: str = ""
    duration: str = ""
    distance: str = ""
    coordinates: str = ""


class PlaceInRoute(BaseModel):
    routeId: int
    placeId: int
    orderNumber: int = Field(ge=1)


class LinkOutcome(BaseModel):
    orderNumber: int
    placeId: int
    ok: bool
    error: Optional[str] = None


class HistoricalItinerary(BaseModel):
    """A saved route rebuilt from its place-in-route rows."""

    model_config = ConfigDict(frozen=True)

    routeId: int
    registeredAt: str = ""
    itinerary: Itinerary


class PersistenceResult(BaseModel):
    routeId: int
    orderNumbers: List[int]
    # Aligned with orderNumbers; None where the place write produced no id.
    placeIds: List[Optional[int]]
    links: List[LinkOutcome] = Field(default_factory=list)

    @property
    def failed_links(self) -> List[LinkOutcome]:
        return [link for link in self.links if not link.ok]

    @property
    def complete(self) -> bool:
        return (
            all(place_id is not None for place_id in self.placeIds)
            and len(self.links) == len(self.orderNumbers)
            and not self.failed_links
        )
