from __future__ import annotations

from typing import Any, List, Optional


class TuristikError(RuntimeError):
    """Base error for itinerary generation failures."""

    kind = "Error"
    user_message = "Ocurrió un error inesperado. Inténtalo de nuevo."

    def __init__(self, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message or self.user_message)
        self.detail = detail

    @property
    def message(self) -> str:
        return str(self)


class InvalidInputError(TuristikError, ValueError):
    kind = "InvalidInput"
    user_message = "Selecciona al menos un lugar para generar el itinerario."


class PreferenceFetchFailed(TuristikError):
    """Raised when stored answers cannot be loaded. Safe to retry."""

    kind = "PreferenceFetchFailed"
    user_message = "No se pudieron cargar tus preferencias."
    retryable = True


class RecommendationFailed(TuristikError):
    kind = "RecommendationFailed"
    user_message = "No se pudo obtener una recomendación de lugares."


class GenerativeError(TuristikError):
    kind = "GenerativeError"
    user_message = "No se pudo generar el itinerario en este momento."


class GenerativeConfigError(GenerativeError):
    kind = "ConfigError"


class GenerativeNetworkError(GenerativeError):
    kind = "NetworkError"
    user_message = "No hay conexión con el servicio de itinerarios."


class GenerativeTimeout(GenerativeError):
    kind = "Timeout"
    user_message = "El servicio de itinerarios tardó demasiado en responder."


class GenerativeHttpError(GenerativeError):
    kind = "HttpError"

    def __init__(self, status: int, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message or f"Generative endpoint returned HTTP {status}", detail=detail)
        self.status = status


class EmptyResponse(GenerativeError):
    kind = "EmptyResponse"
    user_message = "El servicio de itinerarios no devolvió contenido."


class StoreRequestError(TuristikError):
    """A single call against the persistence API failed."""

    kind = "StoreRequestError"


class HistoryFetchFailed(TuristikError):
    kind = "HistoryFetchFailed"
    user_message = "No se pudo cargar tu historial de itinerarios."


class PersistenceError(TuristikError):
    user_message = "El itinerario no se pudo guardar por completo."

    def __init__(
        self,
        message: str = "",
        *,
        route_id: Optional[int] = None,
        place_ids: Optional[List[Optional[int]]] = None,
        link_outcomes: Optional[List[Any]] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message, detail=detail)
        self.route_id = route_id
        self.place_ids = list(place_ids or [])
        self.link_outcomes = list(link_outcomes or [])


class RouteSaveFailed(PersistenceError):
    kind = "RouteSaveFailed"
    user_message = "No se pudo guardar la ruta."


class PlacesSaveFailed(PersistenceError):
    kind = "PlacesSaveFailed"


class LinksSaveFailed(PersistenceError):
    kind = "LinksSaveFailed"
