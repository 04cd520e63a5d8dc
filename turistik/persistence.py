import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import TIMEOUT_SHORT
from .errors import HistoryFetchFailed, LinksSaveFailed, PlacesSaveFailed, RouteSaveFailed, StoreRequestError
from .models import (
    HistoricalItinerary,
    Itinerary,
    ItineraryMetadata,
    ItineraryPlace,
    LinkOutcome,
    PersistedRoute,
    PersistenceResult,
    PlaceInRoute,
)
from .parser import parse_place

logger = logging.getLogger(__name__)


def _first_int(record: Any, *keys: str) -> Optional[int]:
    if not isinstance(record, dict):
        return None
    for key in keys:
        value = record.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return value if isinstance(value, dict) else {}


def _route_metadata(route: Dict[str, Any]) -> ItineraryMetadata:
    start, _, end = str(route.get("coordinates") or "").partition(";")
    return ItineraryMetadata(
        title=str(route.get("name") or ""),
        generalDescription=str(route.get("description") or ""),
        totalDuration=str(route.get("duration") or ""),
        totalDistance=str(route.get("distance") or ""),
        startCoordinate=start,
        endCoordinate=end,
    )


def rebuild_history(rows: Sequence[Any]) -> List[HistoricalItinerary]:
    """Group detailed place-in-route rows by route and rebuild each itinerary.

    A row's place fields are read from the tourist place's stored data at the
    row's ``Order_Number``. Rows whose order has no stored entry are dropped.
    Routes keep the order in which they first appear.
    """
    routes: Dict[int, Dict[str, Any]] = {}
    places: Dict[int, Dict[int, ItineraryPlace]] = {}
    for row in rows:
        route_id = _first_int(row, "Route_ID")
        order = _first_int(row, "Order_Number")
        if route_id is None or order is None or order < 1:
            logger.warning("Skipping history row without route or order: %s", row)
            continue
        routes.setdefault(route_id, _as_dict(row.get("route")))
        route_places = places.setdefault(route_id, {})
        place = _as_dict(row.get("place"))
        data = _as_dict(place.get("data", place.get("Raw_data")))
        parsed = parse_place(order, data.get(str(order)))
        if parsed is None:
            logger.warning("Route %s has no stored place for order %s", route_id, order)
            continue
        route_places.setdefault(order, parsed)

    history = []
    for route_id, route in routes.items():
        ordered = sorted(places[route_id].values(), key=lambda item: item.order)
        itinerary = Itinerary(
            metadata=_route_metadata(route),
            places={str(item.order): item for item in ordered},
        )
        history.append(
            HistoricalItinerary(
                routeId=route_id,
                registeredAt=str(route.get("registration_date") or ""),
                itinerary=itinerary,
            )
        )
    return history


class RestItineraryStore:
    """Routes, tourist places and place-in-route links on the Turistik API.

    All places of one itinerary are written as a single tourist-place record
    whose ``Raw_data`` is keyed by order. When the API answers with one
    record, every order maps to that record's id.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = TIMEOUT_SHORT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=payload, headers={"accept": "application/json"})
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise StoreRequestError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise StoreRequestError(
                f"{method} {path} returned HTTP {response.status_code}",
                detail=response.text[:2000],
            )
        try:
            return response.json()
        except ValueError as exc:
            raise StoreRequestError(f"{method} {path} returned a non-JSON body") from exc

    async def create_route(self, user_id: int, itinerary: Itinerary) -> PersistedRoute:
        metadata = itinerary.metadata
        route = PersistedRoute(
            routeId=0,
            userId=user_id,
            name=metadata.title,
            description=metadata.generalDescription,
            duration=metadata.totalDuration,
            distance=metadata.totalDistance,
            coordinates=f"{metadata.startCoordinate};{metadata.endCoordinate}",
        )
        data = await self._request(
            "POST",
            "/api/routes",
            {
                "User_ID": route.userId,
                "Route_Name": route.name,
                "Description": route.description,
                "Duration": route.duration,
                "Distance": route.distance,
                "Coordinates": route.coordinates,
            },
        )
        route_id = _first_int(data, "Route_ID", "id")
        if route_id is None:
            raise StoreRequestError("Route response has no Route_ID", detail=str(data)[:2000])
        return route.model_copy(update={"routeId": route_id})

    async def create_places(self, route_id: int, places: Sequence[ItineraryPlace]) -> List[Optional[int]]:
        data = await self._request(
            "POST",
            "/api/touristPlaces",
            {
                "Places": f"Route {route_id} places",
                "Raw_data": {str(place.order): place.to_payload() for place in places},
                "Category": "Tourist Places",
                "Location": "Route Places",
                "Image": "",
                "Coordinates": "",
            },
        )
        records = data if isinstance(data, list) else [data]
        ids = [_first_int(record, "TouristPlace_ID", "id") for record in records]
        if len(ids) == 1:
            return ids * len(places)
        return (ids + [None] * len(places))[: len(places)]

    async def create_link(self, link: PlaceInRoute) -> PlaceInRoute:
        await self._request(
            "POST",
            "/api/placesInRoutes",
            {
                "Route_ID": link.routeId,
                "TouristPlace_ID": link.placeId,
                "Order_Number": link.orderNumber,
            },
        )
        return link

    async def fetch_history(self, user_id: int) -> List[HistoricalItinerary]:
        try:
            rows = await self._request("GET", f"/api/placesInRoutes/detailed/{user_id}")
        except StoreRequestError as exc:
            raise HistoryFetchFailed(str(exc), detail=exc.detail) from exc
        if not isinstance(rows, list):
            raise HistoryFetchFailed("History response is not a list", detail=str(rows)[:2000])
        return rebuild_history(rows)


class ItineraryPersistence:
    """Writes route, places and links in that order."""

    def __init__(self, store: RestItineraryStore):
        self.store = store

    async def _save_link(self, link: PlaceInRoute) -> LinkOutcome:
        try:
            await self.store.create_link(link)
        except StoreRequestError as exc:
            logger.warning("Link for route %s order %s failed: %s", link.routeId, link.orderNumber, exc)
            return LinkOutcome(orderNumber=link.orderNumber, placeId=link.placeId, ok=False, error=str(exc))
        return LinkOutcome(orderNumber=link.orderNumber, placeId=link.placeId, ok=True)

    async def save(self, itinerary: Itinerary, user_id: int) -> PersistenceResult:
        try:
            route = await self.store.create_route(user_id, itinerary)
        except StoreRequestError as exc:
            raise RouteSaveFailed(str(exc), detail=exc.detail) from exc
        logger.info("Saved route %s for user %s", route.routeId, user_id)

        ordered = itinerary.ordered_places()
        order_numbers = [place.order for place in ordered]
        try:
            place_ids = await self.store.create_places(route.routeId, ordered)
        except StoreRequestError as exc:
            raise PlacesSaveFailed(str(exc), route_id=route.routeId, detail=exc.detail) from exc
        if len(place_ids) != len(ordered):
            raise PlacesSaveFailed(
                f"Expected {len(ordered)} place ids, got {len(place_ids)}",
                route_id=route.routeId,
            )
        if all(place_id is None for place_id in place_ids):
            raise PlacesSaveFailed("Place write returned no identifiers", route_id=route.routeId)

        links = [
            PlaceInRoute(routeId=route.routeId, placeId=place_id, orderNumber=order)
            for order, place_id in zip(order_numbers, place_ids)
            if place_id is not None
        ]
        outcomes = list(await asyncio.gather(*(self._save_link(link) for link in links)))
        if not any(outcome.ok for outcome in outcomes):
            raise LinksSaveFailed(
                f"All {len(outcomes)} place-in-route writes failed",
                route_id=route.routeId,
                place_ids=place_ids,
                link_outcomes=outcomes,
            )

        result = PersistenceResult(
            routeId=route.routeId,
            orderNumbers=order_numbers,
            placeIds=place_ids,
            links=outcomes,
        )
        if not result.complete:
            logger.warning(
                "Route %s partially persisted: %d/%d places, %d failed links",
                route.routeId,
                sum(place_id is not None for place_id in place_ids),
                len(place_ids),
                len(result.failed_links),
            )
        return result
