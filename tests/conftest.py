import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from turistik.errors import StoreRequestError
from turistik.models import PersistedRoute, PlaceCandidate, PlaceInRoute


def run(coro):
    return asyncio.run(coro)


def fenced(payload: Dict[str, Any]) -> str:
    return "```json\n" + json.dumps(payload, ensure_ascii=False, indent=2) + "\n```"


def envelope(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


def itinerary_payload(count: int = 2) -> Dict[str, Any]:
    names = ["Museo X", "Parque Y", "Mercado Z", "Catedral W"]
    return {
        "metadata": {
            "titulo": "Ruta cultural",
            "descripcion_general": "Un recorrido por el centro.",
            "total_duracion": "4 horas",
            "total_distancia": "3.2 km",
            "coordenada_start": "19.4326,-99.1332",
            "coordenada_end": "19.4200,-99.1800",
        },
        "lugares": {
            str(index): {
                "nombre": names[index - 1],
                "costo_promedio": "$100 MXN",
                "recomendaciones": "Llegar temprano.",
                "notas": "Cerrado los lunes.",
                "coordenadas": "19.43,-99.13",
            }
            for index in range(1, count + 1)
        },
    }


class FakeAnswerSource:
    def __init__(self, answers=None, error: Optional[Exception] = None):
        self.answers = answers or []
        self.error = error
        self.calls: List[int] = []

    async def fetch_answers(self, user_id: int):
        self.calls.append(user_id)
        if self.error is not None:
            raise self.error
        return list(self.answers)


class FakeGenerator:
    def __init__(self, text: Optional[str] = None, error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> Dict[str, Any]:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return envelope(self.text)


class FakeStore:
    def __init__(self, fail_route=False, fail_places=False, place_ids=None, failing_orders=()):
        self.fail_route = fail_route
        self.fail_places = fail_places
        self.place_ids = place_ids
        self.failing_orders = set(failing_orders)
        self.routes: List[PersistedRoute] = []
        self.place_batches: List[List[Any]] = []
        self.links: List[PlaceInRoute] = []

    async def create_route(self, user_id, itinerary):
        if self.fail_route:
            raise StoreRequestError("route rejected")
        route = PersistedRoute(
            routeId=100 + len(self.routes),
            userId=user_id,
            name=itinerary.metadata.title,
        )
        self.routes.append(route)
        return route

    async def create_places(self, route_id, places):
        if self.fail_places:
            raise StoreRequestError("places rejected")
        self.place_batches.append(list(places))
        if self.place_ids is not None:
            return list(self.place_ids)
        return [10 + index for index, _ in enumerate(places)]

    async def create_link(self, link):
        await asyncio.sleep(0)
        if link.orderNumber in self.failing_orders:
            raise StoreRequestError(f"link {link.orderNumber} rejected")
        self.links.append(link)
        return link

    @property
    def calls(self) -> int:
        return len(self.routes) + len(self.place_batches) + len(self.links)


@pytest.fixture
def places():
    return [
        PlaceCandidate(id="p1", name="Museo X"),
        PlaceCandidate(id="p2", name="Parque Y"),
    ]
