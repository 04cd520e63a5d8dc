import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from .config import TIMEOUT_MEDIUM
from .errors import RecommendationFailed
from .models import PreferenceTuple, Recommendation

logger = logging.getLogger(__name__)


class RecommendationClient:
    """Asks the place-type recommender which kind of place suits the user.

    The request body is positional: the six keys must stay in
    ``PreferenceTuple.RECOMMENDATION_KEYS`` order.
    """

    def __init__(
        self,
        url: str,
        timeout: float = TIMEOUT_MEDIUM,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def recommend(self, preferences: PreferenceTuple) -> Recommendation:
        payload = preferences.as_recommendation_payload()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise RecommendationFailed(
                f"Recommendation request failed ({exc.response.status_code})",
                detail=exc.response.text[:2000],
            ) from exc
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise RecommendationFailed(f"Recommendation request failed: {exc}") from exc
        except ValueError as exc:
            raise RecommendationFailed("Recommendation response is not valid JSON") from exc

        try:
            recommendation = Recommendation.model_validate(data)
        except ValidationError as exc:
            raise RecommendationFailed("Unexpected recommendation payload", detail=str(exc)) from exc
        logger.info("Recommended place type: %s", recommendation.finalRecommendation)
        return recommendation
