import logging
import re
import unicodedata
from typing import Any, Iterable, List, Optional

import httpx

from .config import TIMEOUT_SHORT
from .errors import InvalidInputError, PreferenceFetchFailed
from .models import PreferenceAnswer, PreferenceTuple

logger = logging.getLogger(__name__)

NO_ANSWERS_SUMMARY = "No hay respuestas registradas."

_DISALLOWED = re.compile(r"[^a-z0-9 ]")


def normalize(value: str) -> str:
    """Lower-case, strip accents, keep only ``[a-z0-9 ]`` and trim.

    >>> normalize("Sí")
    'si'
    """
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _DISALLOWED.sub("", stripped).strip()


def validate_user_id(user_id: Any) -> int:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        raise InvalidInputError(f"userId must be a positive integer, got {user_id!r}")
    return user_id


def order_answers(answers: Iterable[PreferenceAnswer]) -> List[PreferenceAnswer]:
    # Answers with a question id follow the question order; the rest keep fetch order.
    indexed = list(enumerate(answers))
    indexed.sort(key=lambda pair: (pair[1].questionId is None, pair[1].questionId or 0, pair[0]))
    return [answer for _, answer in indexed]


def reduce_answers(answers: Iterable[PreferenceAnswer]) -> PreferenceTuple:
    ordered = order_answers(answers)
    return PreferenceTuple.from_values([normalize(answer.answerValue) for answer in ordered])


def summarize_answers(answers: Iterable[PreferenceAnswer]) -> str:
    pairs = [f"{answer.questionText}: {answer.answerValue}" for answer in order_answers(answers)]
    return "; ".join(pairs) if pairs else NO_ANSWERS_SUMMARY


class AnswerSource:
    """Reads a user's stored answers from the Turistik API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = TIMEOUT_SHORT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def fetch_answers(self, user_id: int) -> List[PreferenceAnswer]:
        url = f"{self.base_url}/api/answers/me"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params={"userId": user_id})
            response.raise_for_status()
            records = response.json()
        except httpx.TimeoutException as exc:
            raise PreferenceFetchFailed(f"Timed out loading answers for user {user_id}") from exc
        except httpx.HTTPStatusError as exc:
            raise PreferenceFetchFailed(
                f"Answers request failed ({exc.response.status_code})",
                detail=exc.response.text,
            ) from exc
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise PreferenceFetchFailed(f"Network error loading answers: {exc}") from exc
        except ValueError as exc:
            raise PreferenceFetchFailed("Answers response is not valid JSON") from exc

        if not isinstance(records, list):
            raise PreferenceFetchFailed("Answers response is not a list")
        return [PreferenceAnswer.from_record(item) for item in records if isinstance(item, dict)]


class PreferenceAggregator:
    def __init__(self, source: AnswerSource):
        self.source = source

    async def fetch(self, user_id: int) -> List[PreferenceAnswer]:
        validate_user_id(user_id)
        answers = await self.source.fetch_answers(user_id)
        logger.info("Loaded %d stored answers for user %s", len(answers), user_id)
        return answers

    async def aggregate(self, user_id: int) -> PreferenceTuple:
        return reduce_answers(await self.fetch(user_id))
