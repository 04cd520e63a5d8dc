import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import httpx
import google.genai as genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import DEFAULT_GEMINI_MODEL, TIMEOUT_LONG, Settings
from .errors import (
    EmptyResponse,
    GenerativeConfigError,
    GenerativeHttpError,
    GenerativeNetworkError,
    GenerativeTimeout,
)

logger = logging.getLogger(__name__)


def build_request_body(prompt: str) -> Dict[str, Any]:
    return {"contents": [{"parts": [{"text": prompt}]}]}


def extract_candidate_text(envelope: Any) -> str:
    """Return ``candidates[0].content.parts[0].text`` or raise EmptyResponse."""
    candidates = envelope.get("candidates") if isinstance(envelope, dict) else None
    if not isinstance(candidates, list) or not candidates:
        raise EmptyResponse("Response has no candidates")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        raise EmptyResponse("First candidate has no content parts")
    text = parts[0].get("text")
    if not isinstance(text, str) or not text.strip():
        raise EmptyResponse("First candidate part has no text")
    return text


class GeminiRestClient:
    """Calls the Gemini ``generateContent`` REST endpoint. One attempt, no retry."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = TIMEOUT_LONG,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def generate(self, prompt: str) -> Dict[str, Any]:
        if not self.api_key:
            raise GenerativeConfigError("GEMINI_API_KEY is required for the Gemini REST endpoint.")
        logger.info("Gemini request -> %s (%d prompt chars)", self.url, len(prompt))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    params={"key": self.api_key},
                    json=build_request_body(prompt),
                )
        except httpx.TimeoutException as exc:
            raise GenerativeTimeout(f"Gemini did not answer within {self.timeout:.0f}s") from exc
        except httpx.RequestError as exc:
            raise GenerativeNetworkError(f"Gemini request failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise GenerativeConfigError(f"GEMINI_URL is not a valid URL: {exc}", detail=self.url) from exc

        if response.status_code != 200:
            raise GenerativeHttpError(response.status_code, detail=response.text[:2000])
        try:
            envelope = response.json()
        except ValueError as exc:
            raise EmptyResponse("Gemini response body is not JSON", detail=response.text[:2000]) from exc
        extract_candidate_text(envelope)
        return envelope


def _response_texts(response: Any) -> List[str]:
    texts: List[str] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            text = getattr(part, "text", None)
            if text:
                texts.append(text)
        if texts:
            break
    return texts


class VertexGenerativeClient:
    """Same contract as GeminiRestClient, backed by the google-genai SDK on Vertex AI."""

    def __init__(
        self,
        model: str = DEFAULT_GEMINI_MODEL,
        timeout: float = TIMEOUT_LONG,
        client: Optional[genai.Client] = None,
    ):
        self.model = model
        self.timeout = timeout
        self._client = client

    def _genai(self) -> genai.Client:
        if self._client is None:
            os.environ.setdefault("GOOGLE_CLOUD_PROJECT", os.getenv("GCP_PROJECT_ID", ""))
            os.environ.setdefault(
                "GOOGLE_CLOUD_LOCATION",
                os.getenv("GCP_GLOBAL_LOCATION") or os.getenv("GCP_LOCATION") or "global",
            )
            os.environ.setdefault("GOOGLE_GENAI_USE_VERTEXAI", "True")
            self._client = genai.Client(http_options=types.HttpOptions(api_version="v1"))
        return self._client

    async def generate(self, prompt: str) -> Dict[str, Any]:
        try:
            request = self._genai().aio.models.generate_content(
                model=self.model,
                contents=[types.Content(role="user", parts=[types.Part.from_text(text=prompt)])],
                config=types.GenerateContentConfig(
                    automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
                    temperature=0.4,
                    top_p=0.8,
                ),
            )
            response = await asyncio.wait_for(request, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise GenerativeTimeout(f"Vertex AI did not answer within {self.timeout:.0f}s") from exc
        except genai_errors.APIError as exc:
            raise GenerativeHttpError(exc.code or 500, detail=str(exc)) from exc
        except (httpx.RequestError, OSError) as exc:
            raise GenerativeNetworkError(f"Vertex AI request failed: {exc}") from exc
        except Exception as exc:
            # SDK argument checks and missing Google credentials end up here.
            logger.error("Vertex AI client failed: %s", exc, exc_info=True)
            raise GenerativeConfigError(f"Vertex AI client failed: {exc}", detail=repr(exc)) from exc

        texts = _response_texts(response)
        if not texts:
            raw_text = getattr(response, "text", None)
            texts = [raw_text] if isinstance(raw_text, str) and raw_text.strip() else []
        if not texts:
            raise EmptyResponse("Vertex AI returned no text")
        return {"candidates": [{"content": {"parts": [{"text": "".join(texts)}]}}]}


def build_generative_client(settings: Settings):
    if settings.generative_backend == "vertex":
        return VertexGenerativeClient(model=settings.gemini_model, timeout=settings.timeout_long)
    return GeminiRestClient(
        url=settings.generative_url,
        api_key=settings.gemini_api_key,
        timeout=settings.timeout_long,
    )
