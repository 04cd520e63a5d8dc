import asyncio
import json
from types import SimpleNamespace

import google.genai as genai
import httpx
import pytest

from conftest import envelope, run

from turistik.config import Settings
from turistik.errors import (
    EmptyResponse,
    GenerativeConfigError,
    GenerativeHttpError,
    GenerativeNetworkError,
    GenerativeTimeout,
)
from turistik.generative import (
    GeminiRestClient,
    VertexGenerativeClient,
    build_generative_client,
    build_request_body,
    extract_candidate_text,
)

URL = "https://gemini.test/v1beta/models/test:generateContent"


def _client(handler, api_key="secret"):
    return GeminiRestClient(URL, api_key, timeout=5, transport=httpx.MockTransport(handler))


def test_request_body_shape():
    assert build_request_body("hola") == {"contents": [{"parts": [{"text": "hola"}]}]}


def test_rest_client_posts_prompt_and_returns_envelope():
    seen = {}

    def handler(request):
        seen["key"] = request.url.params["key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=envelope("```json\n{}\n```"))

    result = run(_client(handler).generate("hola"))

    assert seen["key"] == "secret"
    assert seen["body"] == build_request_body("hola")
    assert extract_candidate_text(result) == "```json\n{}\n```"


def test_rest_client_http_error_keeps_status():
    client = _client(lambda request: httpx.Response(429, text="quota"))
    with pytest.raises(GenerativeHttpError) as info:
        run(client.generate("hola"))
    assert info.value.status == 429
    assert info.value.detail == "quota"


@pytest.mark.parametrize(
    "error, expected",
    [(httpx.ReadTimeout, GenerativeTimeout), (httpx.ConnectError, GenerativeNetworkError)],
)
def test_rest_client_transport_errors(error, expected):
    def handler(request):
        raise error("nope", request=request)

    with pytest.raises(expected):
        run(_client(handler).generate("hola"))


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"candidates": []},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": [{"content": {"parts": [{"text": "   "}]}}]},
        {"candidates": [{"finishReason": "SAFETY"}]},
    ],
)
def test_rest_client_empty_responses(body):
    with pytest.raises(EmptyResponse):
        run(_client(lambda request: httpx.Response(200, json=body)).generate("hola"))


def test_rest_client_non_json_body():
    with pytest.raises(EmptyResponse):
        run(_client(lambda request: httpx.Response(200, text="<html>")).generate("hola"))


def test_rest_client_requires_api_key():
    calls = []
    client = _client(lambda request: calls.append(request), api_key="")
    with pytest.raises(GenerativeConfigError):
        run(client.generate("hola"))
    assert calls == []


def test_cancelling_generation_aborts_the_request():
    state = {"started": None, "cancelled": False}

    async def handler(request):
        state["started"].set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise
        return httpx.Response(200, json=envelope("{}"))

    async def scenario():
        state["started"] = asyncio.Event()
        task = asyncio.create_task(_client(handler).generate("hola"))
        await state["started"].wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    run(scenario())
    assert state["cancelled"]


class _FakeModels:
    def __init__(self, response=None, delay=0.0):
        self.response = response
        self.delay = delay
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        await asyncio.sleep(self.delay)
        return self.response


def _vertex(models, timeout=5):
    fake = SimpleNamespace(aio=SimpleNamespace(models=models))
    return VertexGenerativeClient(model="gemini-test", timeout=timeout, client=fake)


def test_vertex_client_wraps_text_in_envelope():
    part = SimpleNamespace(text='{"metadata": {}}')
    response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
    models = _FakeModels(response)

    result = run(_vertex(models).generate("hola"))

    assert extract_candidate_text(result) == '{"metadata": {}}'
    assert models.calls[0]["model"] == "gemini-test"


def test_vertex_client_empty_response():
    models = _FakeModels(SimpleNamespace(candidates=[], text=None))
    with pytest.raises(EmptyResponse):
        run(_vertex(models).generate("hola"))


def test_vertex_client_timeout():
    models = _FakeModels(SimpleNamespace(candidates=[]), delay=1.0)
    with pytest.raises(GenerativeTimeout):
        run(_vertex(models, timeout=0.01).generate("hola"))


def test_build_generative_client_selects_backend():
    rest = build_generative_client(Settings(gemini_api_key="k", gemini_model="m"))
    assert isinstance(rest, GeminiRestClient)
    assert rest.url.endswith("/models/m:generateContent")
    assert rest.timeout == 60.0

    vertex = build_generative_client(Settings(generative_backend="vertex", timeout_long=30))
    assert isinstance(vertex, VertexGenerativeClient)
    assert vertex.timeout == 30


class _BrokenModels:
    def __init__(self, error):
        self.error = error

    async def generate_content(self, **kwargs):
        raise self.error


def test_vertex_client_sdk_errors_are_classified():
    with pytest.raises(GenerativeConfigError) as info:
        run(_vertex(_BrokenModels(ValueError("Missing key inputs argument!"))).generate("hola"))
    assert "Missing key inputs" in info.value.detail

    with pytest.raises(GenerativeNetworkError):
        run(_vertex(_BrokenModels(ConnectionResetError("reset"))).generate("hola"))


def test_vertex_client_without_credentials_is_a_config_error(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "")
    monkeypatch.setenv("GOOGLE_CLOUD_LOCATION", "global")
    monkeypatch.setenv("GOOGLE_GENAI_USE_VERTEXAI", "True")

    def no_credentials(**kwargs):
        raise RuntimeError("Your default credentials were not found")

    monkeypatch.setattr(genai, "Client", no_credentials)
    client = VertexGenerativeClient(model="gemini-test", timeout=5)
    with pytest.raises(GenerativeConfigError):
        run(client.generate("hola"))


def test_rest_client_invalid_url_is_a_config_error():
    client = GeminiRestClient(
        "https://gemini.test:notaport/generate",
        "secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=envelope("x"))),
    )
    with pytest.raises(GenerativeConfigError):
        run(client.generate("hola"))
