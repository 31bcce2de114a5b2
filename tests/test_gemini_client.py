import asyncio

import httpx
import pytest

from essaylab.errors import UpstreamError
from essaylab.gemini_client import GeminiClient, extract_json_object
from essaylab.settings import settings


def test_extract_json_variants():
    assert extract_json_object('{"a": 1}') == {'a': 1}
    assert extract_json_object('Here:\n```json\n{"a": 2}\n```') == {'a': 2}
    assert extract_json_object('Sure! {"a": 3} hope it helps') == {'a': 3}


def test_extract_json_failure():
    with pytest.raises(UpstreamError):
        extract_json_object('no json here')


def make_client(handler, fallback_handler=None):
    client = GeminiClient(api_key='test-key', model='gemini-test')
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    if fallback_handler is not None:
        client._fallback_client = httpx.AsyncClient(transport=httpx.MockTransport(fallback_handler))
        client._openrouter_api_key = 'or-key'
    return client


async def _generate(client, prompt):
    try:
        return await client.generate(prompt)
    finally:
        await client.aclose()


def test_generate_reads_first_candidate():
    seen = {}

    def handler(request):
        seen['url'] = str(request.url)
        return httpx.Response(200, json={'candidates': [{'content': {'parts': [{'text': 'hello'}]}}]})

    client = make_client(handler)

    assert asyncio.run(_generate(client, 'hi')) == 'hello'
    assert 'gemini-test:generateContent' in seen['url']
    assert 'key=test-key' in seen['url']


def test_generate_without_fallback_raises():
    client = make_client(lambda request: httpx.Response(503, json={'error': 'busy'}))

    with pytest.raises(UpstreamError):
        asyncio.run(_generate(client, 'hi'))


def test_generate_falls_back_to_openrouter():
    def fallback(request):
        return httpx.Response(200, json={'choices': [{'message': {'content': 'from openrouter'}}]})

    client = make_client(lambda request: httpx.Response(500), fallback)

    assert asyncio.run(_generate(client, 'hi')) == 'from openrouter'


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, 'gemini_api_key', None)

    with pytest.raises(UpstreamError):
        GeminiClient()
