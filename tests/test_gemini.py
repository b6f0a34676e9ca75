import json

import pytest
import requests

import gemini
from errors import ProviderError, ProviderTimeout
from gemini import GeminiClient


class FakeResponse:
    def __init__(self, data, status_code=200, chunks=1, on_chunk=None):
        self.body = json.dumps(data).encode()
        self.status_code = status_code
        self.chunks = chunks
        self.on_chunk = on_chunk
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        size = -(-len(self.body) // self.chunks)
        for start in range(0, len(self.body), size):
            if self.on_chunk:
                self.on_chunk()
            yield self.body[start:start + size]

    def close(self):
        self.closed = True


def reply(text):
    return {'candidates': [{'content': {'parts': [{'text': text}]}}]}


@pytest.fixture
def gemini_client():
    return GeminiClient('test-key', model='gemini-test')


def test_missing_key_never_calls_out(monkeypatch):
    monkeypatch.setattr(gemini.requests, 'post', lambda *a, **kw: pytest.fail("unexpected request"))

    with pytest.raises(ProviderError):
        GeminiClient('').generate('hello', 5)


def test_generate_returns_text(monkeypatch, gemini_client):
    seen = {}

    def fake_post(url, params=None, json=None, timeout=None, stream=False):
        seen.update(url=url, params=params, json=json, timeout=timeout, stream=stream)
        return FakeResponse(reply('48213'))

    monkeypatch.setattr(gemini.requests, 'post', fake_post)

    assert gemini_client.generate('Give me a code', 5) == '48213'
    assert seen['url'].endswith('/models/gemini-test:generateContent')
    assert seen['params'] == {'key': 'test-key'}
    assert seen['timeout'] == 5
    assert seen['stream'] is True
    assert seen['json']['contents'][0]['parts'][0]['text'] == 'Give me a code'
    assert 'generationConfig' not in seen['json']


def test_json_output_requests_json_mime_type(monkeypatch, gemini_client):
    seen = {}

    def fake_post(url, params=None, json=None, timeout=None, stream=False):
        seen['json'] = json
        return FakeResponse(reply('[]'))

    monkeypatch.setattr(gemini.requests, 'post', fake_post)

    gemini_client.generate('questions', 10, json_output=True)

    assert seen['json']['generationConfig'] == {'responseMimeType': 'application/json'}


@pytest.mark.parametrize("error, expected", [
    (requests.Timeout("slow"), ProviderTimeout),
    (requests.ConnectionError("down"), ProviderError),
])
def test_transport_failures(monkeypatch, gemini_client, error, expected):
    def fake_post(*args, **kwargs):
        raise error

    monkeypatch.setattr(gemini.requests, 'post', fake_post)

    with pytest.raises(expected):
        gemini_client.generate('hello', 5)


@pytest.mark.parametrize("response", [
    FakeResponse({}, status_code=500),
    FakeResponse({'candidates': []}),
    FakeResponse(reply('   ')),
    FakeResponse({'candidates': [{'content': {'parts': [{}]}}]}),
])
def test_unusable_responses(monkeypatch, gemini_client, response):
    monkeypatch.setattr(gemini.requests, 'post', lambda *a, **kw: response)

    with pytest.raises(ProviderError):
        gemini_client.generate('hello', 5)


def test_slow_body_hits_total_deadline(monkeypatch):
    now = [0.0]

    def two_seconds_per_chunk():
        now[0] += 2

    response = FakeResponse(reply('48213'), chunks=4, on_chunk=two_seconds_per_chunk)
    monkeypatch.setattr(gemini.requests, 'post', lambda *a, **kw: response)
    client = GeminiClient('test-key', clock=lambda: now[0])

    with pytest.raises(ProviderTimeout):
        client.generate('Give me a code', 5)
    assert response.closed is True
