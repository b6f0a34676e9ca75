"""Gemini text generation over the REST API"""
import json
import logging
import time

import requests

from errors import ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024


class GeminiClient:
    """Generates text for a prompt. Every failure surfaces as ProviderError.

    ``timeout`` bounds the whole call. The requests timeout alone only limits
    each socket wait, so the body is streamed and checked against a deadline.
    """

    def __init__(self, api_key, model="gemini-2.5-flash",
                 api_url="https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
                 clock=time.monotonic):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.format(model=model)
        self.clock = clock

    def _read(self, r, deadline, timeout):
        body = []
        for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
            if self.clock() > deadline:
                raise ProviderTimeout(f"Gemini did not answer within {timeout}s")
            body.append(chunk)
        return json.loads(b"".join(body))

    def generate(self, prompt, timeout, json_output=False):
        if not self.api_key:
            raise ProviderError("Gemini API key is not configured")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}]
        }
        if json_output:
            payload["generationConfig"] = {"responseMimeType": "application/json"}

        deadline = self.clock() + timeout
        try:
            r = requests.post(self.api_url, params={"key": self.api_key}, json=payload,
                              timeout=timeout, stream=True)
            try:
                r.raise_for_status()
                gemini_data = self._read(r, deadline, timeout)
            finally:
                r.close()
        except requests.Timeout as e:
            raise ProviderTimeout(f"Gemini did not answer within {timeout}s") from e
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"Gemini request failed: {e}") from e

        try:
            reply = gemini_data.get('candidates', [{}])[0].get('content', {}).get('parts', [{}])[0].get('text', '')
        except (AttributeError, IndexError) as e:
            raise ProviderError("Unexpected Gemini response shape") from e
        if not reply or not reply.strip():
            raise ProviderError("Gemini returned no text")
        return reply
