import copy
import json
from collections import deque
from unittest.mock import patch

import httpx
import pytest

from storybook.api.deps import build_services
from storybook.core import settings as settings_module
from storybook.main import app

SAMPLE_ANALYSIS = {
    "title": "The Three Little Pigs",
    "moral": "Hard work keeps you safe.",
    "scenes": [
        {"id": 1, "imagePrompt": "Three pigs wave goodbye to their mother", "storyText": "The pigs set off."},
        {"id": 2, "imagePrompt": "The eldest pig in yellow overalls builds a straw house", "storyText": "Straw is quick."},
        {"id": 3, "imagePrompt": "The youngest pig lays bricks in the sun", "storyText": "Bricks are strong."},
    ],
}

FAKE_IMAGE = (b"\x89PNG\r\n\x1a\nfake-image", "image/png")


class FakeGemini:
    """Scripted stand-in for GeminiClient.

    Each queue entry is returned in turn; an exception entry is raised instead.
    Empty queues fall back to the defaults.
    """

    def __init__(self):
        self.json_results = deque()
        self.text_results = deque()
        self.image_results = deque()
        self.default_json = json.dumps(SAMPLE_ANALYSIS)
        self.default_text = ""
        self.default_image = FAKE_IMAGE
        self.json_calls = []
        self.text_calls = []
        self.image_calls = []

    @staticmethod
    def _next(queue, default):
        result = queue.popleft() if queue else default
        if isinstance(result, BaseException):
            raise result
        return result

    def generate_json_text(self, prompt, response_schema, model=None):
        self.json_calls.append((prompt, response_schema))
        return self._next(self.json_results, self.default_json)

    def generate_text(self, prompt, model=None):
        self.text_calls.append(prompt)
        return self._next(self.text_results, self.default_text)

    def generate_image(self, prompt, model=None):
        self.image_calls.append(prompt)
        return self._next(self.image_results, self.default_image)


@pytest.fixture(autouse=True)
def _gemini_env(monkeypatch):
    monkeypatch.setattr(settings_module.settings, "gemini_api_key", "test-key")
    monkeypatch.setattr(settings_module.settings, "inter_scene_delay_seconds", 0.0)
    with patch("storybook.services.gemini.genai"):
        yield


@pytest.fixture()
def sample_analysis():
    return copy.deepcopy(SAMPLE_ANALYSIS)


@pytest.fixture()
def fake_gemini():
    return FakeGemini()


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def services(fake_gemini, sleeps):
    return build_services(fake_gemini, sleep=sleeps.append)


@pytest.fixture()
async def client(services):
    async with app.router.lifespan_context(app):
        app.state.services = services
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture()
def anyio_backend():
    return "asyncio"
