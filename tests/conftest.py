import os
import re
import sys

import pytest

# Project root, so tests import the nomad package without installing it.
_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _root not in sys.path:
    sys.path.insert(0, _root)

from nomad.errors import LLMTimeoutError
from nomad.TripInfo import ParsedTrip

_CHUNK_RE = re.compile(r"Create a (\d+)-day itinerary for (.+?)\.\n")


class FakeLLM:
    """Stand-in for LLMClient.

    Chunk prompts get one made-up day per requested day, tip prompts get
    five tips, anything else gets ``conversational``.
    """

    def __init__(self, fail_for=(), conversational=None, conversational_error=None,
                 tips_error=None, days_override=None, tips=None):
        self.calls = []
        self.fail_for = set(fail_for)
        self.conversational = conversational
        self.conversational_error = conversational_error
        self.tips_error = tips_error
        self.days_override = days_override or {}
        self.tips = tips

    def complete_json(self, system_prompt, user_prompt, temperature=None):
        self.calls.append((system_prompt, user_prompt))

        m = _CHUNK_RE.search(user_prompt)
        if m:
            days, dest = int(m.group(1)), m.group(2)
            if dest in self.fail_for:
                raise LLMTimeoutError(f"timed out generating {dest}")
            days = self.days_override.get(dest, days)
            return {"days": [
                {
                    "day": 99,
                    "date": "2000-01-01",
                    "title": f"{dest} day {i + 1}",
                    "activities": [
                        {"time": "Morning", "description": f"Explore {dest}",
                         "category": "Attraction", "address": f"Old town, {dest}"},
                        {"time": "Evening", "description": f"Dinner in {dest}",
                         "category": "Restaurant", "address": f"Centre, {dest}"},
                    ],
                }
                for i in range(days)
            ]}

        if '"tips"' in system_prompt:
            if self.tips_error:
                raise self.tips_error
            if self.tips is not None:
                return self.tips
            return {"tips": ["Pack light", "Carry cash", "Walk a lot", "Try street food", "Learn hello"]}

        if self.conversational_error:
            raise self.conversational_error
        if self.conversational is not None:
            return self.conversational
        return {"destinations": [], "origin": None, "preferences": {}, "reply": "Happy to help!"}

    def chunk_calls(self):
        return [c for c in self.calls if _CHUNK_RE.search(c[1])]


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def paris_rome():
    return ParsedTrip.build([("Paris", 3), ("Rome", 2)])


@pytest.fixture
def lisbon_granada():
    return ParsedTrip.build([("Lisbon", 10), ("Granada", 4)], origin="New York")


@pytest.fixture
def five_cities():
    return ParsedTrip.build([("Paris", 2), ("Rome", 2), ("Berlin", 2), ("Madrid", 2), ("Vienna", 2)])
