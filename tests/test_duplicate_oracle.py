"""Duplicate oracle parsing, normalisation and wiring."""
from types import SimpleNamespace

import pytest

from utils.duplicate_oracle import (
    GeminiDuplicateOracle,
    NullDuplicateOracle,
    _safe_json_loads,
    build_duplicate_oracle,
    build_duplicate_prompt,
    get_duplicate_oracle,
    normalize_judgement,
)
from utils.errors import DependencyError

CANDIDATES = [
    {"id": "a1", "title": "Pothole", "description": "Deep pothole"},
    {"id": "b2", "title": "Broken kerb", "description": "Kerb stones loose"},
]


class TestNormalize:
    def test_known_match(self):
        assert normalize_judgement({"is_duplicate": True, "matched_id": "b2"}, CANDIDATES) == {
            "is_duplicate": True,
            "matched_id": "b2",
        }

    def test_camel_case_keys_are_accepted(self):
        result = normalize_judgement({"isDuplicate": "true", "matchedIssueId": "a1"}, CANDIDATES)
        assert result["matched_id"] == "a1"

    @pytest.mark.parametrize(
        "payload",
        [
            {"is_duplicate": False, "matched_id": "a1"},
            {"is_duplicate": True, "matched_id": None},
            {"is_duplicate": True, "matched_id": "zz"},
            {},
        ],
    )
    def test_anything_else_is_no_match(self, payload):
        assert normalize_judgement(payload, CANDIDATES) == {"is_duplicate": False, "matched_id": None}


class TestParsing:
    def test_fenced_json(self):
        assert _safe_json_loads('```json\n{"is_duplicate": true}\n```') == {"is_duplicate": True}

    def test_chatter_around_object(self):
        assert _safe_json_loads('Sure! {"matched_id": "a1"} Hope that helps')["matched_id"] == "a1"

    def test_prompt_lists_every_candidate(self):
        prompt = build_duplicate_prompt('"Pothole" - "Near school"', CANDIDATES)
        assert "(ID: a1)" in prompt and "(ID: b2)" in prompt
        assert prompt.startswith('New issue: "Pothole"')


class _StubModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error

    def generate_content(self, **kwargs):
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


class TestGeminiOracle:
    def _oracle(self, models):
        oracle = GeminiDuplicateOracle(api_key="test-key", model_name="gemini-2.5-flash", timeout_ms=8000)
        oracle._client = SimpleNamespace(models=models)
        return oracle

    def test_parses_model_reply(self, ctx):
        oracle = self._oracle(_StubModels(text='{"is_duplicate": true, "matched_id": "a1"}'))
        assert oracle.judge("text", CANDIDATES)["matched_id"] == "a1"

    def test_transport_failure_is_a_dependency_error(self, ctx):
        oracle = self._oracle(_StubModels(error=TimeoutError("deadline")))
        with pytest.raises(DependencyError):
            oracle.judge("text", CANDIDATES)

    @pytest.mark.parametrize("text", ["", "not json at all", "[1, 2]"])
    def test_unusable_reply_is_a_dependency_error(self, ctx, text):
        with pytest.raises(DependencyError):
            self._oracle(_StubModels(text=text)).judge("text", CANDIDATES)

    def test_no_candidates_short_circuits(self, ctx):
        oracle = self._oracle(_StubModels(error=AssertionError("should not be called")))
        assert oracle.judge("text", [])["is_duplicate"] is False


class TestWiring:
    def test_no_api_key_means_null_oracle(self):
        assert isinstance(build_duplicate_oracle({"GEMINI_API_KEY": ""}), NullDuplicateOracle)

    def test_app_uses_injected_oracle(self, ctx, fake_oracle):
        assert get_duplicate_oracle() is fake_oracle
