"""Gemini-backed semantic duplicate judgement for newly submitted issues."""
import json
import re
from typing import Any, Dict, List, Optional

from flask import current_app
from google import genai
from google.genai import types

from utils.errors import DependencyError

NO_MATCH: Dict[str, Any] = {"is_duplicate": False, "matched_id": None}

SYSTEM_INSTRUCTION = (
    "You are a duplicate issue detector for a municipal civic issue platform. "
    "Compare a new civic issue with existing nearby ones. Consider issues duplicates only if they describe "
    "the same problem in the same place. Respond with ONLY a JSON object: "
    "{\"is_duplicate\": true|false, \"matched_id\": \"<id of the matched issue>\" or null}."
)


def _first_json_block(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def _safe_json_loads(raw_text: str) -> Dict[str, Any]:
    """Parse JSON, tolerating code fences or chatter around the object."""
    cleaned = raw_text.strip()
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", cleaned).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return json.loads(_first_json_block(cleaned))


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return value in {"true", "True", "1", 1}


def build_duplicate_prompt(new_issue_text: str, candidates: List[Dict[str, str]]) -> str:
    existing = "\n".join(
        f"Issue {idx} (ID: {c['id']}): \"{c.get('title', '')}\" - \"{c.get('description', '')}\""
        for idx, c in enumerate(candidates, start=1)
    )
    return (
        f"New issue: {new_issue_text}\n\n"
        f"Existing nearby issues:\n{existing}\n\n"
        "Is the new issue a duplicate of any existing issue?"
    )


def normalize_judgement(payload: Dict[str, Any], candidates: List[Dict[str, str]]) -> Dict[str, Any]:
    """Accept a match only when it names one of the candidates we offered."""
    is_duplicate = _coerce_bool(payload.get("is_duplicate", payload.get("isDuplicate")))
    matched_id = payload.get("matched_id", payload.get("matchedIssueId"))
    matched_id = str(matched_id).strip() if matched_id else None
    known_ids = {str(c["id"]) for c in candidates}
    if not is_duplicate or not matched_id or matched_id not in known_ids:
        return dict(NO_MATCH)
    return {"is_duplicate": True, "matched_id": matched_id}


class DuplicateOracle:
    """Pluggable judge: given new issue text and nearby candidates, name at most one match."""

    def judge(self, new_issue_text: str, candidates: List[Dict[str, str]]) -> Dict[str, Any]:
        raise NotImplementedError


class NullDuplicateOracle(DuplicateOracle):
    """Used when no model is configured; every submission becomes a new issue."""

    def judge(self, new_issue_text: str, candidates: List[Dict[str, str]]) -> Dict[str, Any]:
        return dict(NO_MATCH)


class GeminiDuplicateOracle(DuplicateOracle):
    def __init__(self, api_key: str, model_name: str, timeout_ms: int) -> None:
        self.model_name = model_name
        self.timeout_ms = timeout_ms
        self._client = genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=timeout_ms))

    def judge(self, new_issue_text: str, candidates: List[Dict[str, str]]) -> Dict[str, Any]:
        if not candidates:
            return dict(NO_MATCH)

        current_app.logger.info(
            "Dispatching duplicate judgement",
            extra={"model": self.model_name, "candidates": len(candidates)},
        )
        try:
            response = self._client.models.generate_content(
                model=self.model_name,
                contents=build_duplicate_prompt(new_issue_text, candidates),
                config=types.GenerateContentConfig(
                    system_instruction=SYSTEM_INSTRUCTION,
                    response_mime_type="application/json",
                ),
            )
        except Exception as exc:  # pragma: no cover - relies on remote service
            raise DependencyError("Duplicate oracle request failed") from exc

        raw_text = (response.text or "").strip()
        if not raw_text:
            raise DependencyError("Duplicate oracle returned an empty response")
        try:
            payload = _safe_json_loads(raw_text)
        except (json.JSONDecodeError, ValueError) as exc:
            raise DependencyError("Duplicate oracle returned non-JSON output") from exc
        if not isinstance(payload, dict):
            raise DependencyError("Duplicate oracle returned an unexpected payload")
        return normalize_judgement(payload, candidates)


def build_duplicate_oracle(config) -> DuplicateOracle:
    api_key = config.get("GEMINI_API_KEY")
    if not api_key:
        return NullDuplicateOracle()
    return GeminiDuplicateOracle(
        api_key=api_key,
        model_name=config.get("DUPLICATE_ORACLE_MODEL", "gemini-2.5-flash"),
        timeout_ms=int(config.get("DUPLICATE_ORACLE_TIMEOUT_MS", 8000)),
    )


def init_duplicate_oracle(app, oracle: Optional[DuplicateOracle] = None) -> DuplicateOracle:
    oracle = oracle or build_duplicate_oracle(app.config)
    app.extensions["duplicate_oracle"] = oracle
    return oracle


def get_duplicate_oracle() -> DuplicateOracle:
    oracle = current_app.extensions.get("duplicate_oracle")
    if oracle is None:
        oracle = init_duplicate_oracle(current_app)
    return oracle
