# session_engine/logic/llm_processing.py
"""
LLM processing module for the session engine.
This module contains the in-memory cache for AI boundary decisions and the
Google Gemini client used to classify ambiguous session boundaries.
"""

import asyncio
import json
import logging
import threading
import time
from collections import OrderedDict
from datetime import timedelta
from typing import Callable, Optional, Protocol, Tuple

from google import genai
from google.genai import types as genai_types
from pydantic import ValidationError

from session_engine.exceptions import ClassificationError
from session_engine.logic import prompts
from session_engine.logic.settings import Settings
from session_engine.models import BoundaryClassification, BoundaryDecision

log = logging.getLogger(__name__)


class BoundaryClassifier(Protocol):
    async def classify(self, previous: str, current: str) -> BoundaryClassification: ...


class DecisionCache:
    """
    Bounded, time-boxed key -> BoundaryDecision store shared by aggregation runs.
    Writes are idempotent per key, so concurrent runs may overwrite each other freely.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(hours=24),
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_s = ttl.total_seconds()
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, Tuple[float, BoundaryDecision]]" = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DecisionCache":
        return cls(
            ttl=timedelta(hours=settings.decision_cache_ttl_hours),
            max_entries=settings.decision_cache_max_entries,
        )

    def get(self, key: str) -> Optional[BoundaryDecision]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, decision = entry
            if self._clock() - stored_at > self.ttl_s:
                log.debug(f"Decision cache entry expired for key {key}, removing")
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return decision

    def set(self, key: str, decision: BoundaryDecision) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), decision)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:].strip()
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:].strip()
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3].strip()
    return cleaned


def parse_classification(text: Optional[str]) -> BoundaryClassification:
    """Parses the model's JSON answer; anything that is not a JSON object is a ClassificationError."""
    if not text or not text.strip():
        raise ClassificationError("Empty response from LLM")
    try:
        payload = json.loads(_strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ClassificationError(f"Unparseable LLM response: {text[:200]}") from e
    if not isinstance(payload, dict):
        raise ClassificationError(f"LLM response is not a JSON object: {text[:200]}")
    try:
        return BoundaryClassification.model_validate(payload)
    except ValidationError as e:
        raise ClassificationError(f"Invalid LLM classification payload: {e}") from e


class GeminiBoundaryClassifier:
    """Asks Gemini whether two activity descriptions belong to the same focus session."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client = None
        self._client_initialized = False

    def _initialize_client(self):
        """Lazy initialization of the LLM client."""
        if self._client_initialized:
            return

        try:
            api_key = self.settings.gemini_api_key
            if not api_key or api_key == "YOUR_API_KEY_HERE":
                raise ValueError("GEMINI_API_KEY not configured in settings")

            self.client = genai.Client(api_key=api_key)
            log.info(f"Gemini client initialized for boundary classification with model: {self.settings.boundary_model_name}")
        except Exception as e:
            log.error(f"Failed to initialize Gemini client: {e}. AI boundary classification will be disabled.")
            self.client = None
        self._client_initialized = True

    def _build_prompt(self, previous: str, current: str) -> str:
        return prompts.BOUNDARY_CLASSIFICATION_PROMPT.format(previous=previous, current=current)

    async def classify(self, previous: str, current: str) -> BoundaryClassification:
        """
        Classifies a transition between two described events.

        Raises:
            ClassificationError: on a missing client, transport failure, timeout,
                blocked prompt or unparseable response.
        """
        if not self._client_initialized:
            self._initialize_client()
        if not self.client:
            raise ClassificationError("LLM client not available")

        config = genai_types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=self.settings.boundary_llm_temperature,
            max_output_tokens=200,
        )
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.models.generate_content,
                    model=self.settings.boundary_model_name,
                    contents=self._build_prompt(previous, current),
                    config=config,
                ),
                timeout=self.settings.boundary_llm_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ClassificationError(f"LLM call timed out after {self.settings.boundary_llm_timeout_s}s") from e
        except Exception as e:
            raise ClassificationError(f"LLM call failed: {e}") from e

        if response.prompt_feedback and response.prompt_feedback.block_reason:
            raise ClassificationError(f"Prompt blocked by Gemini: {response.prompt_feedback.block_reason}")

        return parse_classification(response.text)
