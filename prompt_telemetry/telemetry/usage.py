"""
Provider-specific usage normalization.

Each supported provider registers a normalizer that can detect the provider
from the archived request payload, pull model and usage out of the archived
raw response, and map a usage document (raw or already normalized) onto a
flat ``{token_field: int}`` record. Callers only go through the module-level
helpers, so adding a provider means adding one normalizer to ``NORMALIZERS``.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from prompt_telemetry.utils import safe_int

logger = logging.getLogger(__name__)

UsageRecord = Dict[str, int]


class Provider(str, Enum):
    OPENAI = "openai"
    GOOGLE = "google"


def _nested_int(payload: Dict[str, Any], parent: str, key: str) -> Optional[int]:
    details = payload.get(parent)
    if isinstance(details, dict) and key in details:
        return safe_int(details.get(key))
    return None


class UsageNormalizer:
    name: str = ""
    token_fields: Tuple[str, ...] = ()

    def matches(self, request: Any) -> bool:
        raise NotImplementedError

    def extract(self, response: Any) -> Optional[Tuple[str, UsageRecord]]:
        raise NotImplementedError

    def normalize(self, usage: Dict[str, Any]) -> UsageRecord:
        raise NotImplementedError


class OpenAIUsageNormalizer(UsageNormalizer):
    """Responses API shape: input/output tokens with nested detail objects."""

    name = Provider.OPENAI.value
    token_fields = (
        "input_tokens",
        "cached_tokens",
        "output_tokens",
        "reasoning_tokens",
        "total_tokens",
    )

    def matches(self, request: Any) -> bool:
        return isinstance(request, dict) and all(
            request.get(key) for key in ("input", "text", "reasoning")
        )

    def extract(self, response: Any) -> Optional[Tuple[str, UsageRecord]]:
        if not isinstance(response, dict):
            return None
        model = response.get("model")
        usage = response.get("usage")
        if not model or not isinstance(usage, dict):
            return None
        return str(model), self.normalize(usage)

    def normalize(self, usage: Dict[str, Any]) -> UsageRecord:
        cached = _nested_int(usage, "input_tokens_details", "cached_tokens")
        reasoning = _nested_int(usage, "output_tokens_details", "reasoning_tokens")
        return {
            "input_tokens": safe_int(usage.get("input_tokens")),
            "cached_tokens": (
                cached if cached is not None else safe_int(usage.get("cached_tokens"))
            ),
            "output_tokens": safe_int(usage.get("output_tokens")),
            "reasoning_tokens": (
                reasoning
                if reasoning is not None
                else safe_int(usage.get("reasoning_tokens"))
            ),
            "total_tokens": safe_int(usage.get("total_tokens")),
        }


class GoogleUsageNormalizer(UsageNormalizer):
    """generateContent shape, usually delivered as a list of streamed chunks."""

    name = Provider.GOOGLE.value
    token_fields = (
        "prompt_tokens",
        "cached_tokens",
        "response_tokens",
        "thoughts_tokens",
        "tool_use_prompt_tokens",
        "total_tokens",
    )

    _RAW_FIELDS = {
        "prompt_tokens": "promptTokenCount",
        "cached_tokens": "cachedContentTokenCount",
        "response_tokens": "candidatesTokenCount",
        "thoughts_tokens": "thoughtsTokenCount",
        "tool_use_prompt_tokens": "toolUsePromptTokenCount",
        "total_tokens": "totalTokenCount",
    }

    def matches(self, request: Any) -> bool:
        return isinstance(request, dict) and bool(
            request.get("config") and request.get("contents")
        )

    def extract(self, response: Any) -> Optional[Tuple[str, UsageRecord]]:
        chunks = response if isinstance(response, list) else [response]
        chunks = [chunk for chunk in chunks if isinstance(chunk, dict)]

        # only the last chunk that reports usage counts; earlier ones are partial
        usage = next(
            (c["usageMetadata"] for c in reversed(chunks) if c.get("usageMetadata")),
            None,
        )
        model = next(
            (c["modelVersion"] for c in reversed(chunks) if c.get("modelVersion")),
            None,
        )
        if not model or not isinstance(usage, dict):
            return None
        return str(model), self.normalize(usage)

    def normalize(self, usage: Dict[str, Any]) -> UsageRecord:
        is_raw = any(raw in usage for raw in self._RAW_FIELDS.values())
        return {
            field: safe_int(usage.get(raw if is_raw else field))
            for field, raw in self._RAW_FIELDS.items()
        }


NORMALIZERS: Dict[str, UsageNormalizer] = {
    normalizer.name: normalizer
    for normalizer in (OpenAIUsageNormalizer(), GoogleUsageNormalizer())
}


def get_normalizer(provider: Optional[str]) -> Optional[UsageNormalizer]:
    if not provider:
        return None
    return NORMALIZERS.get(provider)


def detect_provider(request: Any) -> Optional[str]:
    """Infer the provider from the archived request payload."""
    for name, normalizer in NORMALIZERS.items():
        if normalizer.matches(request):
            return name
    return None


def extract_usage(provider: str, response: Any) -> Optional[Tuple[str, UsageRecord]]:
    """Return ``(model, usage)`` from a raw provider response, or None."""
    normalizer = get_normalizer(provider)
    if normalizer is None:
        return None
    return normalizer.extract(response)


def normalize_usage(provider: str, usage: Any) -> Optional[UsageRecord]:
    """
    Normalize a usage document for aggregation.

    Known providers map onto their fixed token fields. Unknown providers keep
    every integer field present so their totals still show up.
    """
    if not isinstance(usage, dict):
        return None
    normalizer = get_normalizer(provider)
    if normalizer is not None:
        return normalizer.normalize(usage)
    return {
        key: value
        for key, value in usage.items()
        if isinstance(value, int) and not isinstance(value, bool)
    }
