# adaptive_escrow/services/ai_service.py
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from adaptive_escrow.errors import InvalidInput, ProviderUnavailable
from adaptive_escrow.models.suggestion import (
    SUGGESTION_TYPES,
    ContractOptimization,
    DeadlineExtension,
    GracePeriodChange,
    PenaltyAdjustment,
    SuggestionChange,
    change_fields,
)
from adaptive_escrow.utils import iso, parse_iso

logger = logging.getLogger(__name__)

DEFAULT_REASONING = "AI analysis of performance data"
DEFAULT_CONFIDENCE = 0.7

SYSTEM_PROMPT = (
    "You are an AI assistant for Adaptive Escrow Pro, a blockchain-based escrow platform. "
    "Analyze user performance data and suggest contract optimizations. Be specific and actionable."
)

# First JSON array or object embedded in free text
_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class SuggestionDraft:
    """One proposed change with the provider's reasoning and confidence."""

    change: SuggestionChange
    reasoning: str
    confidence: float

    @property
    def kind(self) -> str:
        return self.change.kind

    def to_dict(self) -> Dict[str, Any]:
        fields = change_fields(self.change)
        out = {"type": self.kind, "reasoning": self.reasoning, "confidence": self.confidence}
        if fields["penalty_rate"] is not None:
            out["suggested_penalty_rate"] = fields["penalty_rate"]
        if fields["deadline"] is not None:
            out["suggested_deadline"] = iso(fields["deadline"])
        if fields["grace_period"] is not None:
            out["suggested_grace_period"] = fields["grace_period"]
        return out


# ---------------------------
# Output parsing
# ---------------------------

def _int_in_range(value, field: str, lo: int, hi: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProviderUnavailable(f"{field} is not numeric: {value!r}")
    if not math.isfinite(value):
        raise ProviderUnavailable(f"{field} is not finite: {value!r}")
    value = int(value)
    if not lo <= value <= hi:
        raise ProviderUnavailable(f"{field} out of range [{lo}, {hi}]: {value}")
    return value


def _deadline(value) -> datetime:
    try:
        return parse_iso(value, "suggested_deadline")
    except InvalidInput as e:
        raise ProviderUnavailable(e.message)


def draft_from_item(item: Dict[str, Any]) -> SuggestionDraft:
    if not isinstance(item, dict):
        raise ProviderUnavailable(f"suggestion is not an object: {item!r}")

    kind = item.get("type") or "contract_optimization"
    if kind not in SUGGESTION_TYPES:
        raise ProviderUnavailable(f"unknown suggestion type: {kind!r}")

    rate = item.get("suggested_penalty_rate")
    deadline = item.get("suggested_deadline")
    grace = item.get("suggested_grace_period")

    if kind == "penalty_adjustment":
        if rate is None:
            raise ProviderUnavailable("penalty_adjustment without suggested_penalty_rate")
        change = PenaltyAdjustment(_int_in_range(rate, "suggested_penalty_rate", 0, 10000))
    elif kind == "deadline_extension":
        if deadline is None:
            raise ProviderUnavailable("deadline_extension without suggested_deadline")
        change = DeadlineExtension(_deadline(deadline))
    elif kind == "grace_period_change":
        if grace is None:
            raise ProviderUnavailable("grace_period_change without suggested_grace_period")
        change = GracePeriodChange(_int_in_range(grace, "suggested_grace_period", 0, 168))
    else:
        # contract_optimization keeps at most one field: rate, then grace, then deadline
        if rate is not None:
            change = ContractOptimization(penalty_rate=_int_in_range(rate, "suggested_penalty_rate", 0, 10000))
        elif grace is not None:
            change = ContractOptimization(grace_period=_int_in_range(grace, "suggested_grace_period", 0, 168))
        elif deadline is not None:
            change = ContractOptimization(deadline=_deadline(deadline))
        else:
            change = ContractOptimization()

    confidence = item.get("confidence", item.get("confidence_score", DEFAULT_CONFIDENCE))
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        raise ProviderUnavailable(f"confidence out of range [0, 1]: {confidence!r}")

    reasoning = item.get("reasoning") or DEFAULT_REASONING
    return SuggestionDraft(change, str(reasoning), float(confidence))


def drafts_from_payload(payload: Any) -> List[SuggestionDraft]:
    """
    Accepts a list of suggestion objects, a single object, or
    {"suggestions": [...]}; anything else is a provider failure.
    """
    if isinstance(payload, dict) and isinstance(payload.get("suggestions"), list):
        payload = payload["suggestions"]
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise ProviderUnavailable(f"unexpected payload type: {type(payload).__name__}")
    return [draft_from_item(item) for item in payload]


def parse_reasoning_output(text: str) -> List[SuggestionDraft]:
    """
    Best-effort extraction of the JSON payload from free model text.
    Parse failures are indistinguishable from an outage: both raise ProviderUnavailable.
    """
    if not text:
        raise ProviderUnavailable("empty completion")

    # Whichever JSON literal opens first wins
    matches = [m for m in (_JSON_ARRAY_RE.search(text), _JSON_OBJECT_RE.search(text)) if m]
    for match in sorted(matches, key=lambda m: m.start()):
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            continue
        return drafts_from_payload(payload)

    raise ProviderUnavailable("no parseable JSON in completion")


# ---------------------------
# Prompt
# ---------------------------

def build_analysis_prompt(summary: Dict[str, Any]) -> str:
    metrics = summary.get("metrics") or {}
    user = summary.get("user") or {}
    lines = [
        "Analyze this freelancer's performance and suggest contract optimizations:",
        "",
        "User Profile:",
        f"- Name: {user.get('name', 'unknown')}",
        f"- Role: {user.get('role', 'unknown')}",
        f"- Total Jobs: {metrics.get('totalJobs', 0)}",
        f"- Late Jobs: {metrics.get('lateJobs', 0)}",
        f"- On-time Percentage: {metrics.get('onTimePercentage', 100)}%",
        f"- Reliability Score: {metrics.get('reliabilityScore', 5.0)}/5",
        f"- Total Earnings: {metrics.get('totalEarnings', 0)} XLM",
    ]

    recent = summary.get("recentEscrows") or []
    if recent:
        lines += ["", "Recent Performance:"]
        lines += [f"- Job: {e['amount']} XLM, Status: {e['status']}, Deadline: {e['deadline']}" for e in recent]

    target = summary.get("targetEscrow")
    if target:
        lines += [
            "",
            "Current Escrow:",
            f"- Amount: {target['amount']} XLM",
            f"- Deadline: {target['deadline']}",
            f"- Current Penalty Rate: {target['penaltyRate'] / 100}%",
            f"- Grace Period: {target['gracePeriod']} hours",
        ]

    lines += [
        "",
        "Suggest specific optimizations for penalty rates (basis points, 0-10000), "
        "grace periods (hours, 0-168) and deadlines (ISO-8601) if applicable.",
        "Provide reasoning for each suggestion and a confidence level (0-1).",
        "Respond with a JSON array of objects with keys: type (penalty_adjustment, deadline_extension, "
        "grace_period_change, contract_optimization), reasoning, suggested_penalty_rate, "
        "suggested_deadline, suggested_grace_period, confidence.",
    ]
    return "\n".join(lines)


# ---------------------------
# Providers
# ---------------------------

class ReasoningProvider:
    """Turns a performance summary into suggestion drafts or raises ProviderUnavailable."""

    name = "base"

    def suggest(self, summary: Dict[str, Any]) -> List[SuggestionDraft]:
        raise NotImplementedError


class NullReasoningProvider(ReasoningProvider):
    """Used when no API key is configured, so the rule table always answers."""

    name = "none"

    def suggest(self, summary):
        raise ProviderUnavailable("no reasoning provider configured")


class OpenAIReasoningProvider(ReasoningProvider):
    """OpenAI-compatible chat completions over plain HTTP with a hard timeout."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4",
                 base_url: str = "https://api.openai.com/v1", timeout: float = 15.0,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, prompt: str) -> str:
        resp = self.session.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.7,
                "max_tokens": 1000,
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ProviderUnavailable(f"unexpected completion shape: {data}")

    def suggest(self, summary):
        if not self.api_key:
            raise ProviderUnavailable("OPENAI_API_KEY is not set")
        try:
            text = self.complete(build_analysis_prompt(summary))
        except requests.Timeout as e:
            raise ProviderUnavailable(f"reasoning provider timed out after {self.timeout}s") from e
        except (requests.RequestException, ValueError) as e:
            raise ProviderUnavailable(f"reasoning provider error: {e}") from e
        return parse_reasoning_output(text)


def provider_from_config(config) -> ReasoningProvider:
    api_key = config.get("OPENAI_API_KEY")
    if not api_key:
        return NullReasoningProvider()
    return OpenAIReasoningProvider(
        api_key=api_key,
        model=config.get("OPENAI_MODEL", "gpt-4"),
        base_url=config.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        timeout=float(config.get("REASONING_TIMEOUT", 15)),
    )
