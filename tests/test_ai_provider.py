import pytest
import requests

from adaptive_escrow.errors import ProviderUnavailable
from adaptive_escrow.models.suggestion import ContractOptimization, DeadlineExtension, GracePeriodChange, PenaltyAdjustment
from adaptive_escrow.services.ai_service import (
    DEFAULT_CONFIDENCE,
    DEFAULT_REASONING,
    NullReasoningProvider,
    OpenAIReasoningProvider,
    build_analysis_prompt,
    parse_reasoning_output,
    provider_from_config,
)
from adaptive_escrow.services.suggestion_service import SuggestionEngine

SUMMARY = {
    "user": {"name": "Sarah Chen", "role": "freelancer", "rating": 4.8},
    "metrics": {"totalJobs": 10, "lateJobs": 4, "onTimePercentage": 60, "reliabilityScore": 2.5},
    "recentEscrows": [{"amount": 500, "status": "released", "deadline": "2030-01-01T00:00:00Z",
                       "penaltyRate": 300, "gracePeriod": 24}],
    "targetEscrow": {"amount": 1000, "status": "active", "deadline": "2030-02-01T00:00:00Z",
                     "penaltyRate": 300, "gracePeriod": 24},
}


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def _completion(content):
    return FakeResponse({"choices": [{"message": {"content": content}}]})


# ---------------------------
# Parsing
# ---------------------------

def test_parse_array_embedded_in_prose():
    text = (
        "Based on the data I suggest:\n"
        '[{"type": "penalty_adjustment", "reasoning": "late a lot", "suggested_penalty_rate": 600, "confidence": 0.85},'
        ' {"type": "grace_period_change", "suggested_grace_period": 18}]\nGood luck!'
    )
    drafts = parse_reasoning_output(text)
    assert [d.change for d in drafts] == [PenaltyAdjustment(600), GracePeriodChange(18)]
    assert drafts[0].confidence == 0.85
    assert drafts[1].reasoning == DEFAULT_REASONING
    assert drafts[1].confidence == DEFAULT_CONFIDENCE


def test_parse_wrapped_object_and_defaults():
    drafts = parse_reasoning_output('{"suggestions": [{"suggested_deadline": "2030-03-01T12:00:00Z"}]}')
    assert len(drafts) == 1
    assert drafts[0].kind == "contract_optimization"
    assert drafts[0].change.deadline.isoformat() == "2030-03-01T12:00:00"


def test_parse_deadline_extension():
    (draft,) = parse_reasoning_output('[{"type": "deadline_extension", "suggested_deadline": "2030-03-01"}]')
    assert isinstance(draft.change, DeadlineExtension)
    assert draft.to_dict()["suggested_deadline"] == "2030-03-01T00:00:00Z"


@pytest.mark.parametrize("text", [
    "",
    "no json here",
    "[not really json]",
    '[{"type": "grace_period_change", "suggested_grace_period": 500}]',
    '[{"type": "penalty_adjustment"}]',
    '[{"type": "penalty_adjustment", "suggested_penalty_rate": 100, "confidence": 3}]',
    '"just a string"',
    '[{"type": "penalty_adjustment", "suggested_penalty_rate": NaN}]',
    '[{"type": "penalty_adjustment", "suggested_penalty_rate": Infinity}]',
    '[{"type": "grace_period_change", "suggested_grace_period": NaN}]',
    '[{"type": "grace_period_change", "suggested_grace_period": -Infinity}]',
    '[{"type": "contract_optimization", "suggested_grace_period": Infinity}]',
])
def test_parse_failures_are_provider_unavailable(text):
    with pytest.raises(ProviderUnavailable):
        parse_reasoning_output(text)


def test_contract_optimization_keeps_one_field():
    (draft,) = parse_reasoning_output(
        '[{"type": "contract_optimization", "suggested_penalty_rate": 200, "suggested_grace_period": 12}]'
    )
    assert draft.change == ContractOptimization(penalty_rate=200)


def test_prompt_mentions_metrics_and_target():
    prompt = build_analysis_prompt(SUMMARY)
    assert "Late Jobs: 4" in prompt
    assert "Current Penalty Rate: 3.0%" in prompt
    assert "Recent Performance:" in prompt


# ---------------------------
# Providers
# ---------------------------

def test_openai_provider_posts_with_timeout():
    session = FakeSession(_completion('[{"type": "grace_period_change", "suggested_grace_period": 20}]'))
    provider = OpenAIReasoningProvider("sk-test", model="gpt-test", base_url="http://llm.local/v1/", timeout=3,
                                       session=session)

    drafts = provider.suggest(SUMMARY)
    assert drafts[0].change == GracePeriodChange(20)

    url, kwargs = session.posts[0]
    assert url == "http://llm.local/v1/chat/completions"
    assert kwargs["timeout"] == 3
    assert kwargs["json"]["model"] == "gpt-test"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"


@pytest.mark.parametrize("session", [
    FakeSession(error=requests.Timeout("slow")),
    FakeSession(error=requests.ConnectionError("refused")),
    FakeSession(FakeResponse({"error": "quota"}, status=429)),
    FakeSession(FakeResponse({"unexpected": True})),
    FakeSession(_completion("I cannot help with that.")),
])
def test_openai_provider_failures(session):
    provider = OpenAIReasoningProvider("sk-test", session=session)
    with pytest.raises(ProviderUnavailable):
        provider.suggest(SUMMARY)


def test_missing_key_never_calls_out():
    session = FakeSession(_completion("[]"))
    with pytest.raises(ProviderUnavailable):
        OpenAIReasoningProvider("", session=session).suggest(SUMMARY)
    assert session.posts == []


def test_provider_from_config():
    assert isinstance(provider_from_config({"OPENAI_API_KEY": None}), NullReasoningProvider)
    p = provider_from_config({"OPENAI_API_KEY": "sk", "OPENAI_MODEL": "m", "REASONING_TIMEOUT": 7})
    assert isinstance(p, OpenAIReasoningProvider)
    assert p.timeout == 7.0
    assert p.model == "m"


@pytest.mark.parametrize("content", [
    '[{"type": "penalty_adjustment", "suggested_penalty_rate": NaN}]',
    '[{"type": "grace_period_change", "suggested_grace_period": Infinity}]',
])
def test_engine_falls_back_on_non_finite_numbers(app, freelancer_user, content):
    provider = OpenAIReasoningProvider("sk-test", session=FakeSession(_completion(content)))
    engine = SuggestionEngine(provider)

    drafts = engine.propose(freelancer_user, SUMMARY["metrics"])
    assert [d.change for d in drafts] == [PenaltyAdjustment(900), GracePeriodChange(16)]
