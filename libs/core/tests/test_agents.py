from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

from libs.core import agents
from libs.core.llm_provider import LLMProvider, ServiceError
from libs.core.models import QualityScores
from libs.core.sections import SECTION_FIELDS


class _ScriptedProvider(LLMProvider):
    """Replies by prompt marker; unmatched prompts get plain prose."""

    def __init__(self, replies: Optional[Dict[str, Any]] = None, default: str = "Generated text.") -> None:
        self.replies = replies or {}
        self.default = default
        self.prompts: list[str] = []

    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        for marker, reply in self.replies.items():
            if marker in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return reply if isinstance(reply, str) else json.dumps(reply)
        return self.default


def _context() -> agents.AgentContext:
    return agents.AgentContext(
        job_title="Platform Engineer",
        company="Acme",
        job_content="We need Python and Kubernetes.",
        accomplishments=[{"requirement": "Python", "accomplishment": "Built billing in Python"}],
        ats_keywords=["Python", "Kubernetes"],
        requirements=["5 years Python"],
        candidate_name="Jane Doe",
    )


def _fixed_agent(field: str, value: str, delay: float) -> agents.SectionAgent:
    async def produce(ctx, provider):
        await asyncio.sleep(delay)
        return {field: value}

    return agents.SectionAgent(
        name=field, fields=(field,), produce=produce, fallback=lambda ctx: {field: "fallback"}
    )


def test_fan_out_result_order_does_not_depend_on_completion_order() -> None:
    for opening_delay, closing_delay in ((0.02, 0.0), (0.0, 0.02)):
        generated, failures = asyncio.run(
            agents.run_section_agents(
                _context(),
                _ScriptedProvider(),
                [
                    _fixed_agent("opening", "A", opening_delay),
                    _fixed_agent("closing", "B", closing_delay),
                ],
            )
        )
        assert generated == {"opening": "A", "closing": "B"}
        assert list(generated) == ["opening", "closing"]
        assert failures == []


def test_failing_agent_falls_back_without_affecting_others() -> None:
    provider = _ScriptedProvider({"compelling opening": ServiceError("quota exceeded")})
    sections, failures = asyncio.run(agents.generate_sections(_context(), provider))

    assert list(sections) == list(SECTION_FIELDS)
    assert sections["opening"] == (
        "I am excited to apply for this position and bring my expertise to your team."
    )
    assert sections["alignment"] == "Generated text."
    assert sections["hiring_manager"] == "Acme Hiring Team"
    assert sections["signature_name"] == "Jane Doe"
    names = {failure.agent for failure in failures}
    assert "opening_hook" in names
    assert "alignment" not in names


def test_empty_text_counts_as_failure() -> None:
    provider = _ScriptedProvider({"why the candidate wants": "   "})
    sections, failures = asyncio.run(agents.generate_sections(_context(), provider))

    assert sections["why_company"] == "I am particularly drawn to Acme's mission and values."
    assert "why_company" in {failure.agent for failure in failures}


def test_value_props_use_structured_reply() -> None:
    props = {
        f"prop{i}": {"title": f"Title {i}", "details": f"Details {i}."} for i in range(1, 5)
    }
    sections, failures = asyncio.run(
        agents.generate_sections(_context(), _ScriptedProvider({"4 value propositions": props}))
    )

    assert sections["value_prop_1_title"] == "Title 1"
    assert sections["value_prop_4_details"] == "Details 4."
    assert "value_props" not in {failure.agent for failure in failures}


def test_value_props_fall_back_on_wrong_shape() -> None:
    bad = {"prop1": {"title": "Only one", "details": "Missing the rest."}}
    sections, failures = asyncio.run(
        agents.generate_sections(_context(), _ScriptedProvider({"4 value propositions": bad}))
    )

    assert sections["value_prop_1_title"] == "Strategic Leadership"
    assert sections["value_prop_4_title"] == "Team Collaboration"
    assert "value_props" in {failure.agent for failure in failures}


def test_prompts_carry_grounding_instruction() -> None:
    provider = _ScriptedProvider()
    asyncio.run(agents.generate_sections(_context(), provider))

    assert len(provider.prompts) == len(agents.SECTION_AGENTS)
    for prompt in provider.prompts:
        assert "Ground every claim in the accomplishments provided" in prompt
        assert "Built billing in Python" in prompt


def test_keyword_extraction_accepts_list_or_wrapped_object() -> None:
    wrapped = _ScriptedProvider({"critical ATS keywords": {"keywords": ["Python", " ", "SQL"]}})
    result = asyncio.run(agents.extract_ats_keywords(wrapped, "posting"))
    assert result.ok
    assert result.value == ["Python", "SQL"]

    many = _ScriptedProvider({"critical ATS keywords": [f"kw{i}" for i in range(30)]})
    result = asyncio.run(agents.extract_ats_keywords(many, "posting"))
    assert len(result.value) == agents.MAX_KEYWORDS


def test_requirement_extraction_failure_is_captured() -> None:
    provider = _ScriptedProvider({"most critical requirements": "not json at all"})
    result = asyncio.run(agents.extract_requirements(provider, "posting"))

    assert not result.ok
    assert result.failure.agent == "requirements"
    assert result.or_fallback([]) == []


def test_coherence_keeps_input_when_keys_are_missing() -> None:
    sections = {"opening": "Hello.", "closing": "Bye."}
    provider = _ScriptedProvider({"single cohesive JSON object": {"opening": "Hi there."}})
    result = asyncio.run(agents.refine_coherence(provider, sections))

    assert not result.ok
    assert result.or_fallback(sections) == sections


def test_coherence_drops_unknown_keys() -> None:
    sections = {"opening": "Hello.", "closing": "Bye."}
    reply = {"closing": "Goodbye.", "opening": "Hi there.", "postscript": "P.S."}
    provider = _ScriptedProvider({"single cohesive JSON object": reply})
    result = asyncio.run(agents.refine_coherence(provider, sections))

    assert result.ok
    assert result.value == {"opening": "Hi there.", "closing": "Goodbye."}
    assert list(result.value) == ["opening", "closing"]


def test_quality_scores_are_clamped_and_defaulted() -> None:
    reply = {"styleCompliance": 140, "atsKeywordUse": -5, "clarity": None, "impact": 77.6}
    provider = _ScriptedProvider({"score it from 0 to 100": reply})
    result = asyncio.run(agents.score_quality(provider, {"opening": "x"}, ["Python"]))

    assert result.value == QualityScores(
        style_compliance=100, ats_keyword_use=0, clarity=85, impact=78, overall=85
    )


def test_quality_falls_back_to_defaults() -> None:
    result = asyncio.run(agents.score_quality(_ScriptedProvider(), {"opening": "x"}, []))
    assert result.or_fallback(QualityScores()) == QualityScores()


def test_keyword_coverage_replaces_ats_score() -> None:
    sections = {"opening": "I ship Python services.", "closing": "Thanks."}
    assert agents.keyword_coverage(sections, ["python", "Kubernetes"]) == 50
    assert agents.keyword_coverage(sections, []) is None

    scores = agents.with_keyword_coverage(QualityScores(), sections, ["Python", "Kubernetes"])
    assert scores.ats_keyword_use == 50
    assert scores.clarity == 85


def test_cache_compute_functions_reject_non_objects() -> None:
    provider = _ScriptedProvider({"Analyze this style guide": ["not", "an", "object"]})
    compute = agents.style_analyzer(provider)
    try:
        asyncio.run(compute("style"))
    except ServiceError as exc:
        assert "style_profile" in str(exc)
    else:
        raise AssertionError("Expected MalformedOutputError for a list reply")

    mapper = agents.accomplishment_mapper(
        _ScriptedProvider({"Map the candidate": {"accomplishments": [{"requirement": "x"}], "extra": 1}}),
        ["x"],
    )
    assert asyncio.run(mapper("resume")) == {"accomplishments": [{"requirement": "x"}]}
