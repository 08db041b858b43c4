from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

from . import events, logging as core_logging, prompts
from .domain_cache import ComputeFn
from .llm_provider import LLMProvider, MalformedOutputError
from .models import QualityScores
from .schemas import QUALITY_SCORES_SCHEMA, VALUE_PROPOSITIONS_SCHEMA, schema_errors
from .sections import (
    SECTION_FIELDS,
    VALUE_PROP_COUNT,
    SectionMap,
    new_section_map,
    value_prop_fields,
)

LOGGER = core_logging.get_logger("composer.agents")

T = TypeVar("T")

MAX_KEYWORDS = 20
MAX_REQUIREMENTS = 12
DEFAULT_SCORE = 85


@dataclass(frozen=True)
class AgentFailure:
    agent: str
    error: str


@dataclass(frozen=True)
class AgentResult(Generic[T]):
    agent: str
    value: Optional[T] = None
    failure: Optional[AgentFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def or_fallback(self, fallback: T) -> T:
        if self.failure is None:
            return self.value  # type: ignore[return-value]
        LOGGER.warning(events.AGENT_FALLBACK, agent=self.agent, error=self.failure.error)
        return fallback


async def attempt(agent: str, call: Callable[[], Awaitable[T]]) -> AgentResult[T]:
    """Run one agent call and capture any failure as a value."""
    started = time.perf_counter()
    try:
        value = await call()
    except Exception as exc:  # noqa: BLE001
        return AgentResult(agent=agent, failure=AgentFailure(agent=agent, error=str(exc) or type(exc).__name__))
    LOGGER.info(
        events.AGENT_COMPLETED,
        agent=agent,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    return AgentResult(agent=agent, value=value)


@dataclass
class AgentContext:
    job_title: str
    company: str
    job_content: str = ""
    style_profile: Dict[str, Any] = field(default_factory=dict)
    accomplishments: List[Any] = field(default_factory=list)
    ats_keywords: List[str] = field(default_factory=list)
    requirements: List[str] = field(default_factory=list)
    candidate_name: str = ""

    def prompt_context(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SectionAgent:
    name: str
    fields: Tuple[str, ...]
    produce: Callable[[AgentContext, LLMProvider], Awaitable[Dict[str, str]]]
    fallback: Callable[[AgentContext], Dict[str, str]]


def _text_agent(name: str, section: str, instruction: str, fallback_text: str) -> SectionAgent:
    async def produce(ctx: AgentContext, provider: LLMProvider) -> Dict[str, str]:
        text = await provider.generate(
            prompts.section_prompt(instruction, ctx.prompt_context()), prompts.SYSTEM_INSTRUCTION
        )
        text = (text or "").strip()
        if not text:
            raise MalformedOutputError(f"{name} returned empty text")
        return {section: text}

    def fallback(ctx: AgentContext) -> Dict[str, str]:
        return {section: fallback_text.format(company=ctx.company or "your organization")}

    return SectionAgent(name=name, fields=(section,), produce=produce, fallback=fallback)


DEFAULT_VALUE_PROPOSITIONS: Dict[str, Dict[str, str]] = {
    "prop1": {
        "title": "Strategic Leadership",
        "details": "Proven track record of leading strategic initiatives.",
    },
    "prop2": {
        "title": "Technical Expertise",
        "details": "Deep technical knowledge in relevant technologies.",
    },
    "prop3": {
        "title": "Problem Solving",
        "details": "Strong analytical and problem-solving capabilities.",
    },
    "prop4": {
        "title": "Team Collaboration",
        "details": "Excellent collaboration and communication skills.",
    },
}


def _value_props_to_sections(props: Dict[str, Dict[str, str]]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for index in range(1, VALUE_PROP_COUNT + 1):
        title_field, details_field = value_prop_fields(index)
        prop = props[f"prop{index}"]
        values[title_field] = prop["title"].strip()
        values[details_field] = prop["details"].strip()
    return values


async def _produce_value_props(ctx: AgentContext, provider: LLMProvider) -> Dict[str, str]:
    payload = await provider.generate_structured(
        prompts.value_propositions_prompt(ctx.prompt_context()), prompts.SYSTEM_INSTRUCTION
    )
    errors = schema_errors(VALUE_PROPOSITIONS_SCHEMA, payload)
    if errors:
        raise MalformedOutputError("value_propositions_invalid: " + "; ".join(errors))
    return _value_props_to_sections(payload)


VALUE_PROPS_AGENT = SectionAgent(
    name="value_props",
    fields=tuple(name for index in range(1, VALUE_PROP_COUNT + 1) for name in value_prop_fields(index)),
    produce=_produce_value_props,
    fallback=lambda ctx: _value_props_to_sections(DEFAULT_VALUE_PROPOSITIONS),
)

SECTION_AGENTS: Tuple[SectionAgent, ...] = (
    _text_agent(
        "opening_hook",
        "opening",
        "Write one compelling opening paragraph for a cover letter that hooks the reader "
        "immediately and names the role.",
        "I am excited to apply for this position and bring my expertise to your team.",
    ),
    _text_agent(
        "alignment",
        "alignment",
        "Write one focused paragraph that aligns the candidate's experience with the job "
        "requirements, showing clear connections between accomplishments and needs.",
        "My experience directly aligns with your requirements for this role.",
    ),
    _text_agent(
        "why_company",
        "why_company",
        "Write one or two sentences about why the candidate wants to work for this specific "
        "company.",
        "I am particularly drawn to {company}'s mission and values.",
    ),
    _text_agent(
        "leadership",
        "leadership",
        "Write one paragraph highlighting leadership and measurable impact using specific "
        "accomplishments.",
        "My leadership experience includes managing teams and driving successful project outcomes.",
    ),
    VALUE_PROPS_AGENT,
    _text_agent(
        "mission_interest",
        "mission_interest",
        "Write one short paragraph about the candidate's interest in the organization's mission "
        "and the impact of its work.",
        "I am passionate about contributing to mission-driven work and making a positive impact "
        "on the communities it serves.",
    ),
    _text_agent(
        "closing",
        "closing",
        "Write one professional closing paragraph that expresses enthusiasm and invites next "
        "steps.",
        "Thank you for considering my application. I look forward to discussing how I can "
        "contribute to your team's success.",
    ),
)


async def _run_section_agent(
    agent: SectionAgent, ctx: AgentContext, provider: LLMProvider
) -> Tuple[Dict[str, str], Optional[AgentFailure]]:
    result = await attempt(agent.name, lambda: agent.produce(ctx, provider))
    values = result.or_fallback(agent.fallback(ctx))
    return {name: values[name] for name in agent.fields}, result.failure


async def run_section_agents(
    ctx: AgentContext,
    provider: LLMProvider,
    agents: Sequence[SectionAgent] = SECTION_AGENTS,
) -> Tuple[Dict[str, str], List[AgentFailure]]:
    """Fan out every agent, wait for all of them, and collect fields in declaration order."""
    async with asyncio.TaskGroup() as group:
        tasks = [group.create_task(_run_section_agent(agent, ctx, provider)) for agent in agents]
    values: Dict[str, str] = {}
    failures: List[AgentFailure] = []
    for task in tasks:
        produced, failure = task.result()
        values.update(produced)
        if failure is not None:
            failures.append(failure)
    return values, failures


def assemble_section_map(ctx: AgentContext, generated: Dict[str, str]) -> SectionMap:
    sections = new_section_map()
    sections["hiring_manager"] = f"{ctx.company} Hiring Team" if ctx.company else "Hiring Manager"
    sections["signature_name"] = ctx.candidate_name
    for name, value in generated.items():
        if name not in sections:
            raise KeyError(f"unknown_section_field:{name}")
        sections[name] = value
    return sections


async def generate_sections(
    ctx: AgentContext,
    provider: LLMProvider,
    agents: Sequence[SectionAgent] = SECTION_AGENTS,
) -> Tuple[SectionMap, List[AgentFailure]]:
    generated, failures = await run_section_agents(ctx, provider, agents)
    return assemble_section_map(ctx, generated), failures


def _string_list(payload: Any, key: str, limit: int) -> List[str]:
    items = payload
    if isinstance(payload, dict):
        items = payload.get(key)
        if items is None:
            items = next((value for value in payload.values() if isinstance(value, list)), None)
    if not isinstance(items, list):
        raise MalformedOutputError(f"expected a list of {key}")
    cleaned = [str(item).strip() for item in items if isinstance(item, (str, int, float))]
    return [item for item in cleaned if item][:limit]


async def extract_ats_keywords(provider: LLMProvider, job_content: str) -> AgentResult[List[str]]:
    async def call() -> List[str]:
        payload = await provider.generate_structured(prompts.ats_keywords_prompt(job_content))
        return _string_list(payload, "keywords", MAX_KEYWORDS)

    return await attempt("ats_keywords", call)


async def extract_requirements(provider: LLMProvider, job_content: str) -> AgentResult[List[str]]:
    async def call() -> List[str]:
        payload = await provider.generate_structured(prompts.requirements_prompt(job_content))
        return _string_list(payload, "requirements", MAX_REQUIREMENTS)

    return await attempt("requirements", call)


def _require_object(payload: Any, label: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedOutputError(f"{label} must be a JSON object")
    return payload


def style_analyzer(provider: LLMProvider) -> ComputeFn:
    async def compute(raw_text: str) -> Dict[str, Any]:
        payload = await provider.generate_structured(prompts.style_analysis_prompt(raw_text))
        return _require_object(payload, "style_profile")

    return compute


def source_profiler(provider: LLMProvider) -> ComputeFn:
    async def compute(raw_text: str) -> Dict[str, Any]:
        payload = await provider.generate_structured(prompts.source_profile_prompt(raw_text))
        return _require_object(payload, "source_profile")

    return compute


def accomplishment_mapper(provider: LLMProvider, requirements: Sequence[str]) -> ComputeFn:
    async def compute(raw_text: str) -> Dict[str, Any]:
        payload = await provider.generate_structured(
            prompts.accomplishment_mapping_prompt(raw_text, requirements)
        )
        payload = _require_object(payload, "job_mapping")
        return {"accomplishments": payload.get("accomplishments")}

    return compute


async def refine_coherence(provider: LLMProvider, sections: SectionMap) -> AgentResult[SectionMap]:
    """Ask for one smoothing pass over the whole letter; the key set must come back intact."""

    async def call() -> SectionMap:
        payload = _require_object(
            await provider.generate_structured(prompts.coherence_prompt(sections)), "coherence"
        )
        missing = [name for name in sections if not isinstance(payload.get(name), str)]
        if missing:
            raise MalformedOutputError(f"coherence_missing_fields:{','.join(missing)}")
        return {name: payload[name].strip() for name in SECTION_FIELDS if name in sections}

    return await attempt("coherence", call)


def _score(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value:
        return DEFAULT_SCORE
    return int(round(min(100, max(0, value))))


async def score_quality(
    provider: LLMProvider, sections: SectionMap, ats_keywords: Sequence[str]
) -> AgentResult[QualityScores]:
    async def call() -> QualityScores:
        payload = _require_object(
            await provider.generate_structured(prompts.quality_prompt(sections, ats_keywords)),
            "quality",
        )
        errors = schema_errors(QUALITY_SCORES_SCHEMA, payload)
        if errors:
            raise MalformedOutputError("quality_scores_invalid: " + "; ".join(errors))
        return QualityScores(
            style_compliance=_score(payload.get("styleCompliance")),
            ats_keyword_use=_score(payload.get("atsKeywordUse")),
            clarity=_score(payload.get("clarity")),
            impact=_score(payload.get("impact")),
            overall=_score(payload.get("overall")),
        )

    return await attempt("quality", call)


def keyword_coverage(sections: SectionMap, ats_keywords: Sequence[str]) -> Optional[int]:
    keywords = [keyword.strip().lower() for keyword in ats_keywords if keyword.strip()]
    if not keywords:
        return None
    text = " ".join(sections.values()).lower()
    hits = sum(1 for keyword in keywords if keyword in text)
    return round(hits / len(keywords) * 100)


def with_keyword_coverage(
    scores: QualityScores, sections: SectionMap, ats_keywords: Sequence[str]
) -> QualityScores:
    coverage = keyword_coverage(sections, ats_keywords)
    if coverage is None:
        return scores
    return scores.model_copy(update={"ats_keyword_use": coverage})
