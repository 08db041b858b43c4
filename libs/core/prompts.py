from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

SYSTEM_INSTRUCTION = (
    "You are an expert cover letter writer. Write in first person as the candidate. "
    "Use only the accomplishments, skills and style data supplied in the prompt. "
    "Never invent employers, job titles, metrics, dates or credentials."
)

GROUNDING_RULE = (
    "Ground every claim in the accomplishments provided. If a requirement has no supporting "
    "accomplishment, speak to motivation instead of inventing experience."
)


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)


def ats_keywords_prompt(job_content: str) -> str:
    return (
        "Analyze this job description and extract 15-20 critical ATS keywords and phrases that "
        "must appear in a cover letter. Focus on technical skills, qualifications and "
        "industry-specific terms.\n"
        f"Job description:\n{job_content}\n"
        'Return a JSON object: {"keywords": ["..."]}'
    )


def requirements_prompt(job_content: str) -> str:
    return (
        "Extract the 8-12 most critical requirements from this job description. Focus on "
        "must-have qualifications, skills and experience.\n"
        f"Job description:\n{job_content}\n"
        'Return a JSON object: {"requirements": ["..."]}'
    )


def style_analysis_prompt(style_text: str) -> str:
    return (
        "Analyze this style guide and extract its key patterns, tone and structural preferences.\n"
        "Return a JSON object with keys: patterns (array of strings), tone (string), "
        "structure (string), keywords (array of strings), preferences (object).\n"
        f"Style guide:\n{style_text}"
    )


def source_profile_prompt(resume_text: str) -> str:
    return (
        "Extract accomplishments, skills and experience from this resume.\n"
        "Return a JSON object with keys: accomplishments (array of objects with title and "
        "description), skills (array of strings), experience (array of objects with company, "
        "role and achievements).\n"
        "Copy figures exactly as written; do not round or embellish.\n"
        f"Resume:\n{resume_text}"
    )


def accomplishment_mapping_prompt(resume_text: str, requirements: Sequence[str]) -> str:
    return (
        "Map the candidate's resume accomplishments to the job requirements.\n"
        "Return a JSON object with key accomplishments: an array of objects with requirement, "
        "accomplishment and evidence (the supporting resume text, quoted verbatim).\n"
        "Skip requirements the resume does not support.\n"
        f"Job requirements: {_dump(list(requirements))}\n"
        f"Resume:\n{resume_text}"
    )


def section_prompt(instruction: str, context: Mapping[str, Any]) -> str:
    """Shared layout for every section writer; ``context`` is the agents' shared context."""
    return (
        f"{instruction}\n"
        f"{GROUNDING_RULE}\n"
        f"Job: {context.get('job_title', '')} at {context.get('company', '')}\n"
        f"Style profile: {_dump(context.get('style_profile', {}))}\n"
        f"Matched accomplishments: {_dump(context.get('accomplishments', []))}\n"
        f"ATS keywords: {', '.join(context.get('ats_keywords', []))}\n"
        f"Key requirements: {', '.join(context.get('requirements', []))}\n"
        "Return only the paragraph text. No greeting, no signature, no markdown."
    )


def value_propositions_prompt(context: Mapping[str, Any]) -> str:
    return (
        "Create 4 value propositions, each with a short title and one or two sentences of "
        "details, showing the unique value the candidate brings to the company.\n"
        f"{GROUNDING_RULE}\n"
        f"Job: {context.get('job_title', '')} at {context.get('company', '')}\n"
        f"Style profile: {_dump(context.get('style_profile', {}))}\n"
        f"Matched accomplishments: {_dump(context.get('accomplishments', []))}\n"
        f"ATS keywords: {', '.join(context.get('ats_keywords', []))}\n"
        'Return JSON: {"prop1": {"title": "...", "details": "..."}, "prop2": {...}, '
        '"prop3": {...}, "prop4": {...}}'
    )


def coherence_prompt(sections: Mapping[str, str]) -> str:
    return (
        "Take these cover letter sections and return a single cohesive JSON object with smooth "
        "transitions and no repetition between sections.\n"
        "Keep exactly the same keys. Every value must be a string. Do not add new facts.\n"
        f"Sections: {_dump(dict(sections))}"
    )


def quality_prompt(sections: Mapping[str, str], ats_keywords: Sequence[str]) -> str:
    return (
        "Analyze this cover letter content and score it from 0 to 100.\n"
        f"Content: {_dump(dict(sections))}\n"
        f"Required ATS keywords: {', '.join(ats_keywords)}\n"
        "Return JSON with numeric keys: styleCompliance, atsKeywordUse, clarity, impact, overall."
    )
