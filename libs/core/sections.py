from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Tuple

VALUE_PROP_COUNT = 4

SECTION_FIELDS: Tuple[str, ...] = (
    "hiring_manager",
    "opening",
    "alignment",
    "why_company",
    "leadership",
    "value_prop_1_title",
    "value_prop_1_details",
    "value_prop_2_title",
    "value_prop_2_details",
    "value_prop_3_title",
    "value_prop_3_details",
    "value_prop_4_title",
    "value_prop_4_details",
    "mission_interest",
    "closing",
    "signature_name",
)

# Fields holding factual prose; titles and names are excluded from claim checks.
PROSE_FIELDS: Tuple[str, ...] = (
    "opening",
    "alignment",
    "why_company",
    "leadership",
    "value_prop_1_details",
    "value_prop_2_details",
    "value_prop_3_details",
    "value_prop_4_details",
    "mission_interest",
    "closing",
)

SectionMap = Dict[str, str]

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def new_section_map() -> SectionMap:
    return {name: "" for name in SECTION_FIELDS}


def ordered_section_map(values: Mapping[str, str]) -> SectionMap:
    unknown = set(values) - set(SECTION_FIELDS)
    if unknown:
        raise KeyError(f"unknown_section_fields:{','.join(sorted(unknown))}")
    return {name: values.get(name, "") or "" for name in SECTION_FIELDS}


def value_prop_fields(index: int) -> Tuple[str, str]:
    return f"value_prop_{index}_title", f"value_prop_{index}_details"


def split_sentences(text: str) -> List[str]:
    stripped = (text or "").strip()
    if not stripped:
        return []
    return [part for part in _SENTENCE_BOUNDARY.split(stripped) if part.strip()]


def word_count(text: str) -> int:
    return len((text or "").split())


def total_words(sections: Mapping[str, str]) -> int:
    return sum(word_count(value) for value in sections.values())


def prose_sentences(sections: Mapping[str, str], fields: Iterable[str] = PROSE_FIELDS) -> List[str]:
    sentences: List[str] = []
    for name in fields:
        sentences.extend(split_sentences(sections.get(name, "")))
    return sentences
