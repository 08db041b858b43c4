from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

from . import logging as core_logging
from .sections import SectionMap, split_sentences, total_words, word_count

LOGGER = core_logging.get_logger("composer.trimmer")

# Least important first; sentences are removed from earlier fields before later ones.
DEFAULT_TRIM_PRIORITY: Tuple[str, ...] = (
    "mission_interest",
    "why_company",
    "value_prop_4_details",
    "value_prop_3_details",
    "leadership",
    "value_prop_2_details",
    "value_prop_1_details",
    "alignment",
    "opening",
    "closing",
)


def trim_to_budget(
    sections: SectionMap,
    budget: int,
    priority: Sequence[str] = DEFAULT_TRIM_PRIORITY,
) -> SectionMap:
    """Remove whole sentences until the section map fits ``budget`` words.

    Pass one walks ``priority`` and pops trailing sentences from each field,
    always leaving at least one sentence behind. If the map is still too long,
    pass two keeps the longest in-order prefix of all sentences that fits.
    """
    total = total_words(sections)
    if total <= budget:
        return sections

    trimmed: Dict[str, str] = dict(sections)
    for name in priority:
        if total <= budget:
            break
        sentences = split_sentences(trimmed.get(name, ""))
        if len(sentences) <= 1:
            continue
        while total > budget and len(sentences) > 1:
            removed = sentences.pop()
            total -= word_count(removed)
        trimmed[name] = " ".join(sentences)

    if total <= budget:
        LOGGER.info("trim_complete", strategy="priority", words=total, budget=budget)
        return trimmed

    result = _truncate_globally(trimmed, budget)
    LOGGER.info("trim_complete", strategy="truncate", words=total_words(result), budget=budget)
    return result


def _truncate_globally(sections: SectionMap, budget: int) -> SectionMap:
    flattened: List[Tuple[str, str]] = []
    for name, text in sections.items():
        for sentence in split_sentences(text):
            flattened.append((name, sentence))

    kept: Dict[str, List[str]] = {name: [] for name in sections}
    running = 0
    for name, sentence in flattened:
        running += word_count(sentence)
        if running > budget:
            break
        kept[name].append(sentence)
    return {name: " ".join(kept[name]).strip() for name in sections}
