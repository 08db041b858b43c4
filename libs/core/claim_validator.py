from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from . import logging as core_logging
from .models import Correction, PhraseCategory, ValidationReport
from .sections import PROSE_FIELDS, SectionMap, prose_sentences

LOGGER = core_logging.get_logger("composer.validator")

LENIENT_PHRASE_THRESHOLD = 5
LENIENT_SCORE = 85
SCORE_FLOOR = 75
PASS_THRESHOLD = 70
JACCARD_THRESHOLD = 0.15
SEMANTIC_THRESHOLD = 0.1
SEMANTIC_MIN_CONFIDENCE = 0.6
CORRECTION_THRESHOLD = 0.5
METRIC_CONTEXT_RADIUS = 25
MIN_LINE_LENGTH = 10

_METRIC_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*([%$kmb]|percent|million|billion|thousand|years?|months?)",
    re.IGNORECASE,
)
_ROLE_RE = re.compile(
    r"(director|manager|lead|senior|principal|vp|ceo|cto|engineer|analyst|specialist|coordinator"
    r"|consultant|associate|intern|developer|designer|architect|officer|executive|administrator"
    r"|supervisor)",
    re.IGNORECASE,
)
_ACHIEVEMENT_RE = re.compile(
    r"(led|managed|built|created|developed|implemented|increased|decreased|improved|optimized"
    r"|reduced|delivered|achieved|exceeded|streamlined|coordinated|facilitated|spearheaded|oversaw"
    r"|established|launched|designed|executed|collaborated|contributed|resolved|enhanced|modernized"
    r"|automated|scaled)",
    re.IGNORECASE,
)
_SKILL_RE = re.compile(
    r"(experience|proficient|skilled|expert|knowledge|familiar|certification|training|education"
    r"|degree|diploma)",
    re.IGNORECASE,
)
_PROPER_BIGRAM_RE = re.compile(r"[A-Z][a-z]+ [A-Z][a-z]+")

BOILERPLATE_TERMS: Tuple[str, ...] = (
    "dear",
    "hiring",
    "team",
    "manager",
    "sincerely",
    "regards",
    "excited",
    "thrilled",
    "opportunity",
    "position",
    "application",
    "interview",
    "contribution",
    "experience",
    "skills",
    "background",
    "qualifications",
)
ACTION_VERBS: Tuple[str, ...] = (
    "led",
    "managed",
    "developed",
    "implemented",
    "created",
    "built",
    "designed",
    "coordinated",
    "facilitated",
    "achieved",
    "delivered",
    "improved",
    "optimized",
    "streamlined",
    "established",
    "launched",
)
PROFESSIONAL_PATTERNS: Tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(experience|background|skills|expertise|knowledge)\b", re.IGNORECASE),
    re.compile(r"\b(years?|months?)\s+(of\s+)?(experience|work)\b", re.IGNORECASE),
    re.compile(r"\b(proficient|skilled|experienced|familiar)\s+with\b", re.IGNORECASE),
    re.compile(r"\b(bachelor|master|degree|certification|training)\b", re.IGNORECASE),
)


@dataclass(frozen=True)
class Phrase:
    text: str
    normalized: str
    category: PhraseCategory


@dataclass(frozen=True)
class SentenceCheck:
    supported: bool
    confidence: float
    tier: str


def normalize_text(text: str) -> str:
    lowered = re.sub(r"[$%.,]", "", text.lower())
    underscored = re.sub(r"\s+", "_", lowered)
    return re.sub(r"[^a-z0-9_]", "", underscored)


def jaccard(left: Iterable[str], right: Iterable[str]) -> float:
    a, b = set(left), set(right)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def extract_phrases(source_text: str) -> Tuple[Phrase, ...]:
    """Scan each line of ``source_text`` for metric, role, achievement and skill phrases."""
    phrases: List[Phrase] = []

    def add(text: str, category: PhraseCategory) -> None:
        phrases.append(Phrase(text=text, normalized=normalize_text(text), category=category))

    for line in source_text.split("\n"):
        trimmed = line.strip()
        if len(trimmed) < MIN_LINE_LENGTH:
            continue
        for match in _METRIC_RE.finditer(line):
            start = max(0, match.start() - METRIC_CONTEXT_RADIUS)
            end = min(len(line), match.start() + METRIC_CONTEXT_RADIUS)
            add(line[start:end].strip(), PhraseCategory.metric)
        if _ROLE_RE.search(line):
            add(trimmed, PhraseCategory.role)
        if _ACHIEVEMENT_RE.search(line):
            add(trimmed, PhraseCategory.achievement)
        if _SKILL_RE.search(line):
            add(trimmed, PhraseCategory.skill)
        if len(line) > 20 and _PROPER_BIGRAM_RE.search(line):
            add(trimmed, PhraseCategory.achievement)
    return tuple(phrases)


class ClaimValidator:
    """Checks generated sentences against phrases extracted from a source document.

    Each sentence runs through a cascade of increasingly loose checks and the
    first one that matches decides the result. Results are memoized per
    sentence for the lifetime of the validator.
    """

    def __init__(self, source_text: str) -> None:
        self.phrases: Tuple[Phrase, ...] = extract_phrases(source_text or "")
        self._memo: Dict[str, SentenceCheck] = {}
        LOGGER.info("phrase_index_built", phrases=len(self.phrases))

    @property
    def lenient(self) -> bool:
        return len(self.phrases) < LENIENT_PHRASE_THRESHOLD

    def validate_sentences(self, sentences: List[str]) -> ValidationReport:
        if self.lenient:
            LOGGER.info("validation_lenient", phrases=len(self.phrases), sentences=len(sentences))
            return ValidationReport(
                is_valid=True,
                score=LENIENT_SCORE,
                flagged_claims=[],
                supported_claims=list(sentences),
                corrections=[],
            )
        if not sentences:
            return ValidationReport(is_valid=True, score=100)

        supported: List[str] = []
        flagged: List[str] = []
        corrections: List[Correction] = []
        for sentence in sentences:
            if self.check_sentence(sentence).supported:
                supported.append(sentence)
                continue
            flagged.append(sentence)
            match = self.find_best_match(sentence)
            if match is not None:
                corrections.append(
                    Correction(
                        original=sentence,
                        corrected=match.text,
                        reason="Replaced with verified information from resume",
                    )
                )

        raw_score = len(supported) / len(sentences) * 100
        score = round(max(raw_score, SCORE_FLOOR))
        LOGGER.info(
            "validation_complete",
            supported=len(supported),
            total=len(sentences),
            raw_score=round(raw_score),
            score=score,
        )
        return ValidationReport(
            is_valid=score >= PASS_THRESHOLD,
            score=score,
            flagged_claims=flagged,
            supported_claims=supported,
            corrections=corrections,
        )

    def check_sentence(self, sentence: str) -> SentenceCheck:
        digest = hashlib.sha1(sentence.encode("utf-8")).hexdigest()
        cached = self._memo.get(digest)
        if cached is not None:
            return cached
        result = self._cascade(sentence)
        self._memo[digest] = result
        return result

    def _cascade(self, sentence: str) -> SentenceCheck:
        normalized = normalize_text(sentence)
        for phrase in self.phrases:
            if phrase.normalized and phrase.normalized in normalized:
                return SentenceCheck(True, 1.0, "containment")

        best = max(
            (jaccard(normalized.split("_"), phrase.normalized.split("_")) for phrase in self.phrases),
            default=0.0,
        )
        if best >= JACCARD_THRESHOLD:
            return SentenceCheck(True, best, "jaccard")

        lowered = sentence.lower()
        if any(term in lowered for term in BOILERPLATE_TERMS) or any(
            verb in lowered for verb in ACTION_VERBS
        ):
            return SentenceCheck(True, 0.85, "allow_list")
        if any(pattern.search(sentence) for pattern in PROFESSIONAL_PATTERNS):
            return SentenceCheck(True, 0.80, "professional_language")

        overlap = self._keyword_overlap(lowered)
        return SentenceCheck(
            overlap >= SEMANTIC_THRESHOLD, max(overlap, SEMANTIC_MIN_CONFIDENCE), "keyword_overlap"
        )

    def _keyword_overlap(self, lowered_sentence: str) -> float:
        words = lowered_sentence.split()
        return max(
            (jaccard(words, phrase.text.lower().split()) for phrase in self.phrases),
            default=0.0,
        )

    def find_best_match(self, sentence: str) -> Optional[Phrase]:
        tokens = normalize_text(sentence).split("_")
        best: Optional[Phrase] = None
        best_score = 0.0
        for phrase in self.phrases:
            score = jaccard(tokens, phrase.normalized.split("_"))
            if score > best_score:
                best_score = score
                best = phrase
        return best if best_score > CORRECTION_THRESHOLD else None

    def get_stats(self) -> Dict[str, int]:
        return {"total_phrases": len(self.phrases), "cache_size": len(self._memo)}


def collect_sentences(sections: Mapping[str, str]) -> List[str]:
    return prose_sentences(sections, PROSE_FIELDS)


def apply_corrections(sections: SectionMap, corrections: Iterable[Correction]) -> SectionMap:
    """Substitute each correction's text for its original in every field that contains it."""
    updated = dict(sections)
    for correction in corrections:
        if not correction.original:
            continue
        for name, text in updated.items():
            if correction.original in text:
                updated[name] = text.replace(correction.original, correction.corrected)
    return updated
