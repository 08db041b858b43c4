from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping

from libs.core.models import DocumentCategory


@dataclass(frozen=True)
class CacheSpec:
    name: str
    description: str
    category: DocumentCategory
    ttl_seconds: int
    version: str = "1"
    schema_def: Dict[str, Any] = field(default_factory=dict)
    default: Dict[str, Any] = field(default_factory=dict)
    skip_placeholder: bool = False


class CacheRegistry:
    def __init__(self) -> None:
        self._specs: Dict[str, CacheSpec] = {}

    def register(self, spec: CacheSpec) -> None:
        name = spec.name.strip()
        if not name:
            raise ValueError("CacheSpec name must be non-empty")
        if ":" in name:
            raise ValueError("CacheSpec name must not contain ':'")
        if name in self._specs:
            raise ValueError(f"CacheSpec already registered: {name}")
        if spec.ttl_seconds <= 0:
            raise ValueError("CacheSpec ttl_seconds must be positive")
        self._specs[name] = replace(spec, name=name)

    def get(self, name: str) -> CacheSpec:
        return self._specs[name]

    def has(self, name: str) -> bool:
        return name in self._specs

    def list(self) -> List[CacheSpec]:
        return list(self._specs.values())


STYLE_PROFILE = "style_profile"
SOURCE_EMBEDDINGS = "source_embeddings"
JOB_MAPPING = "job_mapping"

DEFAULT_CACHE_SPECS: List[CacheSpec] = [
    CacheSpec(
        name=STYLE_PROFILE,
        description="Tone, structure and phrasing patterns extracted from the user's style guide.",
        category=DocumentCategory.style_guide,
        ttl_seconds=24 * 60 * 60,
        schema_def={
            "type": "object",
            "required": ["patterns", "tone", "structure"],
            "properties": {
                "patterns": {"type": "array"},
                "tone": {"type": "string"},
                "structure": {"type": "string"},
                "keywords": {"type": "array"},
                "preferences": {"type": "object"},
            },
        },
        default={
            "patterns": [],
            "tone": "professional",
            "structure": "standard",
            "keywords": [],
            "preferences": {},
        },
    ),
    CacheSpec(
        name=SOURCE_EMBEDDINGS,
        description="Accomplishments, skills and experience extracted from the user's resume.",
        category=DocumentCategory.resume,
        ttl_seconds=24 * 60 * 60,
        schema_def={
            "type": "object",
            "required": ["accomplishments", "skills", "experience"],
            "properties": {
                "accomplishments": {"type": "array"},
                "skills": {"type": "array"},
                "experience": {"type": "array"},
            },
        },
        default={"accomplishments": [], "skills": [], "experience": []},
        skip_placeholder=True,
    ),
    CacheSpec(
        name=JOB_MAPPING,
        description="Resume accomplishments matched to one job posting's requirements.",
        category=DocumentCategory.resume,
        ttl_seconds=60 * 60,
        schema_def={
            "type": "object",
            "required": ["accomplishments"],
            "properties": {"accomplishments": {"type": "array"}},
        },
        default={"accomplishments": []},
    ),
]


def default_cache_registry(
    ttl_overrides: Mapping[str, int] | None = None,
    extra_specs: Iterable[CacheSpec] | None = None,
) -> CacheRegistry:
    registry = CacheRegistry()
    overrides = dict(ttl_overrides or {})
    for spec in DEFAULT_CACHE_SPECS:
        ttl = overrides.get(spec.name)
        registry.register(replace(spec, ttl_seconds=ttl) if ttl else spec)
    if extra_specs:
        for spec in extra_specs:
            registry.register(spec)
    return registry
