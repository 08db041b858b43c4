from __future__ import annotations

import asyncio
import copy
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from prometheus_client import Counter
from pydantic import ValidationError

from . import events, logging as core_logging, models
from .cache_registry import JOB_MAPPING, SOURCE_EMBEDDINGS, STYLE_PROFILE, CacheRegistry, CacheSpec
from .cache_store import CacheStore
from .record_store import DEFAULT_DOCUMENT_TEXT, DocumentProvider
from .schemas import schema_errors

LOGGER = core_logging.get_logger("composer.cache")

RAW_TIER = "raw"
PROCESSED_TIER = "processed"
DEFAULT_SCOPE = "all"

cache_lookups_total = Counter(
    "composer_cache_lookups_total",
    "Domain cache lookups by outcome",
    ["domain", "tier", "outcome"],
)

ComputeFn = Callable[[str], Awaitable[Dict[str, Any]]]
T = TypeVar("T")


def cache_key(user_id: int, domain: str, scope: str, tier: str) -> str:
    return f"user:{user_id}:{domain}:{scope}:{tier}"


def user_prefix(user_id: int) -> str:
    return f"user:{user_id}:"


def mapping_scope(title: str, company: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", f"{title}_{company}".lower())


class DomainCache:
    """Raw and processed tiers for one named analysis domain.

    The raw tier keeps the verbatim document text; the processed tier keeps
    the derived analysis wrapped in a ``CachedPayload`` envelope whose kind,
    version and JSON shape are checked on every read.
    """

    def __init__(self, spec: CacheSpec, store: CacheStore, documents: DocumentProvider) -> None:
        self.spec = spec
        self.store = store
        self.documents = documents

    @property
    def name(self) -> str:
        return self.spec.name

    def _key(self, user_id: int, scope: str, tier: str) -> str:
        return cache_key(user_id, self.spec.name, scope, tier)

    def get_raw(self, user_id: int, scope: str = DEFAULT_SCOPE) -> Optional[str]:
        value = self.store.get(self._key(user_id, scope, RAW_TIER))
        if not isinstance(value, dict):
            return None
        try:
            payload = models.CachedPayload.model_validate(value)
        except ValidationError:
            return None
        if payload.kind != f"{self.spec.name}:{RAW_TIER}" or not isinstance(payload.data, str):
            return None
        return payload.data

    def set_raw(self, user_id: int, text: str, scope: str = DEFAULT_SCOPE) -> None:
        payload = models.CachedPayload(
            kind=f"{self.spec.name}:{RAW_TIER}", version=self.spec.version, data=text
        )
        self.store.set(self._key(user_id, scope, RAW_TIER), payload.model_dump(), self.spec.ttl_seconds)

    def get_processed(self, user_id: int, scope: str = DEFAULT_SCOPE) -> Optional[Dict[str, Any]]:
        key = self._key(user_id, scope, PROCESSED_TIER)
        value = self.store.get(key)
        if value is None:
            return None
        problem = self._shape_problem(value)
        if problem:
            cache_lookups_total.labels(self.spec.name, PROCESSED_TIER, "mismatch").inc()
            LOGGER.warning(events.CACHE_SHAPE_MISMATCH, domain=self.spec.name, key=key, problem=problem)
            return None
        return copy.deepcopy(value["data"])

    def set_processed(self, user_id: int, data: Dict[str, Any], scope: str = DEFAULT_SCOPE) -> None:
        payload = models.CachedPayload(
            kind=f"{self.spec.name}:{PROCESSED_TIER}", version=self.spec.version, data=data
        )
        self.store.set(
            self._key(user_id, scope, PROCESSED_TIER), payload.model_dump(), self.spec.ttl_seconds
        )

    def invalidate(self, user_id: int, scope: str = DEFAULT_SCOPE) -> None:
        self.store.delete(self._key(user_id, scope, RAW_TIER))
        self.store.delete(self._key(user_id, scope, PROCESSED_TIER))

    async def _store_io(self, call: Callable[..., T], *args: Any) -> T:
        if self.store.blocking_io:
            return await asyncio.to_thread(call, *args)
        return call(*args)

    def default(self) -> Dict[str, Any]:
        return copy.deepcopy(self.spec.default)

    async def load_raw(self, user_id: int, scope: str = DEFAULT_SCOPE) -> str:
        cached = await self._store_io(self.get_raw, user_id, scope)
        if cached is not None:
            cache_lookups_total.labels(self.spec.name, RAW_TIER, "hit").inc()
            LOGGER.info(events.CACHE_HIT, domain=self.spec.name, tier=RAW_TIER, user_id=user_id)
            return cached
        cache_lookups_total.labels(self.spec.name, RAW_TIER, "miss").inc()
        LOGGER.info(events.CACHE_MISS, domain=self.spec.name, tier=RAW_TIER, user_id=user_id)
        text = await self.documents.get_content(user_id, self.spec.category)
        await self._store_io(self.set_raw, user_id, text, scope)
        return text

    async def load_or_compute(
        self, user_id: int, scope: str, compute: ComputeFn
    ) -> Dict[str, Any]:
        processed = await self._store_io(self.get_processed, user_id, scope)
        if processed is not None:
            cache_lookups_total.labels(self.spec.name, PROCESSED_TIER, "hit").inc()
            LOGGER.info(
                events.CACHE_HIT, domain=self.spec.name, tier=PROCESSED_TIER, user_id=user_id, scope=scope
            )
            return processed
        cache_lookups_total.labels(self.spec.name, PROCESSED_TIER, "miss").inc()
        LOGGER.info(
            events.CACHE_MISS, domain=self.spec.name, tier=PROCESSED_TIER, user_id=user_id, scope=scope
        )
        raw = await self.load_raw(user_id, scope)
        if self.spec.skip_placeholder and raw == DEFAULT_DOCUMENT_TEXT.get(self.spec.category):
            result = self.default()
            await self._store_io(self.set_processed, user_id, result, scope)
            return result
        try:
            result = await compute(raw)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                events.CACHE_COMPUTE_FAILED,
                domain=self.spec.name,
                user_id=user_id,
                scope=scope,
                error=str(exc),
            )
            return self.default()
        errors = schema_errors(self.spec.schema_def, result)
        if errors:
            LOGGER.warning(
                events.CACHE_COMPUTE_FAILED,
                domain=self.spec.name,
                user_id=user_id,
                scope=scope,
                error="; ".join(errors),
            )
            return self.default()
        await self._store_io(self.set_processed, user_id, result, scope)
        return copy.deepcopy(result)

    def _shape_problem(self, value: Any) -> Optional[str]:
        if not isinstance(value, dict):
            return "not_an_envelope"
        try:
            payload = models.CachedPayload.model_validate(value)
        except ValidationError:
            return "not_an_envelope"
        if payload.kind != f"{self.spec.name}:{PROCESSED_TIER}":
            return f"kind_mismatch:{payload.kind}"
        if payload.version != self.spec.version:
            return f"version_mismatch:{payload.version}"
        errors = schema_errors(self.spec.schema_def, payload.data)
        if errors:
            return "; ".join(errors)
        return None


@dataclass
class DomainCaches:
    style_profile: DomainCache
    source_embeddings: DomainCache
    job_mapping: DomainCache
    store: CacheStore

    def all(self) -> list[DomainCache]:
        return [self.style_profile, self.source_embeddings, self.job_mapping]


def build_domain_caches(
    store: CacheStore, documents: DocumentProvider, registry: CacheRegistry
) -> DomainCaches:
    return DomainCaches(
        style_profile=DomainCache(registry.get(STYLE_PROFILE), store, documents),
        source_embeddings=DomainCache(registry.get(SOURCE_EMBEDDINGS), store, documents),
        job_mapping=DomainCache(registry.get(JOB_MAPPING), store, documents),
        store=store,
    )


def invalidate_user_caches(caches: DomainCaches, user_id: int) -> int:
    """Drop every cached entry owned by ``user_id``; returns how many keys were removed."""
    prefix = user_prefix(user_id)
    before = {key for key in caches.store.keys_matching(prefix) if key.startswith(prefix)}
    for cache in caches.all():
        cache.invalidate(user_id)
    mapping_prefix = f"{prefix}{caches.job_mapping.name}:"
    for key in caches.store.keys_matching(mapping_prefix):
        if key.startswith(mapping_prefix):
            caches.store.delete(key)
    after = {key for key in caches.store.keys_matching(prefix) if key.startswith(prefix)}
    removed = len(before - after)
    LOGGER.info(events.CACHE_INVALIDATED, user_id=user_id, removed=removed)
    return removed


def user_cache_stats(caches: DomainCaches, user_id: int) -> Dict[str, int]:
    prefix = user_prefix(user_id)
    stats: Dict[str, int] = {}
    for cache in caches.all():
        domain_prefix = f"{prefix}{cache.name}:"
        stats[cache.name] = len(
            [key for key in caches.store.keys_matching(domain_prefix) if key.startswith(domain_prefix)]
        )
    return stats
