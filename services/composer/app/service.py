from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from libs.core import events, logging as core_logging, models, state_machine
from libs.core.cache_registry import default_cache_registry
from libs.core.cache_store import CacheStore, build_cache_store
from libs.core.config import ComposerSettings
from libs.core.domain_cache import DomainCaches, build_domain_caches, invalidate_user_caches, user_cache_stats
from libs.core.errors import ContentNotReadyError, GenerationAlreadyFinishedError, RecordNotFoundError
from libs.core.llm_provider import LLMProvider, resolve_provider
from libs.core.orchestrator import GenerationPipeline
from libs.core.record_store import (
    DocumentRenderer,
    InMemoryDocumentProvider,
    InMemoryRecordStore,
    RecordStore,
)

LOGGER = core_logging.get_logger("composer.service")


class CoverLetterService:
    """Entry points used by callers: postings, generation runs, status, stop and uploads."""

    def __init__(
        self,
        *,
        store: RecordStore,
        documents: InMemoryDocumentProvider,
        provider: LLMProvider,
        caches: DomainCaches,
        settings: Optional[ComposerSettings] = None,
    ) -> None:
        self.store = store
        self.documents = documents
        self.provider = provider
        self.caches = caches
        self.settings = settings or ComposerSettings()
        self._background: Dict[int, asyncio.Task[models.GenerationJob]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: ComposerSettings,
        *,
        provider: Optional[LLMProvider] = None,
        cache_store: Optional[CacheStore] = None,
    ) -> "CoverLetterService":
        documents = InMemoryDocumentProvider()
        registry = default_cache_registry(ttl_overrides=settings.cache_ttls())
        store = cache_store or build_cache_store(settings)
        if provider is None:
            provider = resolve_provider(settings)
        return cls(
            store=InMemoryRecordStore(),
            documents=documents,
            provider=provider,
            caches=build_domain_caches(store, documents, registry),
            settings=settings,
        )

    async def create_job_posting(
        self, user_id: int, title: str, company: str, content: str
    ) -> models.JobPosting:
        return await self.store.create_job_posting(
            models.JobPostingCreate(user_id=user_id, title=title, company=company, content=content)
        )

    async def _create_job(
        self, user_id: int, job_posting_id: int, candidate_name: Optional[str]
    ) -> models.GenerationJob:
        posting = await self.store.get_job_posting(job_posting_id)
        if posting is None or posting.user_id != user_id:
            raise RecordNotFoundError(f"job_posting_not_found:{job_posting_id}")
        return await self.store.create_job(
            models.GenerationJobCreate(
                user_id=user_id,
                job_posting_id=job_posting_id,
                candidate_name=candidate_name or self.settings.candidate_name or None,
            )
        )

    def _pipeline(self, job_id: int) -> GenerationPipeline:
        return GenerationPipeline(
            job_id,
            store=self.store,
            provider=self.provider,
            caches=self.caches,
            settings=self.settings,
        )

    async def start_generation(
        self, user_id: int, job_posting_id: int, candidate_name: Optional[str] = None
    ) -> models.GenerationJob:
        """Create a draft job and run its pipeline in the background."""
        job = await self._create_job(user_id, job_posting_id, candidate_name)
        task = asyncio.create_task(self._pipeline(job.id).execute())
        self._background[job.id] = task
        task.add_done_callback(lambda _: self._background.pop(job.id, None))
        LOGGER.info("generation_scheduled", job_id=job.id, user_id=user_id)
        return job

    async def run_generation(
        self, user_id: int, job_posting_id: int, candidate_name: Optional[str] = None
    ) -> models.GenerationJob:
        job = await self._create_job(user_id, job_posting_id, candidate_name)
        return await self._pipeline(job.id).execute()

    async def wait_for_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background.values()), return_exceptions=True)

    async def get_status(self, job_id: int) -> Dict[str, Any]:
        job = await self._require_job(job_id)
        run = await self.store.get_run_for_job(job_id)
        return {"job": job, "run": run}

    async def stop_generation(self, job_id: int) -> models.GenerationJob:
        job = await self._require_job(job_id)
        if state_machine.is_finished(job.status):
            raise GenerationAlreadyFinishedError(f"generation_already_finished:{job_id}:{job.status.value}")
        run = await self.store.get_run_for_job(job_id)
        if run is None:
            pending = self._background.get(job_id)
            if pending is not None:
                pending.cancel()
        else:
            await self.store.update_run(
                run.id,
                status=models.RunStatus.stopped,
                current_step="Stopped by user",
                completed_at=models.utcnow(),
            )
        stopped = await self.store.update_job(job_id, status=models.GenerationStatus.failed)
        LOGGER.info(events.PIPELINE_STOPPED, job_id=job_id, requested_by="user")
        return stopped

    async def upload_document(
        self, user_id: int, category: models.DocumentCategory, text: str
    ) -> int:
        """Store a document's text and drop every cached analysis for the user."""
        self.documents.add_document(user_id, category, text)
        if self.caches.store.blocking_io:
            return await asyncio.to_thread(invalidate_user_caches, self.caches, user_id)
        return invalidate_user_caches(self.caches, user_id)

    async def get_validation(self, job_id: int) -> Dict[str, Any]:
        job = await self._require_job(job_id)
        return {"validation_score": job.validation_score, "report": job.validation_report}

    async def render(self, job_id: int, renderer: DocumentRenderer) -> bytes:
        job = await self._require_job(job_id)
        if job.status != models.GenerationStatus.completed or not job.content:
            raise ContentNotReadyError(f"content_not_ready:{job_id}")
        return await renderer.render(job.content)

    async def list_jobs(self, user_id: int) -> List[models.GenerationJob]:
        return await self.store.find_jobs_for_user(user_id)

    def cache_stats(self, user_id: int) -> Dict[str, int]:
        return user_cache_stats(self.caches, user_id)

    async def _require_job(self, job_id: int) -> models.GenerationJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise RecordNotFoundError(f"generation_job_not_found:{job_id}")
        return job
