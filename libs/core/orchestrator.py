from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, Dict, List, Optional

from prometheus_client import Counter, Histogram

from . import agents, events, logging as core_logging, models, state_machine
from .claim_validator import ClaimValidator, apply_corrections, collect_sentences
from .config import ComposerSettings
from .domain_cache import DEFAULT_SCOPE, DomainCaches, mapping_scope
from .errors import PipelineStateError, PipelineStoppedError, RecordNotFoundError
from .llm_provider import LLMProvider
from .record_store import RecordStore
from .sections import SectionMap, total_words
from .trimmer import trim_to_budget

LOGGER = core_logging.get_logger("composer.pipeline")

pipeline_runs_total = Counter(
    "composer_pipeline_runs_total",
    "Pipeline runs by final status",
    ["status"],
)
stage_duration_seconds = Histogram(
    "composer_stage_duration_seconds",
    "Time spent in each pipeline stage",
    ["stage"],
)


class GenerationPipeline:
    """Drives one generation job through every pipeline stage.

    Progress is written to the job's ``PipelineRun`` on entry to each stage,
    before that stage does any work. Before every stage, and again before the
    final write, the job and run are re-read so that a stop request made while
    a stage was in flight discards its results.
    """

    def __init__(
        self,
        job_id: int,
        *,
        store: RecordStore,
        provider: LLMProvider,
        caches: DomainCaches,
        settings: Optional[ComposerSettings] = None,
    ) -> None:
        self.job_id = job_id
        self.store = store
        self.provider = provider
        self.caches = caches
        self.settings = settings or ComposerSettings()
        self.run_id: Optional[int] = None
        self._stage: Optional[models.PipelineStage] = None
        self._stage_started = 0.0
        self._durations_ms: Dict[str, int] = {}
        self._fallbacks: List[str] = []
        self._watchdog_task: Optional[asyncio.Task[None]] = None
        self.logger = LOGGER.bind(job_id=job_id)

    async def execute(self) -> models.GenerationJob:
        job = await self.store.get_job(self.job_id)
        if job is None:
            raise RecordNotFoundError(f"generation_job_not_found:{self.job_id}")
        if job.status in {models.GenerationStatus.running, models.GenerationStatus.refining}:
            raise PipelineStateError(f"generation_in_progress:{self.job_id}")
        run = await self.store.create_run(models.PipelineRunCreate(generation_job_id=job.id))
        self.run_id = run.id
        self.logger = self.logger.bind(run_id=run.id)
        self.logger.info(events.PIPELINE_STARTED, user_id=job.user_id)
        self._watchdog_task = asyncio.create_task(self._watchdog())
        try:
            result = await self._run(job)
        except PipelineStoppedError as exc:
            pipeline_runs_total.labels(status="stopped").inc()
            self.logger.info(events.PIPELINE_STOPPED, stage=self._stage_name(), detail=exc.detail)
            return await self._current_job()
        except Exception as exc:  # noqa: BLE001
            pipeline_runs_total.labels(status="failed").inc()
            return await self._fail(exc)
        finally:
            self._watchdog_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watchdog_task
        pipeline_runs_total.labels(status="completed").inc()
        return result

    async def _run(self, job: models.GenerationJob) -> models.GenerationJob:
        job = await self._set_job_status(job, models.GenerationStatus.running)
        await self._enter(models.PipelineStage.initializing)
        posting = await self.store.get_job_posting(job.job_posting_id)
        if posting is None:
            raise RecordNotFoundError(f"job_posting_not_found:{job.job_posting_id}")

        await self._enter(models.PipelineStage.analyzing)
        async with asyncio.TaskGroup() as group:
            keyword_task = group.create_task(
                agents.extract_ats_keywords(self.provider, posting.content)
            )
            requirement_task = group.create_task(
                agents.extract_requirements(self.provider, posting.content)
            )
        ats_keywords = self._settle(keyword_task.result(), [])
        requirements = self._settle(requirement_task.result(), [])
        await self._ensure_active()
        posting = await self.store.update_job_posting(
            posting.id, ats_keywords=ats_keywords, key_requirements=requirements
        )

        await self._enter(models.PipelineStage.loading_context)
        style_profile = await self.caches.style_profile.load_or_compute(
            job.user_id, DEFAULT_SCOPE, agents.style_analyzer(self.provider)
        )
        source_profile = await self.caches.source_embeddings.load_or_compute(
            job.user_id, DEFAULT_SCOPE, agents.source_profiler(self.provider)
        )
        resume_text = await self.caches.source_embeddings.load_raw(job.user_id)

        await self._enter(models.PipelineStage.mapping_accomplishments)
        mapping = await self.caches.job_mapping.load_or_compute(
            job.user_id,
            mapping_scope(posting.title, posting.company),
            agents.accomplishment_mapper(self.provider, requirements),
        )
        accomplishments = mapping.get("accomplishments") or source_profile.get("accomplishments", [])

        await self._enter(models.PipelineStage.generating)
        context = agents.AgentContext(
            job_title=posting.title,
            company=posting.company,
            job_content=posting.content,
            style_profile=style_profile,
            accomplishments=list(accomplishments),
            ats_keywords=ats_keywords,
            requirements=requirements,
            candidate_name=job.candidate_name or self.settings.candidate_name,
        )
        sections, failures = await agents.generate_sections(context, self.provider)
        self._fallbacks.extend(failure.agent for failure in failures)

        await self._enter(models.PipelineStage.validating)
        validator = ClaimValidator(resume_text)
        report = validator.validate_sentences(collect_sentences(sections))
        sections = apply_corrections(sections, report.corrections)

        await self._enter(models.PipelineStage.refining_coherence)
        job = await self._set_job_status(job, models.GenerationStatus.refining)
        sections = self._settle(await agents.refine_coherence(self.provider, sections), sections)

        await self._enter(models.PipelineStage.trimming)
        sections = trim_to_budget(sections, self.settings.word_budget)

        await self._enter(models.PipelineStage.finalizing)
        scores = self._settle(
            await agents.score_quality(self.provider, sections, ats_keywords),
            models.QualityScores(),
        )
        scores = agents.with_keyword_coverage(scores, sections, ats_keywords)
        return await self._finalize(job, sections, scores, report, validator.get_stats())

    async def _finalize(
        self,
        job: models.GenerationJob,
        sections: SectionMap,
        scores: models.QualityScores,
        report: models.ValidationReport,
        validator_stats: Dict[str, int],
    ) -> models.GenerationJob:
        self._close_stage()
        updated = await self._set_job_status(
            job,
            models.GenerationStatus.completed,
            content=dict(sections),
            style_score=scores.style_compliance,
            ats_score=scores.ats_keyword_use,
            clarity_score=scores.clarity,
            impact_score=scores.impact,
            overall_score=scores.overall,
            validation_score=report.score,
            validation_report=report,
            iterations=job.iterations + 1,
            generated_at=models.utcnow(),
        )
        await self.store.update_run(
            self.run_id,
            stage=models.PipelineStage.completed,
            current_step=state_machine.STAGE_LABELS[models.PipelineStage.completed],
            status=models.RunStatus.completed,
            progress=state_machine.stage_progress(models.PipelineStage.completed),
            completed_at=models.utcnow(),
            agent_logs={
                "stage_durations_ms": dict(self._durations_ms),
                "fallbacks": list(self._fallbacks),
                "word_count": total_words(sections),
                "validator": validator_stats,
            },
        )
        self._stage = models.PipelineStage.completed
        self.logger.info(
            events.PIPELINE_COMPLETED,
            overall_score=scores.overall,
            validation_score=report.score,
            fallbacks=len(self._fallbacks),
        )
        return updated

    async def _fail(self, exc: Exception) -> models.GenerationJob:
        message = getattr(exc, "detail", None) or str(exc) or type(exc).__name__
        last_step = self._stage_name()
        self._close_stage()
        self.logger.error(events.PIPELINE_FAILED, stage=last_step, error=message)
        run = await self.store.get_run(self.run_id)
        logs: Dict[str, Any] = dict(run.agent_logs) if run else {}
        logs.update(
            {
                "error": message,
                "step": last_step,
                "stage_durations_ms": dict(self._durations_ms),
                "fallbacks": list(self._fallbacks),
            }
        )
        await self.store.update_run(
            self.run_id,
            stage=models.PipelineStage.failed,
            status=models.RunStatus.failed,
            agent_logs=logs,
            completed_at=models.utcnow(),
        )
        self._stage = models.PipelineStage.failed
        return await self.store.update_job(self.job_id, status=models.GenerationStatus.failed)

    async def _enter(self, stage: models.PipelineStage) -> None:
        await self._ensure_active()
        if not state_machine.validate_stage_transition(self._stage, stage):
            raise PipelineStateError(f"invalid_stage_transition:{self._stage_name()}->{stage.value}")
        self._close_stage()
        label = state_machine.STAGE_LABELS[stage]
        await self.store.update_run(
            self.run_id,
            stage=stage,
            current_step=label,
            progress=state_machine.stage_progress(stage),
        )
        self._stage = stage
        self._stage_started = time.perf_counter()
        self.logger.info(events.PIPELINE_STAGE_ENTERED, stage=stage.value, step=label)

    def _close_stage(self) -> None:
        if self._stage is None or state_machine.is_terminal(self._stage) or not self._stage_started:
            return
        elapsed = time.perf_counter() - self._stage_started
        stage_duration_seconds.labels(stage=self._stage.value).observe(elapsed)
        self._durations_ms[self._stage.value] = int(elapsed * 1000)
        self._stage_started = 0.0

    async def _ensure_active(self, *, allow_failed_job: bool = False) -> models.GenerationJob:
        job = await self.store.get_job(self.job_id)
        run = await self.store.get_run(self.run_id)
        if job is None:
            raise RecordNotFoundError(f"generation_job_not_found:{self.job_id}")
        if run is not None and run.status == models.RunStatus.stopped:
            raise PipelineStoppedError(f"run_stopped:{self.run_id}")
        if job.status == models.GenerationStatus.failed and not allow_failed_job:
            raise PipelineStoppedError(f"job_stopped:{self.job_id}")
        return job

    async def _set_job_status(
        self, job: models.GenerationJob, status: models.GenerationStatus, **updates: Any
    ) -> models.GenerationJob:
        """Write a job status checked against the stored record, not ``job``.

        A failed job may only be restarted before the first stage; after that a
        stored ``failed`` job or a stopped run is a user stop and is never overwritten.
        """
        stored = await self._ensure_active(allow_failed_job=self._stage is None)
        if not state_machine.validate_generation_transition(stored.status, status):
            raise PipelineStateError(f"invalid_job_transition:{stored.status.value}->{status.value}")
        return await self.store.update_job(job.id, status=status, **updates)

    async def _current_job(self) -> models.GenerationJob:
        job = await self.store.get_job(self.job_id)
        if job is None:
            raise RecordNotFoundError(f"generation_job_not_found:{self.job_id}")
        return job

    def _settle(self, result: agents.AgentResult[Any], fallback: Any) -> Any:
        if not result.ok:
            self._fallbacks.append(result.agent)
        return result.or_fallback(fallback)

    def _stage_name(self) -> str:
        return self._stage.value if self._stage else "none"

    async def _watchdog(self) -> None:
        while True:
            await asyncio.sleep(self.settings.watchdog_interval_s)
            self.logger.info(events.PIPELINE_HEARTBEAT, stage=self._stage_name())
