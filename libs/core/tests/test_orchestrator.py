from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

from structlog.testing import capture_logs

from libs.core import models
from libs.core.cache_registry import default_cache_registry
from libs.core.cache_store import MemoryCacheStore
from libs.core.config import ComposerSettings
from libs.core.domain_cache import build_domain_caches
from libs.core.llm_provider import LLMProvider
from libs.core.orchestrator import GenerationPipeline
from libs.core.record_store import InMemoryDocumentProvider, InMemoryRecordStore
from libs.core.sections import SECTION_FIELDS, total_words
from libs.core.state_machine import ACTIVE_STAGES

RESUME = "\n".join(
    [
        "Senior Software Engineer at Acme Corp",
        "Led a team of 12 engineers, reducing deployment time by 40%",
        "Built a billing platform in Python processing $2 million in monthly revenue",
        "Certification in cloud architecture and 8 years experience with Kubernetes",
    ]
)

REPLIES: Dict[str, Any] = {
    "critical ATS keywords": {"keywords": ["Python", "Kubernetes"]},
    "most critical requirements": {"requirements": ["Python services", "Team leadership"]},
    "Analyze this style guide": {
        "patterns": ["short sentences"],
        "tone": "confident",
        "structure": "hook, evidence, close",
        "keywords": [],
        "preferences": {},
    },
    "Extract accomplishments, skills and experience": {
        "accomplishments": [{"title": "Billing", "description": "Built a billing platform"}],
        "skills": ["Python"],
        "experience": [],
    },
    "Map the candidate": {
        "accomplishments": [
            {
                "requirement": "Team leadership",
                "accomplishment": "Led a team of 12 engineers",
                "evidence": "Led a team of 12 engineers, reducing deployment time by 40%",
            }
        ]
    },
    "4 value propositions": {
        f"prop{i}": {
            "title": f"Strength {i}",
            "details": "I built a billing platform in Python on Kubernetes.",
        }
        for i in range(1, 5)
    },
    "score it from 0 to 100": {
        "styleCompliance": 91,
        "atsKeywordUse": 99,
        "clarity": 88,
        "impact": 90,
        "overall": 89,
    },
}

Hook = Callable[[str], Awaitable[None]]


class _ScriptedProvider(LLMProvider):
    def __init__(self, replies: Optional[Dict[str, Any]] = None, hook: Optional[Hook] = None) -> None:
        self.replies = dict(REPLIES if replies is None else replies)
        self.hook = hook
        self.prompts: list[str] = []

    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        if self.hook is not None:
            await self.hook(prompt)
        for marker, reply in self.replies.items():
            if marker in prompt:
                return json.dumps(reply)
        return "I led a team of 12 engineers at Acme Corp."

    def count(self, marker: str) -> int:
        return sum(1 for prompt in self.prompts if marker in prompt)


class _RecordingStore(InMemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.stages: list[models.PipelineStage] = []

    async def update_run(self, run_id: int, **updates: Any) -> models.PipelineRun:
        if "stage" in updates:
            self.stages.append(updates["stage"])
        return await super().update_run(run_id, **updates)


class _BrokenDocuments:
    async def get_content(self, user_id: int, category: models.DocumentCategory) -> str:
        raise OSError("document storage offline")


def _world(documents=None):
    store = _RecordingStore()
    documents = documents or InMemoryDocumentProvider()
    caches = build_domain_caches(MemoryCacheStore(), documents, default_cache_registry())
    return store, documents, caches


async def _create_job(store, posting_id: Optional[int] = None, user_id: int = 1) -> models.GenerationJob:
    if posting_id is None:
        posting = await store.create_job_posting(
            models.JobPostingCreate(
                user_id=user_id,
                title="Platform Engineer",
                company="Globex",
                content="Build Python services on Kubernetes and lead a small team.",
            )
        )
        posting_id = posting.id
    return await store.create_job(
        models.GenerationJobCreate(user_id=user_id, job_posting_id=posting_id, candidate_name="Jane Doe")
    )


def _pipeline(job_id, store, caches, provider, **settings) -> GenerationPipeline:
    return GenerationPipeline(
        job_id,
        store=store,
        provider=provider,
        caches=caches,
        settings=ComposerSettings(**settings),
    )


def test_successful_run_completes_job_and_run() -> None:
    store, documents, caches = _world()
    documents.add_document(1, models.DocumentCategory.resume, RESUME)
    provider = _ScriptedProvider()

    async def scenario():
        job = await _create_job(store)
        result = await _pipeline(job.id, store, caches, provider).execute()
        return result, await store.get_run_for_job(job.id), await store.get_job_posting(job.job_posting_id)

    job, run, posting = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.completed
    assert list(job.content) == list(SECTION_FIELDS)
    assert job.content["hiring_manager"] == "Globex Hiring Team"
    assert job.content["signature_name"] == "Jane Doe"
    assert job.style_score == 91
    assert job.overall_score == 89
    assert job.ats_score == 100
    assert job.validation_report is not None
    assert job.validation_score == job.validation_report.score >= 75
    assert job.iterations == 1
    assert posting.ats_keywords == ["Python", "Kubernetes"]
    assert posting.key_requirements == ["Python services", "Team leadership"]

    assert run.status == models.RunStatus.completed
    assert run.stage == models.PipelineStage.completed
    assert run.progress == 100
    assert run.completed_at is not None
    assert run.agent_logs["fallbacks"] == ["coherence"]
    assert set(run.agent_logs["stage_durations_ms"]) == {stage.value for stage in ACTIVE_STAGES}
    assert store.stages == ACTIVE_STAGES + [models.PipelineStage.completed]


def test_progress_is_published_before_stage_work() -> None:
    store, documents, caches = _world()
    seen: Dict[str, tuple] = {}
    job_ids: list[int] = []

    async def hook(prompt: str) -> None:
        if "critical ATS keywords" in prompt:
            run = await store.get_run_for_job(job_ids[0])
            seen["analysis"] = (run.stage, run.current_step, run.progress)

    async def scenario():
        job = await _create_job(store)
        job_ids.append(job.id)
        return await _pipeline(job.id, store, caches, _ScriptedProvider(hook=hook)).execute()

    asyncio.run(scenario())

    assert seen["analysis"] == (models.PipelineStage.analyzing, "Running parallel analysis", 11)


def test_word_budget_is_enforced() -> None:
    store, documents, caches = _world()
    documents.add_document(1, models.DocumentCategory.resume, RESUME)

    async def scenario():
        job = await _create_job(store)
        return await _pipeline(job.id, store, caches, _ScriptedProvider(), word_budget=60).execute()

    job = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.completed
    assert total_words(job.content) <= 60


def test_missing_job_posting_fails_run_and_job() -> None:
    store, _, caches = _world()

    async def scenario():
        job = await _create_job(store, posting_id=999)
        result = await _pipeline(job.id, store, caches, _ScriptedProvider()).execute()
        return result, await store.get_run_for_job(job.id)

    job, run = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.failed
    assert job.content is None
    assert run.status == models.RunStatus.failed
    assert run.stage == models.PipelineStage.failed
    assert run.agent_logs["error"] == "job_posting_not_found:999"
    assert run.agent_logs["step"] == "initializing"


def test_document_provider_failure_is_fatal() -> None:
    store, _, caches = _world(documents=_BrokenDocuments())

    async def scenario():
        job = await _create_job(store)
        result = await _pipeline(job.id, store, caches, _ScriptedProvider()).execute()
        return result, await store.get_run_for_job(job.id)

    job, run = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.failed
    assert run.agent_logs["error"] == "document storage offline"
    assert run.agent_logs["step"] == "loading-context"


def test_stop_during_generation_discards_results() -> None:
    store, documents, caches = _world()
    documents.add_document(1, models.DocumentCategory.resume, RESUME)
    job_ids: list[int] = []

    async def stop_on_opening(prompt: str) -> None:
        if "compelling opening" in prompt:
            run = await store.get_run_for_job(job_ids[0])
            await store.update_run(run.id, status=models.RunStatus.stopped)
            await store.update_job(job_ids[0], status=models.GenerationStatus.failed)

    provider = _ScriptedProvider(hook=stop_on_opening)

    async def scenario():
        job = await _create_job(store)
        job_ids.append(job.id)
        result = await _pipeline(job.id, store, caches, provider).execute()
        return result, await store.get_run_for_job(job.id)

    job, run = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.failed
    assert job.content is None
    assert run.status == models.RunStatus.stopped
    assert run.stage == models.PipelineStage.generating
    assert "error" not in run.agent_logs
    assert provider.count("single cohesive JSON object") == 0


def test_second_run_reuses_cached_analyses() -> None:
    store, documents, caches = _world()
    documents.add_document(1, models.DocumentCategory.resume, RESUME)
    documents.add_document(1, models.DocumentCategory.style_guide, "Be direct.")
    provider = _ScriptedProvider()

    async def scenario():
        first = await _create_job(store)
        await _pipeline(first.id, store, caches, provider).execute()
        second = await _create_job(store, posting_id=first.job_posting_id)
        return await _pipeline(second.id, store, caches, provider).execute()

    job = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.completed
    assert provider.count("Analyze this style guide") == 1
    assert provider.count("Extract accomplishments, skills and experience") == 1
    assert provider.count("Map the candidate") == 1
    assert provider.count("critical ATS keywords") == 2


def test_watchdog_emits_heartbeats_while_running() -> None:
    store, _, caches = _world()

    async def slow(prompt: str) -> None:
        if "critical ATS keywords" in prompt:
            await asyncio.sleep(0.05)

    async def scenario():
        job = await _create_job(store)
        pipeline = _pipeline(
            job.id, store, caches, _ScriptedProvider(hook=slow), watchdog_interval_s=0.01
        )
        return await pipeline.execute()

    with capture_logs() as captured:
        job = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.completed
    assert any(entry["event"] == "pipeline.heartbeat" for entry in captured)


def test_rejects_job_that_is_already_running() -> None:
    store, _, caches = _world()

    async def scenario():
        job = await _create_job(store)
        await store.update_job(job.id, status=models.GenerationStatus.running)
        try:
            await _pipeline(job.id, store, caches, _ScriptedProvider()).execute()
        except Exception as exc:  # noqa: BLE001
            return exc
        return None

    error = asyncio.run(scenario())
    assert error is not None
    assert "generation_in_progress" in str(error)


class _StopOnStageStore(_RecordingStore):
    """Applies a user stop while the given stage's progress write is in flight."""

    def __init__(self, stop_at: Optional[models.PipelineStage]) -> None:
        super().__init__()
        self.stop_at = stop_at

    async def update_run(self, run_id: int, **updates: Any) -> models.PipelineRun:
        if self.stop_at is not None and updates.get("stage") == self.stop_at:
            run = await self.get_run(run_id)
            await super().update_run(run_id, status=models.RunStatus.stopped)
            await self.update_job(run.generation_job_id, status=models.GenerationStatus.failed)
            await asyncio.sleep(0)
        return await super().update_run(run_id, **updates)


def _stop_world(stop_at: models.PipelineStage):
    store = _StopOnStageStore(stop_at)
    documents = InMemoryDocumentProvider()
    documents.add_document(1, models.DocumentCategory.resume, RESUME)
    caches = build_domain_caches(MemoryCacheStore(), documents, default_cache_registry())
    return store, caches


def test_stop_during_stage_entry_is_not_overwritten() -> None:
    store, caches = _stop_world(models.PipelineStage.refining_coherence)
    provider = _ScriptedProvider()

    async def scenario():
        job = await _create_job(store)
        result = await _pipeline(job.id, store, caches, provider).execute()
        return job, result, await store.get_job(job.id), await store.get_run_for_job(job.id)

    job, result, stored, run = asyncio.run(scenario())

    assert result.status == models.GenerationStatus.failed
    assert stored.status == models.GenerationStatus.failed
    assert stored.content is None
    assert run.status == models.RunStatus.stopped
    assert provider.count("single cohesive JSON object") == 0

    store.stop_at = None
    rerun = asyncio.run(_pipeline(job.id, store, caches, provider).execute())
    assert rerun.status == models.GenerationStatus.completed


def test_stop_during_finalizing_discards_final_write() -> None:
    store, caches = _stop_world(models.PipelineStage.finalizing)

    async def scenario():
        job = await _create_job(store)
        result = await _pipeline(job.id, store, caches, _ScriptedProvider()).execute()
        return result, await store.get_run_for_job(job.id)

    job, run = asyncio.run(scenario())

    assert job.status == models.GenerationStatus.failed
    assert job.content is None
    assert job.validation_report is None
    assert run.status == models.RunStatus.stopped
    assert run.stage == models.PipelineStage.finalizing


def _heartbeats(entries) -> int:
    return sum(1 for entry in entries if entry["event"] == "pipeline.heartbeat")


def _execute_and_linger(pipeline: GenerationPipeline):
    with capture_logs() as captured:

        async def scenario():
            job = await pipeline.execute()
            at_return = _heartbeats(captured)
            await asyncio.sleep(0.05)
            return job, at_return

        job, at_return = asyncio.run(scenario())
    return job, at_return, _heartbeats(captured)


def test_watchdog_is_cancelled_after_completion() -> None:
    store, documents, caches = _world()
    documents.add_document(1, models.DocumentCategory.resume, RESUME)
    job = asyncio.run(_create_job(store))
    pipeline = _pipeline(job.id, store, caches, _ScriptedProvider(), watchdog_interval_s=0.01)

    result, at_return, total = _execute_and_linger(pipeline)

    assert result.status == models.GenerationStatus.completed
    assert pipeline._watchdog_task.cancelled()
    assert total == at_return


def test_watchdog_is_cancelled_after_failure() -> None:
    store, _, caches = _world()
    job = asyncio.run(_create_job(store, posting_id=999))
    pipeline = _pipeline(job.id, store, caches, _ScriptedProvider(), watchdog_interval_s=0.01)

    result, at_return, total = _execute_and_linger(pipeline)

    assert result.status == models.GenerationStatus.failed
    assert pipeline._watchdog_task.cancelled()
    assert total == at_return


def test_watchdog_is_cancelled_after_stop() -> None:
    store, caches = _stop_world(models.PipelineStage.generating)
    job = asyncio.run(_create_job(store))
    pipeline = _pipeline(job.id, store, caches, _ScriptedProvider(), watchdog_interval_s=0.01)

    result, at_return, total = _execute_and_linger(pipeline)

    assert result.status == models.GenerationStatus.failed
    assert (asyncio.run(store.get_run_for_job(job.id))).status == models.RunStatus.stopped
    assert pipeline._watchdog_task.cancelled()
    assert total == at_return
