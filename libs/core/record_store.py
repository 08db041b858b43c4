from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional, Protocol

from . import models
from .errors import RecordNotFoundError

DEFAULT_DOCUMENT_TEXT: Dict[models.DocumentCategory, str] = {
    models.DocumentCategory.style_guide: "Professional cover letter style guide",
    models.DocumentCategory.resume: "No resume content available",
}


class DocumentProvider(Protocol):
    async def get_content(self, user_id: int, category: models.DocumentCategory) -> str:
        ...


class DocumentRenderer(Protocol):
    async def render(self, section_map: Dict[str, str]) -> bytes:
        ...


class RecordStore(Protocol):
    async def create_job_posting(self, request: models.JobPostingCreate) -> models.JobPosting:
        ...

    async def get_job_posting(self, posting_id: int) -> Optional[models.JobPosting]:
        ...

    async def update_job_posting(self, posting_id: int, **updates: Any) -> models.JobPosting:
        ...

    async def create_job(self, request: models.GenerationJobCreate) -> models.GenerationJob:
        ...

    async def get_job(self, job_id: int) -> Optional[models.GenerationJob]:
        ...

    async def update_job(self, job_id: int, **updates: Any) -> models.GenerationJob:
        ...

    async def find_jobs_for_user(self, user_id: int) -> List[models.GenerationJob]:
        ...

    async def create_run(self, request: models.PipelineRunCreate) -> models.PipelineRun:
        ...

    async def get_run(self, run_id: int) -> Optional[models.PipelineRun]:
        ...

    async def get_run_for_job(self, job_id: int) -> Optional[models.PipelineRun]:
        ...

    async def update_run(self, run_id: int, **updates: Any) -> models.PipelineRun:
        ...


class InMemoryDocumentProvider:
    def __init__(self) -> None:
        self._documents: Dict[tuple[int, models.DocumentCategory], List[str]] = {}

    def add_document(self, user_id: int, category: models.DocumentCategory, content: str) -> None:
        self._documents.setdefault((user_id, category), []).append(content)

    def clear(self, user_id: int, category: models.DocumentCategory) -> None:
        self._documents.pop((user_id, category), None)

    async def get_content(self, user_id: int, category: models.DocumentCategory) -> str:
        contents = [text for text in self._documents.get((user_id, category), []) if text.strip()]
        if not contents:
            return DEFAULT_DOCUMENT_TEXT[category]
        return "\n\n".join(contents)


class InMemoryRecordStore:
    """Dict-backed record store; every read returns a copy."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._postings: Dict[int, models.JobPosting] = {}
        self._jobs: Dict[int, models.GenerationJob] = {}
        self._runs: Dict[int, models.PipelineRun] = {}

    async def create_job_posting(self, request: models.JobPostingCreate) -> models.JobPosting:
        posting = models.JobPosting(id=next(self._ids), **request.model_dump())
        self._postings[posting.id] = posting
        return posting.model_copy(deep=True)

    async def get_job_posting(self, posting_id: int) -> Optional[models.JobPosting]:
        posting = self._postings.get(posting_id)
        return posting.model_copy(deep=True) if posting else None

    async def update_job_posting(self, posting_id: int, **updates: Any) -> models.JobPosting:
        posting = _require(self._postings, posting_id, "job_posting")
        updated = posting.model_copy(update=updates, deep=True)
        self._postings[posting_id] = updated
        return updated.model_copy(deep=True)

    async def create_job(self, request: models.GenerationJobCreate) -> models.GenerationJob:
        job = models.GenerationJob(id=next(self._ids), **request.model_dump())
        self._jobs[job.id] = job
        return job.model_copy(deep=True)

    async def get_job(self, job_id: int) -> Optional[models.GenerationJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update_job(self, job_id: int, **updates: Any) -> models.GenerationJob:
        job = _require(self._jobs, job_id, "generation_job")
        updated = job.model_copy(update=updates, deep=True)
        self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    async def find_jobs_for_user(self, user_id: int) -> List[models.GenerationJob]:
        return [
            job.model_copy(deep=True)
            for job in sorted(self._jobs.values(), key=lambda item: item.id)
            if job.user_id == user_id
        ]

    async def create_run(self, request: models.PipelineRunCreate) -> models.PipelineRun:
        run = models.PipelineRun(id=next(self._ids), **request.model_dump())
        self._runs[run.id] = run
        return run.model_copy(deep=True)

    async def get_run(self, run_id: int) -> Optional[models.PipelineRun]:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def get_run_for_job(self, job_id: int) -> Optional[models.PipelineRun]:
        runs = [run for run in self._runs.values() if run.generation_job_id == job_id]
        if not runs:
            return None
        return max(runs, key=lambda item: item.id).model_copy(deep=True)

    async def update_run(self, run_id: int, **updates: Any) -> models.PipelineRun:
        run = _require(self._runs, run_id, "pipeline_run")
        updated = run.model_copy(update=updates, deep=True)
        self._runs[run_id] = updated
        return updated.model_copy(deep=True)


def _require(records: Dict[int, Any], record_id: int, label: str) -> Any:
    record = records.get(record_id)
    if record is None:
        raise RecordNotFoundError(f"{label}_not_found:{record_id}")
    return record
