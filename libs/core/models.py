from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationStatus(str, Enum):
    draft = "draft"
    running = "running"
    refining = "refining"
    completed = "completed"
    failed = "failed"


class RunStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"
    stopped = "stopped"


class PipelineStage(str, Enum):
    initializing = "initializing"
    analyzing = "analyzing"
    loading_context = "loading-context"
    mapping_accomplishments = "mapping-accomplishments"
    generating = "generating"
    validating = "validating"
    refining_coherence = "refining-coherence"
    trimming = "trimming"
    finalizing = "finalizing"
    completed = "completed"
    failed = "failed"


class DocumentCategory(str, Enum):
    style_guide = "style-guide"
    resume = "resume"


class PhraseCategory(str, Enum):
    metric = "metric"
    role = "role"
    achievement = "achievement"
    skill = "skill"


class JobPosting(BaseModel):
    id: int
    user_id: int
    title: str
    company: str
    content: str
    ats_keywords: List[str] = Field(default_factory=list)
    key_requirements: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class JobPostingCreate(BaseModel):
    user_id: int
    title: str
    company: str
    content: str


class Correction(BaseModel):
    original: str
    corrected: str
    reason: str


class ValidationReport(BaseModel):
    is_valid: bool
    score: int
    flagged_claims: List[str] = Field(default_factory=list)
    supported_claims: List[str] = Field(default_factory=list)
    corrections: List[Correction] = Field(default_factory=list)


class QualityScores(BaseModel):
    style_compliance: int = 85
    ats_keyword_use: int = 85
    clarity: int = 85
    impact: int = 85
    overall: int = 85


class GenerationJob(BaseModel):
    id: int
    user_id: int
    job_posting_id: int
    status: GenerationStatus = GenerationStatus.draft
    content: Optional[Dict[str, str]] = None
    style_score: int = 0
    ats_score: int = 0
    clarity_score: int = 0
    impact_score: int = 0
    validation_score: int = 0
    overall_score: int = 0
    validation_report: Optional[ValidationReport] = None
    iterations: int = 0
    candidate_name: Optional[str] = None
    generated_at: datetime = Field(default_factory=utcnow)


class GenerationJobCreate(BaseModel):
    user_id: int
    job_posting_id: int
    candidate_name: Optional[str] = None


class PipelineRun(BaseModel):
    id: int
    generation_job_id: int
    current_step: str
    stage: PipelineStage = PipelineStage.initializing
    progress: int = 0
    status: RunStatus = RunStatus.running
    agent_logs: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class PipelineRunCreate(BaseModel):
    generation_job_id: int
    current_step: str = "Initializing"
    stage: PipelineStage = PipelineStage.initializing


class CachedPayload(BaseModel):
    kind: str
    version: str
    data: Any = None
