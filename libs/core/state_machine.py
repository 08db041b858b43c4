from __future__ import annotations

from typing import Dict, List, Set

from .models import GenerationStatus, PipelineStage

ACTIVE_STAGES: List[PipelineStage] = [
    PipelineStage.initializing,
    PipelineStage.analyzing,
    PipelineStage.loading_context,
    PipelineStage.mapping_accomplishments,
    PipelineStage.generating,
    PipelineStage.validating,
    PipelineStage.refining_coherence,
    PipelineStage.trimming,
    PipelineStage.finalizing,
]

TERMINAL_STAGES: Set[PipelineStage] = {PipelineStage.completed, PipelineStage.failed}

STAGE_LABELS: Dict[PipelineStage, str] = {
    PipelineStage.initializing: "Initializing",
    PipelineStage.analyzing: "Running parallel analysis",
    PipelineStage.loading_context: "Loading style guide and resume",
    PipelineStage.mapping_accomplishments: "Mapping accomplishments to requirements",
    PipelineStage.generating: "Generating sections in parallel",
    PipelineStage.validating: "Validating claims against resume",
    PipelineStage.refining_coherence: "Coherence analysis",
    PipelineStage.trimming: "Validating word count",
    PipelineStage.finalizing: "Finalizing document",
    PipelineStage.completed: "Complete",
    PipelineStage.failed: "Failed",
}


def _linear_transitions() -> Dict[PipelineStage, Set[PipelineStage]]:
    transitions: Dict[PipelineStage, Set[PipelineStage]] = {}
    for index, stage in enumerate(ACTIVE_STAGES):
        if index + 1 < len(ACTIVE_STAGES):
            nxt = ACTIVE_STAGES[index + 1]
        else:
            nxt = PipelineStage.completed
        transitions[stage] = {nxt, PipelineStage.failed}
    for stage in TERMINAL_STAGES:
        transitions[stage] = set()
    return transitions


STAGE_TRANSITIONS: Dict[PipelineStage, Set[PipelineStage]] = _linear_transitions()

GENERATION_TRANSITIONS: Dict[GenerationStatus, Set[GenerationStatus]] = {
    GenerationStatus.draft: {GenerationStatus.running, GenerationStatus.failed},
    GenerationStatus.running: {
        GenerationStatus.refining,
        GenerationStatus.completed,
        GenerationStatus.failed,
    },
    GenerationStatus.refining: {GenerationStatus.completed, GenerationStatus.failed},
    GenerationStatus.completed: {GenerationStatus.running},
    GenerationStatus.failed: {GenerationStatus.running},
}


def validate_stage_transition(current: PipelineStage | None, new: PipelineStage) -> bool:
    if current is None:
        return new == PipelineStage.initializing
    return new in STAGE_TRANSITIONS.get(current, set())


def validate_generation_transition(current: GenerationStatus, new: GenerationStatus) -> bool:
    return new in GENERATION_TRANSITIONS.get(current, set())


def is_terminal(stage: PipelineStage) -> bool:
    return stage in TERMINAL_STAGES


def stage_progress(stage: PipelineStage) -> int:
    if stage == PipelineStage.completed:
        return 100
    if stage not in ACTIVE_STAGES:
        return 0
    return round(ACTIVE_STAGES.index(stage) / len(ACTIVE_STAGES) * 100)


def is_finished(status: GenerationStatus) -> bool:
    return status in {GenerationStatus.completed, GenerationStatus.failed}
