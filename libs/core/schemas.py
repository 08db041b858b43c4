from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Type

from jsonschema import Draft202012Validator
from pydantic import BaseModel

from . import models

SCHEMA_TARGETS: Dict[str, Type[BaseModel]] = {
    "GenerationJob": models.GenerationJob,
    "GenerationJobCreate": models.GenerationJobCreate,
    "PipelineRun": models.PipelineRun,
    "JobPosting": models.JobPosting,
    "JobPostingCreate": models.JobPostingCreate,
    "ValidationReport": models.ValidationReport,
    "QualityScores": models.QualityScores,
    "CachedPayload": models.CachedPayload,
}

VALUE_PROPOSITIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["prop1", "prop2", "prop3", "prop4"],
    "properties": {
        key: {
            "type": "object",
            "required": ["title", "details"],
            "properties": {
                "title": {"type": "string", "minLength": 1},
                "details": {"type": "string", "minLength": 1},
            },
        }
        for key in ("prop1", "prop2", "prop3", "prop4")
    },
}

QUALITY_SCORES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        key: {"type": ["number", "null"]}
        for key in ("styleCompliance", "atsKeywordUse", "clarity", "impact", "overall")
    },
}


def schema_errors(schema: Dict[str, Any] | None, payload: Any, limit: int = 5) -> List[str]:
    if not schema:
        return []
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(payload), key=lambda err: str(list(err.path)))
    return [
        f"{'/'.join(map(str, err.path)) or '<root>'}: {err.message}" for err in errors[:limit]
    ]


def export_schemas(target_dir: Path) -> None:
    target_dir.mkdir(parents=True, exist_ok=True)
    for name, model in SCHEMA_TARGETS.items():
        schema_path = target_dir / f"{name}.json"
        schema_path.write_text(json.dumps(model.model_json_schema(), indent=2))
