from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional

from libs.core import logging as core_logging, models
from libs.core.config import load_settings

from .service import CoverLetterService

LOGGER = core_logging.get_logger("composer")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate a cover letter for one job posting.")
    parser.add_argument("--title", required=True, help="Job title")
    parser.add_argument("--company", required=True, help="Hiring company")
    parser.add_argument("--posting", required=True, type=Path, help="Path to the job posting text")
    parser.add_argument("--resume", required=True, type=Path, help="Path to the resume text")
    parser.add_argument("--style-guide", type=Path, help="Path to a writing style sample")
    parser.add_argument("--candidate-name", help="Name used in the signature")
    parser.add_argument("--user-id", type=int, default=1)
    parser.add_argument("--word-budget", type=int, help="Override WORD_BUDGET")
    parser.add_argument("--config", help="YAML config file with a composer: section")
    return parser


async def run(args: argparse.Namespace) -> models.GenerationJob:
    settings = load_settings(config_path=args.config)
    if args.word_budget and args.word_budget > 0:
        settings.word_budget = args.word_budget
    service = CoverLetterService.from_settings(settings)
    await service.upload_document(
        args.user_id, models.DocumentCategory.resume, args.resume.read_text(encoding="utf-8")
    )
    if args.style_guide:
        await service.upload_document(
            args.user_id,
            models.DocumentCategory.style_guide,
            args.style_guide.read_text(encoding="utf-8"),
        )
    posting = await service.create_job_posting(
        args.user_id, args.title, args.company, args.posting.read_text(encoding="utf-8")
    )
    return await service.run_generation(args.user_id, posting.id, args.candidate_name)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    core_logging.configure_logging("composer")
    job = asyncio.run(run(args))
    print(json.dumps(job.model_dump(mode="json"), indent=2))
    if job.status != models.GenerationStatus.completed:
        LOGGER.error("generation_failed", job_id=job.id, status=job.status.value)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
