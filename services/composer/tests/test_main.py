import json

import structlog

from services.composer.app import main as composer_main


def _clear_env(monkeypatch) -> None:
    for key in ("LLM_PROVIDER", "CACHE_BACKEND", "COMPOSER_CONFIG_PATH", "WORD_BUDGET", "CANDIDATE_NAME"):
        monkeypatch.delenv(key, raising=False)


def test_cli_prints_completed_job(tmp_path, monkeypatch, capsys) -> None:
    _clear_env(monkeypatch)
    posting = tmp_path / "posting.txt"
    posting.write_text("Build Python services and mentor engineers.", encoding="utf-8")
    resume = tmp_path / "resume.txt"
    resume.write_text("Led a team of 12 engineers\nBuilt a billing platform in Python", encoding="utf-8")

    try:
        code = composer_main.main(
            [
                "--title",
                "Platform Engineer",
                "--company",
                "Globex",
                "--posting",
                str(posting),
                "--resume",
                str(resume),
                "--candidate-name",
                "Jane Doe",
                "--word-budget",
                "120",
            ]
        )
    finally:
        structlog.reset_defaults()

    assert code == 0
    output = capsys.readouterr().out
    job = json.loads(output[output.index("{\n") :])
    assert job["status"] == "completed"
    assert job["content"]["hiring_manager"] == "Globex Hiring Team"
    assert job["content"]["signature_name"] == "Jane Doe"
    assert sum(len(text.split()) for text in job["content"].values()) <= 120
