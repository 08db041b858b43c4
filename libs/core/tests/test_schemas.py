import json

from libs.core.schemas import (
    QUALITY_SCORES_SCHEMA,
    SCHEMA_TARGETS,
    VALUE_PROPOSITIONS_SCHEMA,
    export_schemas,
    schema_errors,
)


def test_export_schemas_writes_one_file_per_model(tmp_path) -> None:
    export_schemas(tmp_path / "schemas")

    written = sorted(path.stem for path in (tmp_path / "schemas").glob("*.json"))
    assert written == sorted(SCHEMA_TARGETS)
    report = json.loads((tmp_path / "schemas" / "ValidationReport.json").read_text())
    assert "is_valid" in report["properties"]


def test_value_proposition_schema_requires_four_filled_props() -> None:
    good = {f"prop{i}": {"title": "T", "details": "D"} for i in range(1, 5)}
    assert schema_errors(VALUE_PROPOSITIONS_SCHEMA, good) == []

    bad = dict(good, prop3={"title": "", "details": "D"})
    errors = schema_errors(VALUE_PROPOSITIONS_SCHEMA, bad)
    assert errors and errors[0].startswith("prop3/title")

    missing = {key: value for key, value in good.items() if key != "prop4"}
    assert schema_errors(VALUE_PROPOSITIONS_SCHEMA, missing)


def test_quality_schema_accepts_nulls_and_rejects_strings() -> None:
    assert schema_errors(QUALITY_SCORES_SCHEMA, {"clarity": None, "impact": 90}) == []
    assert schema_errors(QUALITY_SCORES_SCHEMA, {"clarity": "high"})


def test_schema_errors_without_schema() -> None:
    assert schema_errors(None, {"anything": 1}) == []
