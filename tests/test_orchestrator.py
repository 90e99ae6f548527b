from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from assessment_insights import DataAccessError, ModelCallError, ReportVersionConflict, generate_assessment_report
from assessment_insights.metrics.quality import WARN_LOW_COUNT, WARN_NO_EXCERPTS, WARN_SYNTHESIS_FAILED
from assessment_insights.models import AnalysisReport, SubmissionRecord
from assessment_insights.store import SqliteStore, StaticRecordSource


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SqliteStore]:
    s = SqliteStore(tmp_path / "insights.db")
    s.init_schema()
    try:
        yield s
    finally:
        s.close()


class _RacingStore(SqliteStore):
    """Another writer takes the same version right before each of our first `races` inserts."""

    def __init__(self, db_path: Path, races: int) -> None:
        super().__init__(db_path)
        self.races = races
        self.attempts = 0

    def insert_report(self, report: AnalysisReport) -> None:
        self.attempts += 1
        if self.attempts <= self.races:
            super().insert_report(report.model_copy(update={"id": f"concurrent-{self.attempts}"}))
        super().insert_report(report)


class _BrokenSource:
    def load_records(self, assessment_id: str):
        raise RuntimeError("connection reset")


def test_small_class_is_metrics_only(store: SqliteStore, records_factory, scripted_client) -> None:
    records = records_factory(submitted=5)
    store.save_records(records)
    client = scripted_client([])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)

    assert client.calls == []
    report = out.report
    assert report.report_version == 1
    assert report.misconceptions == []
    assert report.reasoning_patterns is None
    assert report.suggested_actions == []
    assert report.ai_model_version is None
    assert report.evidence_index is None
    assert report.data_quality["llm_mode"] == "metrics_only"
    assert report.data_quality["warnings"] == [WARN_LOW_COUNT]
    assert report.avg_reasoning_score == 4.0
    assert report.question_effectiveness["narrative"] is None
    assert store.get_report(report.id) is not None


@pytest.mark.parametrize("submitted,calls,mode", [(7, 0, "metrics_only"), (8, 1, "low_confidence")])
def test_submission_count_gates_synthesis(
    store: SqliteStore, records_factory, insights_factory, scripted_client, submitted: int, calls: int, mode: str
) -> None:
    store.save_records(records_factory(submitted=submitted))
    client = scripted_client([json.dumps(insights_factory())])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)

    assert len(client.calls) == calls
    assert out.report.data_quality["llm_mode"] == mode
    if calls:
        assert "conservative" in client.calls[0]["system"]
        assert len(out.report.misconceptions) == 1


def test_full_run_keeps_only_grounded_claims(store: SqliteStore, records_factory, insights_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=15, questions=2))
    reply = insights_factory(refs=["E1", "E999"])
    reply["misconceptions"].append(
        dict(reply["misconceptions"][0], claim_id="m2", evidence_refs=["made-up"])
    )
    reply["question_effectiveness"]["revisions"].append({"question_id": "q-unknown", "suggestion": "Drop it."})
    reply_text = json.dumps(reply)
    client = scripted_client([reply_text])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)
    report = out.report

    assert report.data_quality["llm_mode"] == "full"
    assert [m["claim_id"] for m in report.misconceptions] == ["m1"]
    assert report.misconceptions[0]["evidence_refs"] == ["E1"]
    assert report.data_quality["sanitization"] == {"dropped_refs": 2, "dropped_claims": 1, "dropped_revisions": 1}
    assert [r["question_id"] for r in report.question_effectiveness["narrative"]["revisions"]] == ["q1"]
    assert report.raw_ai_analysis == reply_text
    assert report.ai_model_version == "gpt-4o-mini"
    assert set(report.evidence_index["by_id"]) == {f"E{i}" for i in range(1, 21)}

    assert [(r.claim_id, r.excerpt_id, r.submission_id) for r in out.evidence_refs] == [("m1", "E1", "sub-00")]
    assert store.list_evidence_refs(report.id) == out.evidence_refs
    assert len(store.list_excerpts(report.id)) == 20
    assert [row["phase"] for row in store.list_api_calls("asmt-1")] == ["generation"]


def test_evidence_refs_point_at_sampled_excerpts(store: SqliteStore, records_factory, insights_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=16, questions=3))
    client = scripted_client([json.dumps(insights_factory(refs=["E3", "E12", "E25", "E31", "E77"]))])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)

    by_id = {e.excerpt_id: e for e in out.excerpts}
    assert [r.excerpt_id for r in out.evidence_refs] == ["E3", "E12", "E25"]
    for ref in out.evidence_refs:
        assert ref.excerpt_id in by_id
        assert ref.submission_id == by_id[ref.excerpt_id].submission_id
        assert ref.question_id == by_id[ref.excerpt_id].question_id


def test_versions_increment_and_pointer_moves(store: SqliteStore, records_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=5))

    first = generate_assessment_report("asmt-1", source=store, store=store, client=scripted_client([]))
    second = generate_assessment_report("asmt-1", source=store, store=store, client=scripted_client([]))

    assert (first.report.report_version, second.report.report_version) == (1, 2)
    assert first.report.supersedes_report_id is None
    assert second.report.supersedes_report_id == first.report.id
    # earlier versions stay readable
    assert store.get_report(first.report.id) is not None
    pointer = store.get_assessment_pointer("asmt-1")
    assert pointer is not None
    assert pointer["latest_report_id"] == second.report.id
    assert pointer["has_class_report"] == 1


def test_pointer_uses_latest_score_time(store: SqliteStore, records_factory, scripted_client) -> None:
    records = records_factory(submitted=6)
    store.save_records(records)
    out = generate_assessment_report("asmt-1", source=store, store=store, client=scripted_client([]))
    assert out.pointer.scores_last_modified_at == max(s.scored_at for s in records.submissions)


def test_pointer_falls_back_to_generation_time(store: SqliteStore, records_factory, scripted_client) -> None:
    records = records_factory(submitted=2)
    records = records.model_copy(
        update={"submissions": [s.model_copy(update={"scored_at": None}) for s in records.submissions]}
    )
    out = generate_assessment_report(
        "asmt-1", source=StaticRecordSource(records), store=store, client=scripted_client([])
    )
    assert out.pointer.scores_last_modified_at == out.report.generated_at


def test_model_failure_degrades_to_metrics_only(store: SqliteStore, records_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=20))
    client = scripted_client([ModelCallError("503 Service Unavailable")])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)
    report = out.report

    assert report.data_quality["llm_mode"] == "metrics_only"
    assert report.data_quality["warnings"][-1] == WARN_SYNTHESIS_FAILED
    assert report.data_quality["llm_failure"] == "model_call"
    assert report.misconceptions == []
    assert report.raw_ai_analysis is None
    assert report.ai_model_version is None
    assert report.avg_reasoning_score == 4.0
    # the sampled excerpts are still recorded for audit
    assert report.evidence_index is not None
    assert out.evidence_refs == []
    assert [(r["phase"], r["status"]) for r in store.list_api_calls("asmt-1")] == [("generation", "error")]


def test_invalid_output_after_repair_degrades(store: SqliteStore, records_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=20))
    client = scripted_client(["not json", '{"still": "wrong"}'])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)

    assert len(client.calls) == 2
    assert out.report.data_quality["llm_failure"] == "schema_validation"
    assert out.report.data_quality["warnings"][-1] == WARN_SYNTHESIS_FAILED


def test_duplicate_claim_ids_go_through_repair(
    store: SqliteStore, records_factory, insights_factory, scripted_client
) -> None:
    store.save_records(records_factory(submitted=15, questions=2))
    duplicated = insights_factory(refs=["E1"])
    duplicated["misconceptions"].append(dict(duplicated["misconceptions"][0], evidence_refs=["E2"]))
    client = scripted_client([json.dumps(duplicated), json.dumps(insights_factory(refs=["E1"]))])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)

    assert len(client.calls) == 2
    assert out.report.data_quality["llm_mode"] == "full"
    assert [r.claim_id for r in out.evidence_refs] == ["m1"]


def test_unexpected_client_error_degrades(store: SqliteStore, records_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=20))
    out = generate_assessment_report(
        "asmt-1", source=store, store=store, client=scripted_client([RuntimeError("socket closed")])
    )
    assert out.report.data_quality["llm_mode"] == "metrics_only"
    assert out.report.data_quality["llm_failure"] == "unexpected"


def test_default_client_without_key_degrades(
    store: SqliteStore, records_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    store.save_records(records_factory(submitted=20))
    out = generate_assessment_report("asmt-1", source=store, store=store)
    assert out.report.data_quality["llm_failure"] == "model_call"


def test_no_transcripts_skips_the_model(store: SqliteStore, records_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=10, questions=1, missing_transcripts=10))
    client = scripted_client([])

    out = generate_assessment_report("asmt-1", source=store, store=store, client=client)

    assert client.calls == []
    dq = out.report.data_quality
    assert dq["llm_mode"] == "metrics_only"
    assert dq["quality_level"] == "limited"
    assert dq["llm_failure"] == "empty_evidence"
    assert dq["warnings"][-1] == WARN_NO_EXCERPTS
    assert out.report.evidence_index is None


def test_unknown_assessment_is_fatal(store: SqliteStore, scripted_client) -> None:
    with pytest.raises(DataAccessError):
        generate_assessment_report("missing", source=store, store=store, client=scripted_client([]))
    assert store.latest_report("missing") is None


def test_source_failure_is_wrapped(store: SqliteStore, scripted_client) -> None:
    with pytest.raises(DataAccessError, match="connection reset"):
        generate_assessment_report("asmt-1", source=_BrokenSource(), store=store, client=scripted_client([]))


def test_version_conflict_is_retried(tmp_path: Path, records_factory, scripted_client) -> None:
    records = records_factory(submitted=5)
    with _RacingStore(tmp_path / "race.db", races=1) as racing:
        racing.init_schema()
        out = generate_assessment_report(
            "asmt-1", source=StaticRecordSource(records), store=racing, client=scripted_client([])
        )
        assert racing.attempts == 2
        assert out.report.report_version == 2
        assert out.report.supersedes_report_id == "concurrent-1"


def test_version_conflict_gives_up_after_max_attempts(tmp_path: Path, records_factory, scripted_client) -> None:
    records = records_factory(submitted=5)
    with _RacingStore(tmp_path / "race.db", races=3) as racing:
        racing.init_schema()
        with pytest.raises(ReportVersionConflict):
            generate_assessment_report(
                "asmt-1", source=StaticRecordSource(records), store=racing, client=scripted_client([])
            )
        assert racing.attempts == 3


def test_zero_version_attempts_raises(store: SqliteStore, records_factory, scripted_client) -> None:
    store.save_records(records_factory(submitted=5))
    with pytest.raises(ReportVersionConflict):
        generate_assessment_report(
            "asmt-1", source=store, store=store, client=scripted_client([]), max_version_attempts=0
        )
    assert store.latest_report("asmt-1") is None


def test_pointer_handles_mixed_timestamp_offsets(store: SqliteStore, records_factory, scripted_client) -> None:
    records = records_factory(submitted=5)
    submissions = list(records.submissions)
    submissions[0] = submissions[0].model_copy(update={"scored_at": datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)})
    submissions[1] = SubmissionRecord.model_validate(
        {**submissions[1].model_dump(), "scored_at": "2026-03-02T10:00:00"}
    )
    records = records.model_copy(update={"submissions": submissions})

    out = generate_assessment_report(
        "asmt-1", source=StaticRecordSource(records), store=store, client=scripted_client([])
    )
    assert out.pointer.scores_last_modified_at == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
