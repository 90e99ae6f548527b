from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ..errors import DataAccessError, ReportVersionConflict
from ..models import (
    AnalysisReport,
    AssessmentInfo,
    AssessmentPointer,
    AssessmentRecords,
    EvidenceExcerpt,
    EvidenceRef,
    QuestionDefinition,
    ResponseRecord,
    RubricDefinition,
    ScoreRecord,
    StudentRecord,
    SubmissionRecord,
)
from ..synth.usage import ApiCallRecord
from ..utils import now_iso, stable_json
from .base import ReportHead

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS assessments (
    id TEXT PRIMARY KEY,
    class_id TEXT,
    title TEXT NOT NULL DEFAULT '',
    subject TEXT,
    target_language TEXT,
    instructions TEXT,
    latest_report_id TEXT,
    has_class_report INTEGER NOT NULL DEFAULT 0,
    scores_last_modified_at TEXT
);
CREATE TABLE IF NOT EXISTS students (
    id TEXT PRIMARY KEY,
    class_id TEXT
);
CREATE TABLE IF NOT EXISTS submissions (
    id TEXT PRIMARY KEY,
    assessment_id TEXT NOT NULL,
    student_id TEXT NOT NULL,
    status TEXT NOT NULL,
    scored_at TEXT
);
CREATE TABLE IF NOT EXISTS submission_responses (
    submission_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    transcript TEXT
);
CREATE TABLE IF NOT EXISTS question_scores (
    submission_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    scorer_type TEXT NOT NULL,
    score REAL
);
CREATE TABLE IF NOT EXISTS assessment_questions (
    id TEXT PRIMARY KEY,
    assessment_id TEXT NOT NULL,
    order_index INTEGER NOT NULL,
    question_text TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS rubrics (
    assessment_id TEXT NOT NULL,
    rubric_type TEXT NOT NULL,
    scale_min INTEGER NOT NULL,
    scale_max INTEGER NOT NULL,
    instructions TEXT
);
CREATE TABLE IF NOT EXISTS assessment_analysis_reports (
    id TEXT PRIMARY KEY,
    assessment_id TEXT NOT NULL,
    class_id TEXT,
    status TEXT NOT NULL,
    report_version INTEGER NOT NULL,
    supersedes_report_id TEXT,
    generated_at TEXT NOT NULL,
    student_count INTEGER NOT NULL,
    completion_rate REAL NOT NULL,
    avg_reasoning_score REAL,
    avg_evidence_score REAL,
    avg_response_length_words REAL,
    data_quality TEXT NOT NULL,
    rubric_distributions TEXT NOT NULL,
    question_effectiveness TEXT NOT NULL,
    misconceptions TEXT NOT NULL,
    reasoning_patterns TEXT,
    evidence_patterns TEXT,
    engagement_indicators TEXT,
    suggested_actions TEXT NOT NULL,
    evidence_index TEXT,
    processing_time_seconds REAL NOT NULL,
    ai_model_version TEXT,
    raw_ai_analysis TEXT,
    UNIQUE (assessment_id, report_version)
);
CREATE TABLE IF NOT EXISTS assessment_report_excerpts (
    report_id TEXT NOT NULL,
    excerpt_id TEXT NOT NULL,
    submission_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    question_order INTEGER NOT NULL,
    student_label TEXT NOT NULL,
    transcript_text TEXT NOT NULL,
    PRIMARY KEY (report_id, excerpt_id)
);
CREATE TABLE IF NOT EXISTS report_evidence_refs (
    report_id TEXT NOT NULL,
    claim_id TEXT NOT NULL,
    excerpt_id TEXT NOT NULL,
    submission_id TEXT NOT NULL,
    question_id TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS api_call_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT,
    phase TEXT NOT NULL,
    status TEXT NOT NULL,
    latency_ms INTEGER,
    prompt_tokens INTEGER,
    completion_tokens INTEGER,
    total_tokens INTEGER,
    cost_cents INTEGER,
    error TEXT,
    assessment_id TEXT
);
"""

_JSON_COLUMNS = (
    "data_quality",
    "rubric_distributions",
    "question_effectiveness",
    "misconceptions",
    "reasoning_patterns",
    "evidence_patterns",
    "engagement_indicators",
    "suggested_actions",
    "evidence_index",
)


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else stable_json(value)


class SqliteStore:
    """SQLite-backed RecordSource and ReportStore.

    One connection per store. Pass ":memory:" for an ephemeral database.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def init_schema(self) -> None:
        with self._conn:
            self._conn.executescript(SCHEMA_SQL)

    # ---- Source records ----

    def save_records(self, records: AssessmentRecords) -> None:
        """Write a record snapshot into the source tables (fixtures, imports)."""
        a = records.assessment
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO assessments (id, class_id, title, subject, target_language, instructions) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (a.id, a.class_id, a.title, a.subject, a.target_language, a.instructions),
            )
            self._conn.executemany(
                "INSERT OR REPLACE INTO students (id, class_id) VALUES (?, ?)",
                [(s.id, a.class_id) for s in records.students],
            )
            self._conn.executemany(
                "INSERT INTO submissions (id, assessment_id, student_id, status, scored_at) VALUES (?, ?, ?, ?, ?)",
                [
                    (s.id, a.id, s.student_id, s.status.value, s.scored_at.isoformat() if s.scored_at else None)
                    for s in records.submissions
                ],
            )
            self._conn.executemany(
                "INSERT INTO submission_responses (submission_id, question_id, transcript) VALUES (?, ?, ?)",
                [(r.submission_id, r.question_id, r.transcript) for r in records.responses],
            )
            self._conn.executemany(
                "INSERT INTO question_scores (submission_id, question_id, scorer_type, score) VALUES (?, ?, ?, ?)",
                [(s.submission_id, s.question_id, s.scorer_type, s.score) for s in records.scores],
            )
            self._conn.executemany(
                "INSERT INTO assessment_questions (id, assessment_id, order_index, question_text) VALUES (?, ?, ?, ?)",
                [(q.id, a.id, q.order_index, q.question_text) for q in records.questions],
            )
            self._conn.executemany(
                "INSERT INTO rubrics (assessment_id, rubric_type, scale_min, scale_max, instructions) "
                "VALUES (?, ?, ?, ?, ?)",
                [(a.id, r.rubric_type, r.scale_min, r.scale_max, r.instructions) for r in records.rubrics],
            )

    def load_records(self, assessment_id: str) -> AssessmentRecords:
        try:
            return self._load_records(assessment_id)
        except sqlite3.Error as e:
            raise DataAccessError(f"Failed to read source records for {assessment_id}: {e}") from e

    def _load_records(self, assessment_id: str) -> AssessmentRecords:
        c = self._conn
        row = c.execute(
            "SELECT id, class_id, title, subject, target_language, instructions FROM assessments WHERE id = ?",
            (assessment_id,),
        ).fetchone()
        if row is None:
            raise DataAccessError(f"Assessment not found: {assessment_id}")
        assessment = AssessmentInfo(**dict(row))

        students = [
            StudentRecord(id=r["id"])
            for r in c.execute("SELECT id FROM students WHERE class_id IS ? ORDER BY rowid", (assessment.class_id,))
        ]
        submissions = [
            SubmissionRecord(**dict(r))
            for r in c.execute(
                "SELECT id, student_id, status, scored_at FROM submissions WHERE assessment_id = ? ORDER BY rowid",
                (assessment_id,),
            )
        ]
        responses = [
            ResponseRecord(**dict(r))
            for r in c.execute(
                "SELECT r.submission_id, r.question_id, r.transcript FROM submission_responses r "
                "JOIN submissions s ON s.id = r.submission_id WHERE s.assessment_id = ? ORDER BY r.rowid",
                (assessment_id,),
            )
        ]
        scores = [
            ScoreRecord(**dict(r))
            for r in c.execute(
                "SELECT q.submission_id, q.question_id, q.scorer_type, q.score FROM question_scores q "
                "JOIN submissions s ON s.id = q.submission_id WHERE s.assessment_id = ? ORDER BY q.rowid",
                (assessment_id,),
            )
        ]
        questions = [
            QuestionDefinition(**dict(r))
            for r in c.execute(
                "SELECT id, order_index, question_text FROM assessment_questions WHERE assessment_id = ? "
                "ORDER BY order_index, rowid",
                (assessment_id,),
            )
        ]
        rubrics = [
            RubricDefinition(**dict(r))
            for r in c.execute(
                "SELECT rubric_type, scale_min, scale_max, instructions FROM rubrics WHERE assessment_id = ? "
                "ORDER BY rowid",
                (assessment_id,),
            )
        ]
        return AssessmentRecords(
            assessment=assessment,
            students=students,
            submissions=submissions,
            responses=responses,
            scores=scores,
            questions=questions,
            rubrics=rubrics,
        )

    # ---- Reports ----

    def latest_report(self, assessment_id: str) -> Optional[ReportHead]:
        row = self._conn.execute(
            "SELECT id, report_version FROM assessment_analysis_reports WHERE assessment_id = ? "
            "ORDER BY report_version DESC LIMIT 1",
            (assessment_id,),
        ).fetchone()
        if row is None:
            return None
        return ReportHead(report_id=row["id"], report_version=int(row["report_version"]))

    def insert_report(self, report: AnalysisReport) -> None:
        data = report.model_dump(mode="json")
        for col in _JSON_COLUMNS:
            data[col] = _dumps(data[col])
        cols = list(data.keys())
        sql = (
            f"INSERT INTO assessment_analysis_reports ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)})"
        )
        try:
            with self._conn:
                self._conn.execute(sql, [data[c] for c in cols])
        except sqlite3.IntegrityError as e:
            if "report_version" in str(e):
                raise ReportVersionConflict(
                    f"Report version {report.report_version} already exists for {report.assessment_id}"
                ) from e
            raise

    def get_report(self, report_id: str) -> Optional[AnalysisReport]:
        row = self._conn.execute("SELECT * FROM assessment_analysis_reports WHERE id = ?", (report_id,)).fetchone()
        if row is None:
            return None
        data = dict(row)
        for col in _JSON_COLUMNS:
            if data.get(col) is not None:
                data[col] = json.loads(data[col])
        return AnalysisReport(**data)

    def insert_excerpts(self, report_id: str, excerpts: list[EvidenceExcerpt]) -> None:
        with self._conn:
            self._conn.executemany(
                "INSERT INTO assessment_report_excerpts "
                "(report_id, excerpt_id, submission_id, question_id, question_order, student_label, transcript_text) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        report_id,
                        e.excerpt_id,
                        e.submission_id,
                        e.question_id,
                        e.question_order,
                        e.student_label,
                        e.transcript_text,
                    )
                    for e in excerpts
                ],
            )

    def list_excerpts(self, report_id: str) -> list[dict[str, Any]]:
        return [
            dict(r)
            for r in self._conn.execute(
                "SELECT * FROM assessment_report_excerpts WHERE report_id = ? ORDER BY rowid", (report_id,)
            )
        ]

    def insert_evidence_refs(self, refs: list[EvidenceRef]) -> None:
        with self._conn:
            self._conn.executemany(
                "INSERT INTO report_evidence_refs (report_id, claim_id, excerpt_id, submission_id, question_id) "
                "VALUES (?, ?, ?, ?, ?)",
                [(r.report_id, r.claim_id, r.excerpt_id, r.submission_id, r.question_id) for r in refs],
            )

    def list_evidence_refs(self, report_id: str) -> list[EvidenceRef]:
        return [
            EvidenceRef(**dict(r))
            for r in self._conn.execute(
                "SELECT report_id, claim_id, excerpt_id, submission_id, question_id FROM report_evidence_refs "
                "WHERE report_id = ? ORDER BY rowid",
                (report_id,),
            )
        ]

    def update_assessment_pointer(self, pointer: AssessmentPointer) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE assessments SET latest_report_id = ?, has_class_report = ?, scores_last_modified_at = ? "
                "WHERE id = ?",
                (
                    pointer.latest_report_id,
                    1 if pointer.has_report else 0,
                    pointer.scores_last_modified_at.isoformat(),
                    pointer.assessment_id,
                ),
            )

    def get_assessment_pointer(self, assessment_id: str) -> Optional[dict[str, Any]]:
        row = self._conn.execute(
            "SELECT id, latest_report_id, has_class_report, scores_last_modified_at FROM assessments WHERE id = ?",
            (assessment_id,),
        ).fetchone()
        return dict(row) if row is not None else None

    def record_api_call(self, record: ApiCallRecord) -> None:
        d = record.to_dict()
        with self._conn:
            self._conn.execute(
                "INSERT INTO api_call_logs (created_at, provider, model, phase, status, latency_ms, prompt_tokens, "
                "completion_tokens, total_tokens, cost_cents, error, assessment_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    now_iso(),
                    d["provider"],
                    d["model"],
                    d["phase"],
                    d["status"],
                    d["latency_ms"],
                    d["prompt_tokens"],
                    d["completion_tokens"],
                    d["total_tokens"],
                    d["cost_cents"],
                    d["error"],
                    d["assessment_id"],
                ),
            )

    def list_api_calls(self, assessment_id: str) -> list[dict[str, Any]]:
        return [
            dict(r)
            for r in self._conn.execute(
                "SELECT * FROM api_call_logs WHERE assessment_id = ? ORDER BY id", (assessment_id,)
            )
        ]
