"""Boundary validation for rows coming back from the remote store.

Rows are untyped mappings (whatever the store's JSON decodes to).  They
are parsed into ``ProgressRecord`` here, once, so that aggregation math
never sees an out-of-range progress value or a row without ids.

Two entry points:

  parse_records()         used on every reload; bad rows are dropped
                          and logged, good rows go through
  validate_progress_data() a full report (errors + warnings) for
                          diagnostics, without building records
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from progress_engine.core.errors import ValidationError
from progress_engine.core.metrics import AGGREGATION_ANOMALIES
from progress_engine.models.progress import ProgressRecord

logger = logging.getLogger(__name__)


class ProgressRecordIn(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    user_id: str = Field(min_length=1)
    course_id: int = Field(gt=0)
    unit_id: int = Field(gt=0)
    progress: float = Field(default=0.0, ge=0, le=1, allow_inf_nan=False)
    completed: bool = False
    score: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    attempted: bool = False
    finish_date: date | None = Field(
        default=None, validation_alias=AliasChoices("finish_date", "finishDate")
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("score", mode="before")
    @classmethod
    def _missing_score_is_zero(cls, value: Any) -> Any:
        return 0.0 if value in (None, "") else value

    @field_validator("finish_date", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        # The store sends either a date or a full timestamp; keep the date.
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and value:
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
            except ValueError:
                raise ValueError(f"invalid finish date {value!r}") from None
        return value or None

    def to_record(self) -> ProgressRecord:
        return ProgressRecord.new(
            user_id=self.user_id,
            course_id=self.course_id,
            unit_id=self.unit_id,
            progress=self.progress,
            completed=self.completed,
            score=self.score,
            attempted=self.attempted,
            finish_date=self.finish_date,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True, slots=True)
class RejectedRow:
    index: int
    reason: str


@dataclass(frozen=True, slots=True)
class RecordBatch:
    records: tuple[ProgressRecord, ...] = ()
    rejected: tuple[RejectedRow, ...] = ()


@dataclass(frozen=True, slots=True)
class ValidationReport:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    total_records: int = 0


def parse_record(row: Mapping[str, Any]) -> ProgressRecord:
    """Parse one store row.  Raises ValidationError on malformed input."""
    if not isinstance(row, Mapping):
        raise ValidationError(f"progress row must be a mapping (got {type(row).__name__})")
    try:
        return ProgressRecordIn.model_validate(dict(row)).to_record()
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(problems) from None


def parse_records(rows: Sequence[Mapping[str, Any]]) -> RecordBatch:
    """Parse every row, dropping (and logging) the malformed ones."""
    if isinstance(rows, (str, bytes)) or not isinstance(rows, Sequence):
        raise ValidationError(
            f"progress rows must be a list (got {type(rows).__name__})"
        )

    records: list[ProgressRecord] = []
    rejected: list[RejectedRow] = []
    for index, row in enumerate(rows):
        try:
            records.append(parse_record(row))
        except ValidationError as e:
            rejected.append(RejectedRow(index=index, reason=str(e)))
            AGGREGATION_ANOMALIES.labels(kind="rejected_row").inc()
            logger.warning("Rejected progress row %d: %s", index, e)

    return RecordBatch(records=tuple(records), rejected=tuple(rejected))


def record_warnings(record: ProgressRecord) -> list[str]:
    """Consistency problems that are tolerated but worth reporting."""
    warnings = []
    if record.completed and record.progress < 1:
        warnings.append("unit marked as completed but progress < 100%")
    if not record.completed and record.progress == 1:
        warnings.append("progress is 100% but unit not marked as completed")
    return warnings


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_progress_data(rows: Any) -> ValidationReport:
    if isinstance(rows, (str, bytes)) or not isinstance(rows, Sequence):
        return ValidationReport(
            is_valid=False, errors=["Progress data must be a list"]
        )

    errors: list[str] = []
    warnings: list[str] = []

    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            errors.append(f"Progress[{index}]: Row must be a mapping")
            continue

        for required in ("user_id", "course_id", "unit_id"):
            if not row.get(required):
                errors.append(f"Progress[{index}]: Missing {required}")

        progress = row.get("progress")
        if progress is not None and (
            not _is_number(progress) or not 0 <= progress <= 1
        ):
            errors.append(
                f"Progress[{index}]: Progress must be a number between 0 and 1"
            )
            continue

        completed = bool(row.get("completed"))
        if completed and progress is not None and progress < 1:
            warnings.append(
                f"Progress[{index}]: Unit marked as completed but progress < 100%"
            )
        if not completed and progress == 1:
            warnings.append(
                f"Progress[{index}]: Progress is 100% but unit not marked as completed"
            )

    return ValidationReport(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        total_records=len(rows),
    )
