"""Consistency report and repair schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.enums import IssueType, Severity


class ConsistencyIssue(BaseModel):
    """A data-quality finding. Reported, never raised."""

    id: str
    type: IssueType
    severity: Severity
    entity_type: str
    entity_id: str
    description: str
    suggested_fix: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConsistencyCheck(BaseModel):
    """Result of one named check."""

    name: str
    passed: bool
    issues: list[ConsistencyIssue] = Field(default_factory=list)
    executed_at: datetime


class ReportSummary(BaseModel):
    """Pass/fail and per-severity counts for a report."""

    total_checks: int = 0
    passed_checks: int = 0
    failed_checks: int = 0
    critical_issues: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0
    total_issues: int = 0
    message: str = ""


class ConsistencyReport(BaseModel):
    """Full consistency scan."""

    timestamp: datetime
    checks: list[ConsistencyCheck] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)

    @property
    def issues(self) -> list[ConsistencyIssue]:
        return [issue for check in self.checks for issue in check.issues]


class RepairOptions(BaseModel):
    """Options for a repair run."""

    dry_run: bool = False
    max_repairs: int | None = Field(default=None, ge=1)
    skip_critical: bool = False


class RepairRequest(BaseModel):
    """Schema for a repair run; without issue ids everything found is repaired."""

    issue_ids: list[str] | None = None
    options: RepairOptions = Field(default_factory=RepairOptions)


class RepairError(BaseModel):
    issue_id: str
    message: str


class SkippedIssue(BaseModel):
    issue_id: str
    reason: str


class RepairResult(BaseModel):
    """Outcome of a repair batch."""

    total_issues: int = 0
    repaired_issues: int = 0
    skipped_issues: int = 0
    failed_issues: int = 0
    repaired: list[str] = Field(default_factory=list)
    skipped: list[SkippedIssue] = Field(default_factory=list)
    errors: list[RepairError] = Field(default_factory=list)
    followup_issues: list[ConsistencyIssue] = Field(default_factory=list)
    dry_run: bool = False
    execution_ms: float = 0.0
    message: str = ""
