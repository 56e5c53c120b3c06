"""Core data models for applicants, couples, reports and batch runs."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

COMPLETION_SENTINEL = "all processing complete"


class ApplicantStatus(str, Enum):
    SUBMITTED = "submitted"
    REPORTED = "reported"
    MATCHED = "matched"


class PdfArtifact(BaseModel):
    """A rendered PDF stored at a retrievable URL."""

    url: str
    generated_at: datetime = Field(default_factory=datetime.now)


class ReportContent(BaseModel):
    raw_response: str = ""


class PersonalityReport(BaseModel):
    """AI-generated analysis embedded in an applicant record.

    ``pdf_reports`` is newest first and only ever grows.
    """

    content: ReportContent = Field(default_factory=ReportContent)
    generated_at: datetime | None = None
    generation_count: int = Field(default=0, ge=0)
    pdf_reports: list[PdfArtifact] = Field(default_factory=list)


def new_id() -> str:
    return uuid.uuid4().hex


class Applicant(BaseModel):
    """A submitted questionnaire profile."""

    id: str = Field(default_factory=new_id)
    name: str
    phone: str = ""
    wechat: str = ""
    gender: str = "female"
    orientation: str = "straight"
    birth_date: str = ""
    zodiac: str = ""
    mbti: str = ""
    location: str = ""
    occupation: str = ""
    self_intro: str = ""
    images: list[str] = Field(default_factory=list)
    status: ApplicantStatus = ApplicantStatus.SUBMITTED
    matched_with: str | None = None
    matched_at: datetime | None = None
    personality_report: PersonalityReport | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def has_report(self) -> bool:
        report = self.personality_report
        return report is not None and bool(report.content.raw_response)


class CoupleTask(BaseModel):
    content: dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime | None = None
    generation_count: int = Field(default=0, ge=0)


class Couple(BaseModel):
    """A symmetric pairing of two applicants with a sequential display id."""

    couple_id: int
    user1: str
    user2: str
    matched_at: datetime
    task: CoupleTask | None = None


class ProcessingRecord(BaseModel):
    """Audit entry for one applicant within one batch run.

    Frozen: records are written once and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    applicant_id: str
    name: str = ""
    success: bool = False
    error: str | None = None
    status: str = ""
    report_generated: bool = False
    pdf_generated: bool = False
    pdf_url: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)


class BatchProgress(BaseModel):
    """Live status of the (single) batch run."""

    current: int = 0
    total: int = 0
    current_user: str = ""
    status: str = ""

    @property
    def is_complete(self) -> bool:
        # current == total alone is reached while the last id is still running
        return self.current == self.total and COMPLETION_SENTINEL in self.status
