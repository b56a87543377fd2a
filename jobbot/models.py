"""Data models for listings, answers and application records."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ApplicationStatus(str, Enum):
    FRESH = "fresh"
    PENDING_REVIEW = "pending_review"
    SKIPPED = "skipped"
    QUEUED = "queued"
    APPLIED = "applied"
    ERROR = "error"
    NOT_APPLIED = "not_applied"


class Outcome(str, Enum):
    SUBMITTED = "submitted"
    ERROR = "error"
    DRY_RUN_COMPLETE = "dry_run_complete"


# Record status written for each navigator outcome
OUTCOME_STATUS: dict[Outcome, ApplicationStatus] = {
    Outcome.SUBMITTED: ApplicationStatus.APPLIED,
    Outcome.ERROR: ApplicationStatus.ERROR,
    Outcome.DRY_RUN_COMPLETE: ApplicationStatus.NOT_APPLIED,
}


@dataclass(frozen=True)
class JobListing:
    id: str
    title: str
    company: str
    description: str
    url: str
    location: str = ""
    keywords: tuple[str, ...] = ()


@dataclass
class Answer:
    question: str
    answer: str
    refs: list[str] = field(default_factory=list)
    confidence: float = 0.0
    needs_review: bool = False


@dataclass
class FilterScore:
    job_id: str
    similarity: float
    blacklisted: bool
    confidence: float
    explanation: str = ""

    @property
    def score(self) -> float:
        return self.confidence


@dataclass
class DecisionNode:
    title: str
    passed: bool
    children: list["DecisionNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        node: dict = {"title": self.title, "pass": self.passed}
        if self.children:
            node["children"] = [c.to_dict() for c in self.children]
        return node


@dataclass
class ApplicationRecord:
    user_id: str
    job_id: str
    status: str
    reason: str = ""
    job_title: str = ""
    company_name: str = ""
    job_url: str = ""
    job_description: str = ""
    created_at: str = ""
    updated_at: str = ""
    applied_at: str = ""

    def to_job(self) -> JobListing:
        return JobListing(
            id=self.job_id,
            title=self.job_title,
            company=self.company_name,
            description=self.job_description,
            url=self.job_url,
        )


@dataclass
class UserProfile:
    id: str
    name: str = ""
    email: str = ""
    resume_path: str = ""
    cover_letter_path: str = ""
    keywords: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    blacklist: list[str] = field(default_factory=list)
    answers: dict[str, str] = field(default_factory=dict)
    questions: list[str] = field(default_factory=list)
    faq: list[dict[str, str]] = field(default_factory=list)
