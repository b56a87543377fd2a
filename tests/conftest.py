"""
Pytest fixtures shared by the jobbot test suite.

Data and log directories are redirected to a temporary location before any
jobbot module is imported.
"""

import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="jobbot-tests-")
os.environ.setdefault("JOBBOT_DATA_DIR", os.path.join(_TMP, "data"))
os.environ.setdefault("JOBBOT_LOG_DIR", os.path.join(_TMP, "logs"))

import pytest

from jobbot.config import Settings
from jobbot.models import JobListing, UserProfile
from jobbot.store import ApplicationStore
from tests.fakes import FakeClock


# === Configuration ===

@pytest.fixture
def settings():
    """Default settings with instant pacing."""
    return Settings(apply_delay_min_s=30.0, apply_delay_max_s=60.0)


@pytest.fixture
def clock():
    return FakeClock()


# === Data ===

@pytest.fixture
def user():
    return UserProfile(
        id="u1",
        name="Jane Doe",
        email="jane@example.com",
        resume_path="/tmp/resume.pdf",
        keywords=["Backend Engineer"],
        locations=["Remote"],
        blacklist=["Evil Corp"],
        answers={
            "First name": "Jane",
            "Last name": "Doe",
            "Mobile phone number": "+1 555 0100",
        },
    )


@pytest.fixture
def job():
    return JobListing(
        id="101",
        title="Backend Engineer",
        company="Acme",
        description="Build Python APIs on Postgres.",
        url="https://www.linkedin.com/jobs/view/101/",
    )


@pytest.fixture
def store(tmp_path):
    """Empty application store in a temp directory."""
    return ApplicationStore(tmp_path / "applications.csv")


@pytest.fixture
def queued_store(store, user, job):
    """Store holding the sample job already queued for application."""
    store.upsert(
        user.id,
        job.id,
        status="queued",
        job_title=job.title,
        company_name=job.company,
        job_url=job.url,
        job_description=job.description,
    )
    return store
