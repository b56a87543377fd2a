"""
Wiring for the job bot.

Builds the store, session provider, scorer, answer oracle, discovery and
navigator from Settings and exposes the one-shot operations used by the CLI:
scan, embedding sync and a single scheduler cycle.
"""
from __future__ import annotations

from typing import Any

from jobbot.ai import AnswerOracle
from jobbot.config import Settings, ensure_dirs, load_settings, load_user
from jobbot.embeddings import Embedder, EmbeddingIndex, sync_embeddings
from jobbot.errors import SetupRequired
from jobbot.filter import JobScorer
from jobbot.log import get_logger
from jobbot.models import UserProfile
from jobbot.navigator import FormNavigator
from jobbot.scanner import JobDiscovery
from jobbot.scheduler import Scheduler
from jobbot.session import SessionProvider
from jobbot.store import ApplicationStore

log = get_logger(__name__)


class Components:
    """Default collaborators for one process."""

    def __init__(self, settings: Settings | None = None) -> None:
        ensure_dirs()
        self.settings = settings or load_settings()
        self.store = ApplicationStore()
        self.sessions = SessionProvider(self.settings)
        self.embedder = Embedder(self.settings)
        self.scorer = JobScorer(self.embedder, threshold=self.settings.similarity_threshold)
        self.oracle = AnswerOracle(self.settings, self.embedder)
        self.discovery = JobDiscovery(self.store, self.scorer, self.settings)
        self.navigator = FormNavigator(self.store, self.settings)

    def scheduler(self) -> Scheduler:
        return Scheduler(
            self.settings,
            self.store,
            self.sessions,
            self.navigator,
            self.oracle,
            self.discovery,
        )


def require_user() -> UserProfile:
    user = load_user()
    if user is None:
        raise SetupRequired("No user profile. Copy config/profile.example.yaml to config/profile.yaml and fill it in.")
    return user


def run_scan(components: Components) -> int:
    """Discovery only: record fresh/skipped listings for the configured searches."""
    user = require_user()
    with components.sessions.session() as context:
        return components.discovery.scan(context, user)


def run_sync(components: Components) -> int:
    user = require_user()
    return sync_embeddings(user, components.embedder, EmbeddingIndex(user.id))


def status_summary(components: Components) -> dict[str, Any]:
    """Record counts per status for the configured user."""
    user = load_user()
    counts: dict[str, int] = {}
    for record in components.store.all():
        if user is None or record.user_id == user.id:
            counts[record.status] = counts.get(record.status, 0) + 1
    return counts
