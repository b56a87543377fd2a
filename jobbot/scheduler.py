"""
Rate-limited apply loop.

`SchedulerState` holds the pause flag and the hourly/daily submission counters;
`tick()` is the pure rollover step. `Scheduler` owns one state instance and
runs a cycle on a timer thread, one cycle at a time.
"""
from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Callable

from jobbot.ai import AnswerOracle, check_prerequisites, save_cover_letter
from jobbot.config import Settings, load_user
from jobbot.errors import CheckpointDetected, SessionError
from jobbot.log import get_logger
from jobbot.models import ApplicationRecord, ApplicationStatus, Outcome, UserProfile
from jobbot.navigator import FormNavigator
from jobbot.notify import notify
from jobbot.scanner import JobDiscovery
from jobbot.session import SessionProvider
from jobbot.store import ApplicationStore

log = get_logger(__name__)

S = ApplicationStatus


@dataclass(frozen=True)
class SchedulerState:
    paused: bool = False
    applied_hour: int = 0
    applied_day: int = 0
    hour_bucket: tuple[date, int] | None = None
    day_bucket: date | None = None


def tick(state: SchedulerState, now: datetime) -> SchedulerState:
    """Reset counters whose wall-clock bucket has passed."""
    hour_bucket = (now.date(), now.hour)
    day_bucket = now.date()
    if state.hour_bucket != hour_bucket:
        state = replace(state, hour_bucket=hour_bucket, applied_hour=0 if state.hour_bucket is not None else state.applied_hour)
    if state.day_bucket != day_bucket:
        state = replace(state, day_bucket=day_bucket, applied_day=0 if state.day_bucket is not None else state.applied_day)
    return state


def caps_reached(state: SchedulerState, settings: Settings) -> bool:
    return state.applied_hour >= settings.hourly_cap or state.applied_day >= settings.daily_cap


def answer_questions(user: UserProfile) -> list[str]:
    """Listed questions followed by every fixed-answer question, without repeats."""
    seen: set[str] = set()
    questions: list[str] = []
    for question in [*user.questions, *user.answers]:
        key = question.strip().lower()
        if key and key not in seen:
            seen.add(key)
            questions.append(question)
    return questions


def record_submission(state: SchedulerState) -> SchedulerState:
    return replace(state, applied_hour=state.applied_hour + 1, applied_day=state.applied_day + 1)


class Scheduler:
    """Paces discovery and applications against the submission caps."""

    def __init__(
        self,
        settings: Settings,
        store: ApplicationStore,
        sessions: SessionProvider,
        navigator: FormNavigator,
        oracle: AnswerOracle,
        discovery: JobDiscovery | None = None,
        *,
        user_loader: Callable[[], UserProfile | None] = load_user,
        prerequisite: Callable[[Settings], str | None] = check_prerequisites,
        notifier: Callable[[str, str], Any] = notify,
        now: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.settings = settings
        self.store = store
        self.sessions = sessions
        self.navigator = navigator
        self.oracle = oracle
        self.discovery = discovery
        self.user_loader = user_loader
        self.prerequisite = prerequisite
        self.notifier = notifier
        self.now = now
        self.sleep = sleep
        self.rng = rng

        self.state = tick(SchedulerState(), now())
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # -- control surface ---------------------------------------------------

    def start(self) -> dict[str, Any]:
        """Start the timer; never raises. Reports a setup requirement instead."""
        if self._thread is not None and self._thread.is_alive():
            return {"started": True, "setup_required": None}
        try:
            setup = self.prerequisite(self.settings)
        except Exception as exc:
            setup = f"Prerequisite check failed: {exc}"
        if setup:
            log.warning("Scheduler not started: %s", setup)
            return {"started": False, "setup_required": setup}

        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="jobbot-scheduler", daemon=True)
        self._thread.start()
        log.info("Scheduler started (every %gs)", self.settings.cycle_interval_s)
        return {"started": True, "setup_required": None}

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        log.info("Scheduler stopped")

    def pause(self) -> None:
        with self._state_lock:
            self.state = replace(self.state, paused=True)
        log.info("Scheduler paused")

    def resume(self) -> None:
        with self._state_lock:
            self.state = replace(self.state, paused=False)
        log.info("Scheduler resumed")

    def get_status(self) -> dict[str, Any]:
        state = self.state
        return {"paused": state.paused, "applied_hour": state.applied_hour, "applied_day": state.applied_day}

    def run_cycle_now(self) -> int:
        """Run one cycle immediately; returns the number of submissions."""
        if not self._cycle_lock.acquire(blocking=False):
            log.info("A cycle is already running; skipping")
            return 0
        try:
            return self._run_cycle()
        except Exception:
            log.exception("Scheduler cycle error")
            return 0
        finally:
            self._cycle_lock.release()

    def _loop(self) -> None:
        while not self._stop.wait(self.settings.cycle_interval_s):
            self.run_cycle_now()

    # -- one cycle ---------------------------------------------------------

    def _blocked(self) -> str | None:
        state = self.state
        if state.paused:
            return "paused"
        if caps_reached(state, self.settings):
            return f"caps reached (hour {state.applied_hour}/{self.settings.hourly_cap}, day {state.applied_day}/{self.settings.daily_cap})"
        return None

    def _run_cycle(self) -> int:
        if self.state.paused:
            log.info("Paused; skipping cycle")
            return 0
        with self._state_lock:
            self.state = tick(self.state, self.now())
        blocked = self._blocked()
        if blocked:
            log.info("Skipping cycle: %s", blocked)
            return 0

        user = self.user_loader()
        if user is None:
            log.warning("No user profile configured; aborting cycle")
            return 0

        try:
            with self.sessions.session() as context:
                return self._process(context, user)
        except SessionError as exc:
            log.error("No browser session: %s", exc)
        except CheckpointDetected as exc:
            self._on_checkpoint(exc)
        return 0

    def _process(self, context, user: UserProfile) -> int:
        if self.discovery is not None and self.settings.scan_each_cycle:
            try:
                self.discovery.scan(context, user)
            except CheckpointDetected:
                raise
            except Exception:
                log.exception("Job scan failed; continuing with stored jobs")

        records = self.store.fetch(user.id, [S.FRESH, S.QUEUED], limit=self.settings.jobs_per_cycle)
        log.info("Processing %d jobs", len(records))
        submitted = 0
        for i, record in enumerate(records):
            if i > 0:
                self.sleep(self.rng(self.settings.apply_delay_min_s, self.settings.apply_delay_max_s))
            blocked = self._blocked()
            if blocked:
                log.info("Stopping cycle: %s", blocked)
                break
            try:
                if self._process_job(context, user, record):
                    submitted += 1
            except CheckpointDetected:
                raise
            except Exception:
                log.exception("Error processing job %s", record.job_id)
        return submitted

    def _process_job(self, context, user: UserProfile, record: ApplicationRecord) -> bool:
        job = record.to_job()
        questions = answer_questions(user)
        answers = self.oracle.generate_answers(user, job, questions) if questions else []

        # Approved (queued) jobs were already reviewed by a human
        flagged = [a.question for a in answers if a.needs_review]
        if flagged and record.status == S.FRESH.value:
            log.info("Job %s has answers needing review; marking pending_review", job.id)
            self.store.update(user.id, job.id, status=S.PENDING_REVIEW, reason="Answers need review: " + "; ".join(flagged))
            return False

        cover_letter_path = user.cover_letter_path or None
        if self.settings.generate_cover_letters:
            letter = self.oracle.generate_cover_letter(user, job)
            cover_letter_path = str(save_cover_letter(job, letter))

        self.store.update(user.id, job.id, status=S.QUEUED)
        outcome = self.navigator.apply(
            context,
            user,
            job,
            answers,
            resume_path=user.resume_path,
            cover_letter_path=cover_letter_path,
            dry_run=self.settings.dry_run,
        )
        if outcome != Outcome.SUBMITTED:
            return False
        with self._state_lock:
            self.state = record_submission(self.state)
        log.info(
            "Application submitted. Hour %d/%d, Day %d/%d",
            self.state.applied_hour, self.settings.hourly_cap,
            self.state.applied_day, self.settings.daily_cap,
        )
        return True

    def _on_checkpoint(self, exc: CheckpointDetected) -> None:
        log.error("%s Pausing scheduler.", exc)
        self.pause()
        try:
            self.notifier(
                "Job bot paused: LinkedIn checkpoint",
                f"{exc}\n\nSolve the verification in a visible browser (run_agent.py --login), then resume the agent.",
            )
        except Exception as notify_exc:
            log.error("Could not send checkpoint notification: %s", notify_exc)
