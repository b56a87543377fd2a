"""
FormNavigator: drives one Easy Apply dialog to a terminal outcome.

    NAVIGATING -> MODAL_OPEN -> STEP_PROCESSING (loop) -> SUBMIT_READY
               -> SUBMITTED | ERROR | DRY_RUN_STOPPED

The whole run is bounded by a Deadline that the page adapter observes at every
browser wait. Whatever exit path is taken, the (user, job) record receives
exactly one terminal update in the `finally` block.
"""
from __future__ import annotations

import random
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Sequence

from jobbot.config import Settings
from jobbot.deadline import Deadline
from jobbot.errors import ApplicationTimeout, CheckpointDetected, NavigationError
from jobbot.form import CHOICE, NEXT, REVIEW, SUBMIT, ApplyPage, ChoiceOption, PlaywrightApplyPage, StandardField
from jobbot.log import get_logger
from jobbot.matching import find_answer, match_select_option, option_matches
from jobbot.models import OUTCOME_STATUS, Answer, JobListing, Outcome, UserProfile
from jobbot.store import ApplicationStore

log = get_logger(__name__)

PageFactory = Callable[[object, Deadline], ApplyPage]


class State(str, Enum):
    NAVIGATING = "NAVIGATING"
    MODAL_OPEN = "MODAL_OPEN"
    STEP_PROCESSING = "STEP_PROCESSING"
    SUBMIT_READY = "SUBMIT_READY"
    SUBMITTED = "SUBMITTED"
    ERROR = "ERROR"
    DRY_RUN_STOPPED = "DRY_RUN_STOPPED"


def playwright_page(context, deadline: Deadline) -> ApplyPage:
    return PlaywrightApplyPage(context.new_page(), deadline)


class FormNavigator:
    """Apply to a single job with a pre-computed answer set."""

    def __init__(
        self,
        store: ApplicationStore,
        settings: Settings,
        page_factory: PageFactory = playwright_page,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.store = store
        self.settings = settings
        self.page_factory = page_factory
        self.clock = clock
        self.sleep = sleep
        self.rng = rng

    def apply(
        self,
        context,
        user: UserProfile,
        job: JobListing,
        answers: Sequence[Answer],
        *,
        resume_path: str = "",
        cover_letter_path: str | None = None,
        dry_run: bool | None = None,
    ) -> Outcome:
        dry_run = self.settings.dry_run if dry_run is None else dry_run
        deadline = Deadline(self.settings.application_timeout_s, clock=self.clock)
        outcome, reason = Outcome.ERROR, ""
        page: ApplyPage | None = None

        log.info("Applying to %s at %s (job %s)%s", job.title, job.company, job.id, " [dry run]" if dry_run else "")
        try:
            page = self.page_factory(context, deadline)
            outcome, reason = self._run(page, deadline, job, answers, resume_path, cover_letter_path, dry_run)
        except (ApplicationTimeout, NavigationError) as exc:
            outcome, reason = Outcome.ERROR, str(exc)
        except CheckpointDetected as exc:
            outcome, reason = Outcome.ERROR, str(exc)
            raise
        except Exception as exc:
            outcome = Outcome.ERROR
            if deadline.expired():
                reason = str(ApplicationTimeout(deadline.seconds))
            else:
                reason = f"Unhandled exception during application: {exc}"
            log.exception("Application to job %s failed", job.id)
        finally:
            self._finalize(page, user, job, outcome, reason)
        return outcome

    # -- terminal update ---------------------------------------------------

    def _finalize(self, page: ApplyPage | None, user: UserProfile, job: JobListing, outcome: Outcome, reason: str) -> None:
        status = OUTCOME_STATUS[outcome]
        if outcome == Outcome.ERROR:
            log.warning("Job %s: %s (%s)", job.id, State.ERROR.value, reason or "Unknown error")
        else:
            log.info("Job %s: %s", job.id, outcome.value)

        values = {"status": status, "reason": (reason or "Unknown error") if outcome == Outcome.ERROR else ""}
        if outcome == Outcome.SUBMITTED:
            values["applied_at"] = datetime.now(timezone.utc).isoformat(timespec="seconds")
        try:
            self.store.update(user.id, job.id, **values)
        except Exception as exc:
            log.error("Could not record outcome for job %s: %s", job.id, exc)

        # Left open after a dry run so the filled form can be inspected
        if page is not None and outcome != Outcome.DRY_RUN_COMPLETE:
            try:
                page.close()
            except Exception as exc:
                log.debug("Error closing page: %s", exc)

    # -- state machine -----------------------------------------------------

    def _run(
        self,
        page: ApplyPage,
        deadline: Deadline,
        job: JobListing,
        answers: Sequence[Answer],
        resume_path: str,
        cover_letter_path: str | None,
        dry_run: bool,
    ) -> tuple[Outcome, str]:
        log.debug("State %s: %s", State.NAVIGATING.value, job.url)
        page.open(job.url)
        page.open_dialog()
        log.debug("State %s", State.MODAL_OPEN.value)

        max_steps = self.settings.max_form_steps
        step = 0
        while step < max_steps:
            deadline.check()
            log.debug("State %s: step %d", State.STEP_PROCESSING.value, step + 1)
            if page.is_submitted():
                log.debug("Submitted banner seen during step processing.")
                return Outcome.SUBMITTED, ""

            error = self._fill_step(page, answers)
            if error:
                return Outcome.ERROR, error
            self._upload_files(page, resume_path, cover_letter_path)

            if page.is_submitted():
                return Outcome.SUBMITTED, ""

            action = page.find_action()
            if action == SUBMIT:
                break
            if action in (REVIEW, NEXT):
                page.click_action(action)
                step += 1
                page.wait_for_next_step()
                deadline.sleep(self.rng(0.5, 1.0), sleep=self.sleep)
                continue

            if page.is_submitted(timeout_ms=2000):
                return Outcome.SUBMITTED, ""
            return Outcome.ERROR, (
                f"Reached a state with no clear next navigation (Next/Review/Submit not found) on step {step + 1}."
            )
        else:
            if page.is_submitted(timeout_ms=2000):
                return Outcome.SUBMITTED, ""
            return Outcome.ERROR, f"Exceeded maximum steps ({max_steps})."

        return self._submit(page, deadline, dry_run)

    def _submit(self, page: ApplyPage, deadline: Deadline, dry_run: bool) -> tuple[Outcome, str]:
        log.debug("State %s", State.SUBMIT_READY.value)
        page.uncheck_follow_company()
        deadline.sleep(self.rng(0.5, 1.5), sleep=self.sleep)

        if page.is_submitted(timeout_ms=2000):
            return Outcome.SUBMITTED, ""

        if page.find_action(timeout_ms=5000) == SUBMIT:
            if dry_run:
                log.info("Dry run: stopping before final submission.")
                log.debug("State %s", State.DRY_RUN_STOPPED.value)
                return Outcome.DRY_RUN_COMPLETE, ""
            page.click_action(SUBMIT)
            deadline.sleep(self.rng(1.0, 2.0), sleep=self.sleep)
            if page.wait_for_submitted(15_000):
                return Outcome.SUBMITTED, ""
            if not page.dialog_visible():
                log.info("Dialog closed after submit without a banner; counting as submitted.")
                return Outcome.SUBMITTED, ""
            return Outcome.ERROR, "Application submitted, but confirmation banner not found within timeout."

        # Last resort: the dialog is gone and the page confirms the submission
        if not page.dialog_visible() and page.is_submitted(timeout_ms=3000):
            log.info("Submit button gone but the page confirms submission.")
            return Outcome.SUBMITTED, ""
        return Outcome.ERROR, "Submit button not found on the final page, and application not detected as submitted."

    # -- one step ----------------------------------------------------------

    def _fill_step(self, page: ApplyPage, answers: Sequence[Answer]) -> str | None:
        """Fill every recognised field; return an error reason or None."""
        for field in page.list_question_fields():
            answer = find_answer(field.question, answers)
            if answer is not None and not answer.answer:
                answer = None
            if field.kind == CHOICE:
                self._choose(field, answer)
                continue
            error = self._fill_standard(field, answer)
            if error:
                return error
        return None

    @staticmethod
    def _fill_standard(field: StandardField, answer: Answer | None) -> str | None:
        q = field.question
        if answer is None:
            if not field.required:
                log.debug('Optional field "%s" has no configured answer. Skipping.', q)
                return None
            if field.current_value().strip():
                log.debug('Required field "%s" is pre-filled. Assuming OK.', q)
                return None
            return f'Required field "{q}" has no configured answer and is not pre-filled.'

        if field.tag == "select":
            value = match_select_option(field.options(), answer.answer)
            if value is not None:
                field.select(value)
                log.debug('Selected option for "%s" matching "%s"', q, answer.answer)
                return None
            if field.required:
                return f'Required select "{q}" - no matching option for answer "{answer.answer}".'
            log.debug('Optional select "%s" has no option matching "%s". Skipping.', q, answer.answer)
            return None

        if field.current_value() != answer.answer:
            field.fill(answer.answer)
            log.debug('Filled "%s"', q)
        return None

    @staticmethod
    def _choose(option: ChoiceOption, answer: Answer | None) -> None:
        if answer is None or not option_matches(answer.answer, option.option):
            return
        strategy = option.choose()
        if strategy:
            log.debug('Chose "%s" for "%s" via %s', option.option, option.question, strategy)
        else:
            log.warning('Could not select "%s" for "%s"; continuing.', option.option, option.question)

    @staticmethod
    def _upload_files(page: ApplyPage, resume_path: str, cover_letter_path: str | None) -> None:
        if resume_path:
            page.upload_resume(resume_path)
        if cover_letter_path and page.has_cover_letter_field():
            page.upload_cover_letter(cover_letter_path)
