"""
FormNavigator state machine, driven through a scripted in-memory dialog.
"""

from dataclasses import replace

import pytest

from jobbot.errors import CheckpointDetected, NavigationError
from jobbot.form import NEXT, REVIEW, SUBMIT
from jobbot.models import Answer, Outcome
from jobbot.navigator import FormNavigator
from tests.fakes import FakeChoice, FakeField, FakePage, Step, page_factory


def make_navigator(store, settings, page, clock):
    return FormNavigator(
        store,
        settings,
        page_factory=page_factory(page),
        clock=clock,
        sleep=clock.sleep,
        rng=lambda low, high: low,
    )


@pytest.fixture
def answers():
    return [
        Answer("First name", "Jane", ["Profile"], 1.0),
        Answer("Last name", "Doe", ["Profile"], 1.0),
        Answer("Mobile phone number", "+1 555 0100", ["Profile"], 1.0),
    ]


def apply(navigator, user, job, answers, **kwargs):
    return navigator.apply("context", user, job, answers, resume_path=user.resume_path, **kwargs)


class TestEndToEnd:
    """Whole applications from job page to terminal record."""

    def test_three_required_fields_submitted(self, queued_store, settings, clock, user, job, answers):
        fields = [FakeField("First name"), FakeField("Last name"), FakeField("Mobile phone number")]
        page = FakePage([Step(fields, SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        assert outcome == Outcome.SUBMITTED
        assert [f.filled for f in fields] == ["Jane", "Doe", "+1 555 0100"]
        assert page.clicks == [SUBMIT]
        assert page.closed
        record = queued_store.get(user.id, job.id)
        assert record.status == "applied"
        assert record.reason == ""
        assert record.applied_at

    def test_required_field_without_answer_is_error(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([FakeField("First name"), FakeField("Years of experience with Rust")], SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        assert outcome == Outcome.ERROR
        record = queued_store.get(user.id, job.id)
        assert record.status == "error"
        assert "Years of experience with Rust" in record.reason
        assert SUBMIT not in page.clicks
        assert page.closed

    def test_dry_run_stops_before_submit_and_leaves_page_open(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([FakeField("First name")], SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, answers, dry_run=True)

        assert outcome == Outcome.DRY_RUN_COMPLETE
        assert page.clicks == []
        assert not page.closed
        assert queued_store.get(user.id, job.id).status == "not_applied"

    def test_dry_run_defaults_to_settings(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([], SUBMIT)])
        navigator = make_navigator(queued_store, replace(settings, dry_run=True), page, clock)

        assert apply(navigator, user, job, answers) == Outcome.DRY_RUN_COMPLETE

    def test_timeout_mid_step_is_error(self, queued_store, settings, clock, user, job, answers):
        slow = FakeField("First name", on_fill=lambda: clock.advance(50))
        page = FakePage([Step([slow], NEXT), Step([FakeField("Last name")], SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        assert outcome == Outcome.ERROR
        assert slow.filled == "Jane"
        record = queued_store.get(user.id, job.id)
        assert record.status == "error"
        assert record.reason == "Application process timed out after 45 seconds."
        assert page.closed

    def test_multi_step_flow_clicks_in_order(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([
            Step([FakeField("First name")], NEXT),
            Step([FakeField("Mobile phone number")], REVIEW),
            Step([], SUBMIT),
        ])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        assert outcome == Outcome.SUBMITTED
        assert page.clicks == [NEXT, REVIEW, SUBMIT]
        assert page.follow_unchecked


class TestTerminalDetection:
    def test_banner_seen_before_any_field(self, queued_store, settings, clock, user, job, answers):
        field = FakeField("First name")
        page = FakePage([Step([field], SUBMIT)], submitted=True)

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.SUBMITTED
        assert field.filled is None

    def test_dialog_gone_after_submit_counts_as_submitted(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([], SUBMIT)], banner_on_submit=False, dialog_after_submit=False)

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.SUBMITTED
        assert queued_store.get(user.id, job.id).status == "applied"

    def test_no_banner_and_dialog_still_open_is_error(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([], SUBMIT)], banner_on_submit=False, dialog_after_submit=True)

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.ERROR
        assert "confirmation banner not found" in queued_store.get(user.id, job.id).reason

    def test_no_navigation_control_is_error(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([], None)])

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.ERROR
        reason = queued_store.get(user.id, job.id).reason
        assert reason == "Reached a state with no clear next navigation (Next/Review/Submit not found) on step 1."

    def test_step_limit(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([], NEXT)])
        navigator = make_navigator(queued_store, replace(settings, max_form_steps=3), page, clock)

        assert apply(navigator, user, job, answers) == Outcome.ERROR
        assert page.clicks == [NEXT, NEXT, NEXT]
        assert queued_store.get(user.id, job.id).reason == "Exceeded maximum steps (3)."

    def test_missing_easy_apply_is_error(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step()], open_error=NavigationError("Easy Apply button not found"))

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.ERROR
        assert queued_store.get(user.id, job.id).reason == "Easy Apply button not found"
        assert page.closed

    def test_checkpoint_is_recorded_and_reraised(self, queued_store, settings, clock, user, job, answers):
        url = "https://www.linkedin.com/checkpoint/challenge/123"
        page = FakePage([Step()], open_error=CheckpointDetected(url))

        with pytest.raises(CheckpointDetected):
            apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        record = queued_store.get(user.id, job.id)
        assert record.status == "error"
        assert "checkpoint" in record.reason.lower()

    def test_unexpected_exception_is_error(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step()], open_error=RuntimeError("target closed"))

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.ERROR
        assert queued_store.get(user.id, job.id).reason == "Unhandled exception during application: target closed"

    def test_store_failure_does_not_raise(self, settings, clock, user, job, answers):
        class BrokenStore:
            def update(self, *args, **kwargs):
                raise OSError("disk full")

        page = FakePage([Step([], SUBMIT)])
        navigator = make_navigator(BrokenStore(), settings, page, clock)

        assert apply(navigator, user, job, answers) == Outcome.SUBMITTED


class TestFields:
    def test_optional_unanswered_field_is_left_blank(self, queued_store, settings, clock, user, job, answers):
        optional = FakeField("Website", required=False)
        page = FakePage([Step([optional], SUBMIT)])

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.SUBMITTED
        assert optional.filled is None

    def test_prefilled_required_field_is_kept(self, queued_store, settings, clock, user, job, answers):
        prefilled = FakeField("Email address", value="jane@example.com")
        page = FakePage([Step([prefilled], SUBMIT)])

        assert apply(make_navigator(queued_store, settings, page, clock), user, job, answers) == Outcome.SUBMITTED
        assert prefilled.filled is None

    def test_field_with_correct_value_is_not_refilled(self, queued_store, settings, clock, user, job, answers):
        field = FakeField("First name", value="Jane")
        page = FakePage([Step([field], SUBMIT)])

        apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        assert field.filled is None

    def test_select_picks_matching_option(self, queued_store, settings, clock, user, job):
        select = FakeField("Country", tag="select", options=[("", "Select an option"), ("us", "United States"), ("ca", "Canada")])
        page = FakePage([Step([select], SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, [Answer("Country", "Canada")])

        assert outcome == Outcome.SUBMITTED
        assert select.selected == "ca"

    def test_required_select_without_option_is_error(self, queued_store, settings, clock, user, job):
        select = FakeField("Country", tag="select", options=[("us", "United States")])
        page = FakePage([Step([select], SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, [Answer("Country", "Narnia")])

        assert outcome == Outcome.ERROR
        assert 'Required select "Country"' in queued_store.get(user.id, job.id).reason

    def test_choice_group_selects_matching_option_only(self, queued_store, settings, clock, user, job):
        yes = FakeChoice("Are you authorized to work in the US?", "Yes")
        no = FakeChoice("Are you authorized to work in the US?", "No")
        page = FakePage([Step([yes, no], SUBMIT)])
        answers = [Answer("authorized to work in the US", "yes")]

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        assert outcome == Outcome.SUBMITTED
        assert yes.chosen
        assert not no.chosen

    def test_choice_that_cannot_be_selected_is_not_fatal(self, queued_store, settings, clock, user, job):
        stubborn = FakeChoice("Do you have a driver's license?", "Yes", works=False)
        page = FakePage([Step([stubborn], SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, [Answer("driver's license", "Yes")])

        assert outcome == Outcome.SUBMITTED

    def test_empty_answer_counts_as_unanswered(self, queued_store, settings, clock, user, job):
        page = FakePage([Step([FakeField("Salary expectation")], SUBMIT)])

        outcome = apply(make_navigator(queued_store, settings, page, clock), user, job, [Answer("Salary expectation", "", needs_review=True)])

        assert outcome == Outcome.ERROR


class TestUploads:
    def test_resume_uploaded_each_step(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([], SUBMIT)])

        apply(make_navigator(queued_store, settings, page, clock), user, job, answers)

        assert ("resume", user.resume_path) in page.uploads
        assert not any(kind == "cover_letter" for kind, _ in page.uploads)

    def test_cover_letter_only_when_field_present(self, queued_store, settings, clock, user, job, answers):
        page = FakePage([Step([], SUBMIT)], cover_field=True)

        apply(make_navigator(queued_store, settings, page, clock), user, job, answers, cover_letter_path="/tmp/cl.txt")

        assert ("cover_letter", "/tmp/cl.txt") in page.uploads
