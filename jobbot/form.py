"""
Easy Apply dialog access.

`ApplyPage` is the capability the navigator drives: open the posting, list the
question fields of the current step, upload files and move between steps.
`PlaywrightApplyPage` implements it against LinkedIn's live DOM, where labels
are the only reliable handle on a question and choice groups rarely carry
semantic markup.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from jobbot.deadline import Deadline
from jobbot.errors import CheckpointDetected, NavigationError
from jobbot.log import get_logger
from jobbot.matching import is_ignored_label, normalize_question_text, run_strategies
from jobbot.session import is_checkpoint

log = get_logger(__name__)

STANDARD = "standard"
CHOICE = "choice"

SUBMIT = "submit"
REVIEW = "review"
NEXT = "next"

SUBMITTED_TEXT = re.compile(r"application (?:was )?submitted|your application was sent", re.IGNORECASE)
EASY_APPLY_BUTTON = re.compile(r"Easy Apply", re.IGNORECASE)
FOLLOW_COMPANY_TEXT = re.compile(r"Follow .* to stay up", re.IGNORECASE)

# Checked in this order; the first visible one wins
ACTION_BUTTONS: list[tuple[str, re.Pattern]] = [
    (SUBMIT, re.compile(r"Submit application", re.IGNORECASE)),
    (REVIEW, re.compile(r"Review application|Review", re.IGNORECASE)),
    (NEXT, re.compile(r"Next|Continue", re.IGNORECASE)),
]

DIALOG_SELECTOR = 'div[role="dialog"]'
DIRECT_CONTROL_XPATH = (
    "xpath=following-sibling::input | following-sibling::textarea | following-sibling::select"
)
GROUP_HEADING_XPATH = (
    "xpath=preceding::*[self::h1 or self::h2 or self::h3 or self::h4 "
    "or self::h5 or self::h6 or self::strong][1]"
)
RESUME_INPUTS = ", ".join([
    'input[type="file"][aria-label*="resume" i]',
    'input[type="file"][id*="resume" i]',
    'input[type="file"][name*="resume" i]',
    'input[type="file"][accept*="pdf"][aria-label*="upload" i]',
])
COVER_LETTER_INPUTS = ", ".join([
    'input[type="file"][aria-label*="cover letter" i]',
    'input[type="file"][id*="cover-letter" i]',
    'input[type="file"][name*="cover-letter" i]',
    'input[type="file"][aria-label*="coverletter" i]',
    'input[type="file"][id*="coverletter" i]',
    'input[type="file"][name*="coverletter" i]',
    'input[type="file"][placeholder*="cover letter" i]',
])
FOLLOW_CHECKBOX = 'input[type="checkbox"][id*="follow"], input[type="checkbox"][name*="follow"]'
CHOICE_INPUT_TYPES = ("radio", "checkbox")


# ---------------------------------------------------------------------------
# Capability seen by the navigator
# ---------------------------------------------------------------------------

class QuestionField(ABC):
    kind: str
    question: str


class StandardField(QuestionField):
    """A label with its own input, textarea or select."""

    kind = STANDARD

    def __init__(self, question: str) -> None:
        self.question = question

    @property
    @abstractmethod
    def tag(self) -> str: ...

    @property
    @abstractmethod
    def required(self) -> bool: ...

    @abstractmethod
    def current_value(self) -> str: ...

    @abstractmethod
    def fill(self, text: str) -> None: ...

    @abstractmethod
    def options(self) -> list[tuple[str, str]]: ...

    @abstractmethod
    def select(self, value: str) -> None: ...


class ChoiceOption(QuestionField):
    """One radio/checkbox option; `question` is the group's question."""

    kind = CHOICE

    def __init__(self, question: str, option: str) -> None:
        self.question = question
        self.option = option

    @abstractmethod
    def choose(self) -> str | None:
        """Select this option; return the name of the strategy that worked."""


class ApplyPage(ABC):
    @abstractmethod
    def open(self, url: str) -> None: ...

    @abstractmethod
    def open_dialog(self) -> None: ...

    @abstractmethod
    def is_submitted(self, timeout_ms: float = 1000) -> bool: ...

    @abstractmethod
    def wait_for_submitted(self, timeout_ms: float) -> bool: ...

    @abstractmethod
    def dialog_visible(self) -> bool: ...

    @abstractmethod
    def has_cover_letter_field(self) -> bool: ...

    @abstractmethod
    def list_question_fields(self) -> list[QuestionField]: ...

    @abstractmethod
    def upload_resume(self, path: str) -> bool: ...

    @abstractmethod
    def upload_cover_letter(self, path: str) -> bool: ...

    @abstractmethod
    def find_action(self, timeout_ms: float = 500) -> str | None: ...

    @abstractmethod
    def click_action(self, action: str) -> None: ...

    @abstractmethod
    def wait_for_next_step(self) -> None: ...

    @abstractmethod
    def uncheck_follow_company(self) -> bool: ...

    @abstractmethod
    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Choice interaction strategies
# ---------------------------------------------------------------------------

ChoiceStrategy = Callable[["PlaywrightChoiceOption"], bool]


def _visible(locator) -> bool:
    """Safe visibility check that never throws."""
    try:
        return locator.count() > 0 and locator.first.is_visible()
    except PlaywrightError:
        return False


def _is_choice_input(locator) -> bool:
    return (locator.get_attribute("type") or "").lower() in CHOICE_INPUT_TYPES


def check_by_accessible_name(opt: "PlaywrightChoiceOption") -> bool:
    inp = opt.dialog.get_by_label(opt.option, exact=False).first
    if _visible(inp) and _is_choice_input(inp):
        inp.check(force=True, timeout=opt.timeout(5000))
        return True
    return False


def check_by_for_attribute(opt: "PlaywrightChoiceOption") -> bool:
    for_attr = opt.label.get_attribute("for")
    if not for_attr:
        return False
    inp = opt.dialog.locator(f'input[id="{for_attr}"]').first
    if _visible(inp) and _is_choice_input(inp):
        inp.check(force=True, timeout=opt.timeout(5000))
        return True
    return False


def check_nested_input(opt: "PlaywrightChoiceOption") -> bool:
    inp = opt.label.locator('input[type="radio"], input[type="checkbox"]').first
    if _visible(inp):
        inp.check(force=True, timeout=opt.timeout(5000))
        return True
    return False


def click_label_text(opt: "PlaywrightChoiceOption") -> bool:
    # Unverifiable: a click that does not raise counts as success
    opt.label.click(force=True, timeout=opt.timeout(5000))
    return True


def click_first_gender_option(opt: "PlaywrightChoiceOption") -> bool:
    group = opt.dialog.get_by_role("group", name=re.compile(r"I identify my gender as", re.IGNORECASE))
    if not _visible(group):
        return False
    first = group.first.locator("div").first
    if _visible(first):
        first.click(force=True, timeout=opt.timeout(5000))
        return True
    return False


CHOICE_STRATEGIES: list[tuple[str, ChoiceStrategy]] = [
    ("accessible-name", check_by_accessible_name),
    ("for-attribute", check_by_for_attribute),
    ("nested-input", check_nested_input),
    ("label-click", click_label_text),
]


@dataclass(frozen=True)
class SpecialCase:
    """A layout-specific override tried before the generic strategies."""

    name: str
    applies: Callable[[str, str], bool]
    strategy: ChoiceStrategy


def _is_default_gender(question: str, option: str) -> bool:
    return question.lower().startswith("i identify my gender as") and option.lower() == "male"


# The gender group renders its options as bare divs; "Male" is the first one.
SPECIAL_CASES: list[SpecialCase] = [
    SpecialCase("gender-primary-option", _is_default_gender, click_first_gender_option),
]


def choice_chain(question: str, option: str) -> list[tuple[str, ChoiceStrategy]]:
    """Strategies to try for one option, most reliable first."""
    specials = [(c.name, c.strategy) for c in SPECIAL_CASES if c.applies(question, option)]
    return specials + CHOICE_STRATEGIES


# ---------------------------------------------------------------------------
# Playwright implementation
# ---------------------------------------------------------------------------

class PlaywrightStandardField(StandardField):
    def __init__(self, question: str, control, owner: "PlaywrightApplyPage") -> None:
        super().__init__(question)
        self.control = control
        self._owner = owner
        self._tag: str | None = None

    @property
    def tag(self) -> str:
        if self._tag is None:
            self._tag = self.control.evaluate("el => el.tagName.toLowerCase()")
        return self._tag

    @property
    def required(self) -> bool:
        return (
            self.control.get_attribute("aria-required") == "true"
            or self.control.get_attribute("required") is not None
        )

    def current_value(self) -> str:
        return self.control.input_value(timeout=self._owner.ms(2000)) or ""

    def fill(self, text: str) -> None:
        self.control.fill(text, timeout=self._owner.ms(5000))

    def options(self) -> list[tuple[str, str]]:
        return [
            (opt.get_attribute("value") or "", (opt.text_content() or "").strip())
            for opt in self.control.locator("option").all()
        ]

    def select(self, value: str) -> None:
        self.control.select_option(value, timeout=self._owner.ms(5000))


class PlaywrightChoiceOption(ChoiceOption):
    def __init__(self, question: str, option: str, label, owner: "PlaywrightApplyPage") -> None:
        super().__init__(question, option)
        self.label = label
        self.dialog = owner.dialog
        self._owner = owner

    def timeout(self, ms: float) -> float:
        return self._owner.ms(ms)

    def choose(self) -> str | None:
        return run_strategies(choice_chain(self.question, self.option), self)


class PlaywrightApplyPage(ApplyPage):
    def __init__(self, page, deadline: Deadline) -> None:
        self.page = page
        self.deadline = deadline
        self.dialog = page.locator(DIALOG_SELECTOR).first

    def ms(self, timeout_ms: float) -> float:
        return self.deadline.clamp_ms(timeout_ms)

    def _visible_within(self, locator, timeout_ms: float) -> bool:
        try:
            locator.wait_for(state="visible", timeout=self.ms(timeout_ms))
            return True
        except PlaywrightTimeoutError:
            self.deadline.check()
            return False
        except PlaywrightError:
            return False

    # -- entry -------------------------------------------------------------

    def open(self, url: str) -> None:
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=self.ms(30_000))
        except PlaywrightTimeoutError as exc:
            self.deadline.check()
            raise NavigationError(f"Job page did not load: {url}") from exc
        if is_checkpoint(self.page.url):
            raise CheckpointDetected(self.page.url)
        self.deadline.sleep(2.0)
        log.debug("Navigated to job page: %s", url)

    def open_dialog(self) -> None:
        button = self.page.get_by_role("button", name=EASY_APPLY_BUTTON).first
        if not self._visible_within(button, 20_000):
            raise NavigationError("Easy Apply button not found")
        button.click(timeout=self.ms(10_000))
        log.debug('Clicked "Easy Apply" button.')
        if not self._visible_within(self.dialog, 10_000):
            raise NavigationError("Easy Apply dialog did not open")

    # -- success detection -------------------------------------------------

    def is_submitted(self, timeout_ms: float = 1000) -> bool:
        # The page may navigate mid-check; any driver error means "not seen"
        try:
            banner = self.page.get_by_text(SUBMITTED_TEXT).first
            return self._visible_within(banner, timeout_ms)
        except PlaywrightError:
            return False

    def wait_for_submitted(self, timeout_ms: float) -> bool:
        return self.is_submitted(timeout_ms)

    def dialog_visible(self) -> bool:
        return _visible(self.dialog)

    # -- fields ------------------------------------------------------------

    def has_cover_letter_field(self) -> bool:
        for inp in self.dialog.locator(COVER_LETTER_INPUTS).all():
            if _visible(inp):
                log.debug("Cover letter upload field found in dialog.")
                return True
        log.debug("No visible cover letter upload field in dialog.")
        return False

    def list_question_fields(self) -> list[QuestionField]:
        labels = self.dialog.locator("label").all()
        log.debug("Found %d labels on this step.", len(labels))
        fields: list[QuestionField] = []
        for label in labels:
            self.deadline.check()
            try:
                field = self._classify(label)
            except PlaywrightTimeoutError:
                self.deadline.check()
                continue
            except PlaywrightError as exc:
                log.debug("Could not read label: %s", exc)
                continue
            if field is not None:
                fields.append(field)
        return fields

    def _classify(self, label) -> QuestionField | None:
        raw = label.text_content(timeout=self.ms(2000)) or ""
        text = normalize_question_text(raw)
        if is_ignored_label(text):
            log.debug('Skipping non-question label: "%s"', raw.strip()[:60])
            return None

        control = label.locator(DIRECT_CONTROL_XPATH).first
        if not _visible(control):
            for_attr = label.get_attribute("for")
            if for_attr:
                control = self.dialog.locator(f'[id="{for_attr}"]').first

        if _visible(control):
            input_type = (control.get_attribute("type") or "").lower()
            if input_type == "file":
                return None
            if input_type not in CHOICE_INPUT_TYPES:
                log.debug('Standard field: "%s"', text)
                return PlaywrightStandardField(text, control, self)

        group_question = self._group_question(label) or text
        log.debug('Choice option: group "%s", option "%s"', group_question, text)
        return PlaywrightChoiceOption(group_question, text, label, self)

    def _group_question(self, label) -> str:
        fieldset = label.locator("xpath=ancestor::fieldset[1]")
        if fieldset.count() > 0:
            legend = fieldset.first.locator("legend").first
            if legend.count() > 0:
                text = normalize_question_text(legend.text_content(timeout=self.ms(2000)))
                if text:
                    return text
        heading = label.locator(GROUP_HEADING_XPATH)
        if heading.count() > 0:
            return normalize_question_text(heading.first.text_content(timeout=self.ms(2000)))
        return ""

    # -- uploads -----------------------------------------------------------

    def _upload(self, selector: str, path: str, what: str) -> bool:
        inputs = self.dialog.locator(selector).all()
        if not inputs:
            log.debug("No %s input on this step.", what)
            return False
        for inp in inputs:
            if not _visible(inp):
                continue
            if inp.input_value():
                log.debug("%s input already has a value.", what.capitalize())
                continue
            inp.set_input_files(path, timeout=self.ms(10_000))
            log.debug("Uploaded %s: %s", what, path)
            return True
        return False

    def upload_resume(self, path: str) -> bool:
        return self._upload(RESUME_INPUTS, path, "resume")

    def upload_cover_letter(self, path: str) -> bool:
        return self._upload(COVER_LETTER_INPUTS, path, "cover letter")

    # -- navigation --------------------------------------------------------

    def _action_button(self, action: str):
        pattern = dict(ACTION_BUTTONS)[action]
        return self.dialog.get_by_role("button", name=pattern).first

    def find_action(self, timeout_ms: float = 500) -> str | None:
        for action, _ in ACTION_BUTTONS:
            if self._visible_within(self._action_button(action), timeout_ms):
                return action
        return None

    def click_action(self, action: str) -> None:
        log.debug("Clicking %s.", action)
        self._action_button(action).click(timeout=self.ms(10_000))

    def wait_for_next_step(self) -> None:
        try:
            self.page.wait_for_load_state("domcontentloaded", timeout=self.ms(10_000))
        except PlaywrightTimeoutError:
            self.deadline.check()

    def uncheck_follow_company(self) -> bool:
        try:
            hint = self.dialog.get_by_text(FOLLOW_COMPANY_TEXT).first
            if not self._visible_within(hint, 2000):
                log.debug('No "Follow company" hint in dialog.')
                return False
            checkbox = self.dialog.locator(FOLLOW_CHECKBOX).first
            if not _visible(checkbox):
                log.debug('"Follow company" checkbox not identified.')
                return False
            if not checkbox.is_checked():
                return True
            hint.click(force=True, timeout=self.ms(5000))
            if checkbox.is_checked():
                checkbox.uncheck(force=True, timeout=self.ms(5000))
            unchecked = not checkbox.is_checked()
            log.debug('"Follow company" unchecked: %s', unchecked)
            return unchecked
        except PlaywrightTimeoutError:
            self.deadline.check()
            return False
        except PlaywrightError as exc:
            log.debug('"Follow company" handling failed: %s', exc)
            return False

    def close(self) -> None:
        self.page.close()
