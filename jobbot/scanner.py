"""
LinkedIn Easy Apply discovery.

For each keyword x location pair the search page is scrolled until enough
cards are loaded; each Easy Apply card is read into a JobListing, scored and
recorded as `fresh` or `skipped`. Listings already tracked are left alone.
"""
from __future__ import annotations

import time
from typing import Callable
from urllib.parse import quote

from playwright.sync_api import Error as PlaywrightError

from jobbot.config import DEFAULT_KEYWORDS, DEFAULT_LOCATIONS, Settings
from jobbot.errors import CheckpointDetected
from jobbot.filter import JobScorer, classify
from jobbot.log import get_logger
from jobbot.models import JobListing, UserProfile
from jobbot.session import is_checkpoint
from jobbot.store import ApplicationStore

log = get_logger(__name__)

SEARCH_URL = "https://www.linkedin.com/jobs/search?keywords={keywords}&location={location}&f_AL=true"
JOB_VIEW_URL = "https://www.linkedin.com/jobs/view/{job_id}/"

RESULTS_LIST = "div.scaffold-layout__list"
CARD = "li.scaffold-layout__list-item"
CARD_ID_ATTR = "data-occludable-job-id"
TITLE_LINK = "a.job-card-list__title--link"
COMPANY = "div.artdeco-entity-lockup__subtitle"
LOCATION_ITEMS = ".job-card-container__metadata-wrapper > li"
LOCATION_SPANS = "span.job-card-container__metadata-item"
CLICKABLE_AREA = "div.job-card-container--clickable"
DESCRIPTION = "div.jobs-description-content__text--stretch"

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_COMPANY = "Unknown Company"
UNKNOWN_LOCATION = "Unknown Location"


def search_url(keyword: str, location: str) -> str:
    return SEARCH_URL.format(keywords=quote(keyword, safe=""), location=quote(location, safe=""))


def _text(locator, timeout: float = 2000) -> str:
    return (locator.text_content(timeout=timeout) or "").strip()


def _visible_within(locator, timeout_ms: float) -> bool:
    """Wait up to *timeout_ms* for the element to show; False if it never does."""
    try:
        locator.wait_for(state="visible", timeout=timeout_ms)
        return True
    except PlaywrightError:
        return False


# ── Card extraction (each field independently fault-tolerant) ───────────


def is_easy_apply(card) -> bool:
    try:
        return card.get_by_text("Easy Apply").first.is_visible()
    except PlaywrightError:
        return False


def card_job_id(card) -> str:
    try:
        return (card.get_attribute(CARD_ID_ATTR) or "").strip()
    except PlaywrightError:
        return ""


def card_title(card) -> str:
    link = card.locator(TITLE_LINK).first
    try:
        title = (link.get_attribute("aria-label", timeout=5000) or "").strip()
        if not title:
            title = _text(link, 5000)
    except PlaywrightError as exc:
        log.debug("Title not readable: %s", exc)
        title = ""
    return title or UNKNOWN_TITLE


def card_company(card) -> str:
    try:
        return _text(card.locator(COMPANY).first, 10_000) or UNKNOWN_COMPANY
    except PlaywrightError:
        return UNKNOWN_COMPANY


def _location_from_items(card) -> str:
    texts = [_text(item) for item in card.locator(LOCATION_ITEMS).all()]
    return " ".join(t for t in texts if t).strip()


def _location_from_spans(card) -> str:
    for span in card.locator(LOCATION_SPANS).all():
        text = _text(span)
        if len(text) > 1 and "easy apply" not in text.lower():
            return text
    return ""


LOCATION_STRATEGIES: list[Callable] = [_location_from_items, _location_from_spans]


def card_location(card) -> str:
    for strategy in LOCATION_STRATEGIES:
        try:
            text = strategy(card)
        except PlaywrightError as exc:
            log.debug("Location strategy %s failed: %s", strategy.__name__, exc)
            continue
        if text:
            return text
    log.debug("Location could not be determined")
    return UNKNOWN_LOCATION


# ── Discovery ────────────────────────────────────────────────────────────


class JobDiscovery:
    def __init__(
        self,
        store: ApplicationStore,
        scorer: JobScorer,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.scorer = scorer
        self.settings = settings
        self.sleep = sleep

    def scan(self, context, user: UserProfile) -> int:
        """Scan all keyword/location pairs; return how many listings were recorded.

        Raises CheckpointDetected as soon as LinkedIn shows a verification page.
        """
        keywords = user.keywords or DEFAULT_KEYWORDS
        locations = user.locations or DEFAULT_LOCATIONS
        total = 0
        for keyword in keywords:
            for location in locations:
                if total >= self.settings.max_jobs_per_scan:
                    log.info("Reached maximum job limit (%d). Stopping scan.", self.settings.max_jobs_per_scan)
                    return total
                total += self._search(context, user, keyword, location, self.settings.max_jobs_per_scan - total)
        log.info("Scan complete. Recorded %d jobs.", total)
        return total

    def _search(self, context, user: UserProfile, keyword: str, location: str, budget: int) -> int:
        url = search_url(keyword, location)
        log.info("Searching for '%s' in '%s'", keyword, location)
        page = context.new_page()
        recorded = 0
        try:
            page.goto(url, wait_until="domcontentloaded")
            if is_checkpoint(page.url):
                raise CheckpointDetected(page.url)
            page.wait_for_selector(RESULTS_LIST, timeout=20_000)
            cards = self.ensure_job_results(page)
            log.info("Found %d job cards", len(cards))

            limit = min(budget, self.settings.max_jobs_per_search)
            for index, card in enumerate(cards):
                if recorded >= limit:
                    break
                try:
                    if self._process_card(page, user, card, index):
                        recorded += 1
                except CheckpointDetected:
                    raise
                except Exception as exc:
                    log.warning("Error processing job card %d: %s", index, exc)
        except CheckpointDetected:
            raise
        except Exception as exc:
            log.error("Error searching for '%s' in '%s': %s", keyword, location, exc)
        finally:
            try:
                page.close()
            except PlaywrightError:
                pass
        log.info("Recorded %d jobs for '%s' in '%s'", recorded, keyword, location)
        return recorded

    def ensure_job_results(self, page) -> list:
        """Scroll until enough cards are loaded, attempts run out, or loading stalls."""
        cards = page.locator(CARD).all()
        attempts = 0
        while len(cards) < self.settings.min_loaded_results and attempts < self.settings.max_scroll_attempts:
            previous = len(cards)
            page.evaluate("window.scrollBy(0, 500)")
            self.sleep(1.0)
            attempts += 1
            cards = page.locator(CARD).all()
            log.debug("After scroll %d: %d job cards", attempts, len(cards))
            if len(cards) == previous:
                log.debug("No new cards after scroll; stopping")
                break
        return cards

    def read_card(self, page, card, index: int = 0) -> JobListing | None:
        """JobListing for an Easy Apply card, or None for cards to ignore."""
        if not is_easy_apply(card):
            log.debug("[Card %d] Skipping: not an Easy Apply job", index)
            return None
        job_id = card_job_id(card)
        if not job_id:
            log.debug("[Card %d] Skipping: no job id", index)
            return None

        title = card_title(card)
        company = card_company(card)
        location = card_location(card)
        description = self._description(page, card, job_id)
        return JobListing(
            id=job_id,
            title=title,
            company=company,
            description=description,
            url=JOB_VIEW_URL.format(job_id=job_id),
            location=location,
        )

    def _description(self, page, card, job_id: str) -> str:
        try:
            clickable = card.locator(CLICKABLE_AREA).first
            if _visible_within(clickable, 5000):
                clickable.click(timeout=10_000)
            else:
                card.click(timeout=10_000)
            if is_checkpoint(page.url):
                raise CheckpointDetected(page.url)
            page.wait_for_selector(DESCRIPTION, timeout=10_000)
            return _text(page.locator(DESCRIPTION).first, 10_000)
        except PlaywrightError as exc:
            log.warning("[Job %s] Description not available: %s", job_id, exc)
            return ""

    def _process_card(self, page, user: UserProfile, card, index: int) -> bool:
        job = self.read_card(page, card, index)
        if job is None:
            return False
        if self.store.get(user.id, job.id) is not None:
            log.debug("[Job %s] Already tracked", job.id)
            return False

        score, _trace = self.scorer.score_job(user, job)
        status, reason = classify(score, self.settings.similarity_threshold)
        self.store.upsert(
            user.id,
            job.id,
            status=status,
            reason=reason,
            job_title=job.title,
            company_name=job.company,
            job_url=job.url,
            job_description=job.description,
        )
        log.info("Evaluated %s at %s (%s): %s %s", job.title, job.company, job.location, status.value, reason)
        return True
