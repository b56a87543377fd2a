"""Search-page discovery against scripted result cards."""

from dataclasses import replace

import pytest
from playwright.sync_api import Error as PlaywrightError

from jobbot.embeddings import RESUME, Chunk, EmbeddingIndex
from jobbot.errors import CheckpointDetected
from jobbot.filter import JobScorer
from jobbot.scanner import (
    CLICKABLE_AREA,
    LOCATION_ITEMS,
    TITLE_LINK,
    UNKNOWN_LOCATION,
    UNKNOWN_TITLE,
    JobDiscovery,
    card_company,
    card_job_id,
    card_location,
    card_title,
    is_easy_apply,
    search_url,
)
from tests.fakes import FakeCard, FakeContext, FakeEmbedder, FakeSearchPage


def test_search_url_is_encoded():
    url = search_url("Backend Engineer", "New York, NY")

    assert "keywords=Backend%20Engineer" in url
    assert "location=New%20York%2C%20NY" in url
    assert url.endswith("f_AL=true")


class TestCardFields:
    def test_title_prefers_aria_label(self):
        assert card_title(FakeCard("1", title="Dev", aria_label="Senior Dev")) == "Senior Dev"
        assert card_title(FakeCard("1", title="  Dev  ")) == "Dev"

    def test_unreadable_title(self):
        assert card_title(FakeCard("1", broken=(TITLE_LINK,))) == UNKNOWN_TITLE

    def test_company_and_id(self):
        card = FakeCard("42", company=" Acme ")

        assert card_company(card) == "Acme"
        assert card_job_id(card) == "42"

    def test_location_from_metadata_items(self):
        assert card_location(FakeCard("1", location_items=["Berlin", "(Hybrid)"])) == "Berlin (Hybrid)"

    def test_location_falls_back_to_spans(self):
        card = FakeCard("1", location_spans=["Easy Apply", "Remote"], broken=(LOCATION_ITEMS,))

        assert card_location(card) == "Remote"

    def test_location_unknown(self):
        assert card_location(FakeCard("1")) == UNKNOWN_LOCATION

    def test_easy_apply_badge(self):
        assert is_easy_apply(FakeCard("1"))
        assert not is_easy_apply(FakeCard("1", easy_apply=False))


@pytest.fixture
def scorer(tmp_path):
    index = EmbeddingIndex("u1", tmp_path)
    index.upsert(RESUME, [Chunk("c1", "Python APIs", [1.0, 0.0])])
    index.save()
    return JobScorer(FakeEmbedder(), lambda user_id: EmbeddingIndex(user_id, tmp_path))


def discovery(store, scorer, settings):
    return JobDiscovery(store, scorer, settings, sleep=lambda s: None)


class TestScan:
    def test_cards_recorded_as_fresh_or_skipped(self, store, scorer, settings, user):
        cards = [
            FakeCard("1", title="Backend Engineer", company="Acme", location_items=["Remote"]),
            FakeCard("2", company="Evil Corp"),
            FakeCard("3", easy_apply=False),
            FakeCard(""),
        ]
        page = FakeSearchPage([cards])

        recorded = discovery(store, scorer, settings).scan(FakeContext([page]), user)

        assert recorded == 2
        fresh = store.get(user.id, "1")
        assert fresh.status == "fresh"
        assert fresh.job_title == "Backend Engineer"
        assert fresh.company_name == "Acme"
        assert fresh.job_url == "https://www.linkedin.com/jobs/view/1/"
        assert fresh.job_description == "Python APIs and Postgres."
        skipped = store.get(user.id, "2")
        assert (skipped.status, skipped.reason) == ("skipped", "Company blacklisted")
        assert store.get(user.id, "3") is None
        assert page.closed

    def test_low_similarity_is_skipped(self, store, settings, user, tmp_path):
        index = EmbeddingIndex("u1", tmp_path)
        index.upsert(RESUME, [Chunk("c1", "Python APIs", [1.0, 0.0])])
        index.save()
        scorer = JobScorer(FakeEmbedder(default=(0.0, 1.0)), lambda user_id: EmbeddingIndex(user_id, tmp_path))

        discovery(store, scorer, settings).scan(FakeContext([FakeSearchPage([[FakeCard("1")]])]), user)

        record = store.get(user.id, "1")
        assert record.status == "skipped"
        assert record.reason == "Low similarity score: 0.00"

    def test_tracked_jobs_are_left_alone(self, store, scorer, settings, user):
        store.upsert(user.id, "1", status="queued")
        store.update(user.id, "1", status="applied")

        recorded = discovery(store, scorer, settings).scan(FakeContext([FakeSearchPage([[FakeCard("1")]])]), user)

        assert recorded == 0
        assert store.get(user.id, "1").status == "applied"

    def test_per_search_limit(self, store, scorer, settings, user):
        cards = [FakeCard(str(i)) for i in range(5)]
        limited = replace(settings, max_jobs_per_search=2)

        assert discovery(store, scorer, limited).scan(FakeContext([FakeSearchPage([cards])]), user) == 2

    def test_scan_limit_stops_further_searches(self, store, scorer, settings, user):
        user.locations = ["Remote", "Berlin"]
        context = FakeContext([FakeSearchPage([[FakeCard("1")]]), FakeSearchPage([[FakeCard("2")]])])

        recorded = discovery(store, scorer, replace(settings, max_jobs_per_scan=1)).scan(context, user)

        assert recorded == 1
        assert len(context.opened) == 1

    def test_each_keyword_location_pair_searched(self, store, scorer, settings, user):
        user.keywords = ["Backend Engineer", "Python Developer"]
        context = FakeContext([FakeSearchPage([[FakeCard("1")]]), FakeSearchPage([[FakeCard("2")]])])

        assert discovery(store, scorer, settings).scan(context, user) == 2
        assert "Python%20Developer" in context.opened[1].url

    def test_checkpoint_aborts_scan(self, store, scorer, settings, user):
        page = FakeSearchPage([[FakeCard("1")]], redirect="https://www.linkedin.com/checkpoint/challenge/9")

        with pytest.raises(CheckpointDetected):
            discovery(store, scorer, settings).scan(FakeContext([page]), user)

        assert page.closed
        assert store.get(user.id, "1") is None

    def test_search_failure_is_contained(self, store, scorer, settings, user):
        class OfflinePage(FakeSearchPage):
            def goto(self, url, wait_until=None, timeout=None):
                raise PlaywrightError("net::ERR_INTERNET_DISCONNECTED")

        page = OfflinePage([[]])

        assert discovery(store, scorer, settings).scan(FakeContext([page]), user) == 0
        assert page.closed


class TestScrolling:
    def test_stops_when_no_new_cards(self, store, scorer, settings):
        page = FakeSearchPage([[FakeCard("1")], [FakeCard("1"), FakeCard("2")], [FakeCard("1"), FakeCard("2")]])

        cards = discovery(store, scorer, settings).ensure_job_results(page)

        assert len(cards) == 2
        assert page.scrolls == 2

    def test_stops_after_max_attempts(self, store, scorer, settings):
        batches = [[FakeCard(str(j)) for j in range(i + 1)] for i in range(10)]
        page = FakeSearchPage(batches)

        cards = discovery(store, scorer, replace(settings, max_scroll_attempts=3)).ensure_job_results(page)

        assert page.scrolls == 3
        assert len(cards) == 4

    def test_no_scroll_when_enough_loaded(self, store, scorer, settings):
        page = FakeSearchPage([[FakeCard("1"), FakeCard("2")]])

        discovery(store, scorer, replace(settings, min_loaded_results=2)).ensure_job_results(page)

        assert page.scrolls == 0


class TestDescription:
    def test_first_of_several_clickable_containers(self, store, scorer, settings):
        card = FakeCard("1", clickable=(True, True))
        page = FakeSearchPage([[card]])

        job = discovery(store, scorer, settings).read_card(page, card)

        assert job.description == "Python APIs and Postgres."
        first, second = card.locator(CLICKABLE_AREA).all()
        assert first.clicked
        assert not second.clicked
        assert not card.clicked

    def test_hidden_container_falls_back_to_card(self, store, scorer, settings):
        card = FakeCard("1", clickable=(False,))
        page = FakeSearchPage([[card]])

        job = discovery(store, scorer, settings).read_card(page, card)

        assert job.description == "Python APIs and Postgres."
        assert card.clicked
        assert not card.locator(CLICKABLE_AREA).first.clicked
