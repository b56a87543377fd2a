"""Blacklist and similarity gates."""

import pytest

from jobbot.embeddings import RESUME, Chunk, EmbeddingIndex
from jobbot.filter import JobScorer, classify, cosine_similarity, is_blacklisted
from jobbot.models import ApplicationStatus, FilterScore
from tests.fakes import FakeEmbedder


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [1.0, 0.0]) == pytest.approx(0.7071, abs=1e-4)


@pytest.mark.parametrize("a,b", [([], []), ([1.0], [1.0, 2.0]), ([0.0, 0.0], [1.0, 1.0])])
def test_cosine_similarity_degenerate_inputs(a, b):
    assert cosine_similarity(a, b) == 0.0


def test_blacklist_is_case_insensitive_substring():
    assert is_blacklisted("Evil Corp Holdings", ["evil corp"])
    assert not is_blacklisted("Acme", ["evil corp"])
    assert not is_blacklisted("Acme", ["  "])
    assert not is_blacklisted("", ["Acme"])


class TestClassify:
    def test_blacklisted(self):
        score = FilterScore("1", similarity=0.9, blacklisted=True, confidence=0.0)

        assert classify(score) == (ApplicationStatus.SKIPPED, "Company blacklisted")

    def test_low_similarity(self):
        score = FilterScore("1", similarity=0.4213, blacklisted=False, confidence=0.4213)

        assert classify(score) == (ApplicationStatus.SKIPPED, "Low similarity score: 0.42")

    def test_threshold_is_inclusive(self):
        score = FilterScore("1", similarity=0.65, blacklisted=False, confidence=0.65)

        assert classify(score) == (ApplicationStatus.FRESH, "")


@pytest.fixture
def index_for(tmp_path):
    index = EmbeddingIndex("u1", tmp_path)
    index.upsert(RESUME, [Chunk("c1", "Python APIs", [1.0, 0.0]), Chunk("c2", "Gardening", [0.0, 1.0])])
    index.save()
    return lambda user_id: EmbeddingIndex(user_id, tmp_path)


class TestJobScorer:
    def test_similar_job_passes(self, user, job, index_for):
        scorer = JobScorer(FakeEmbedder({job.description: [1.0, 0.0]}), index_for)

        score, trace = scorer.score_job(user, job)

        assert score.similarity == pytest.approx(1.0)
        assert score.confidence == pytest.approx(1.0)
        assert not score.blacklisted
        assert classify(score)[0] == ApplicationStatus.FRESH
        assert trace.to_dict() == {
            "title": "Is company blacklisted?",
            "pass": True,
            "children": [
                {
                    "title": "Similarity > 0.65",
                    "pass": True,
                    "children": [{"title": "Confidence calculation", "pass": True}],
                }
            ],
        }

    def test_best_chunk_wins(self, user, job, index_for):
        scorer = JobScorer(FakeEmbedder({job.description: [0.6, 0.8]}), index_for)

        score, _ = scorer.score_job(user, job)

        assert score.similarity == pytest.approx(0.8)

    def test_dissimilar_job_fails_similarity_gate(self, user, job, index_for):
        scorer = JobScorer(FakeEmbedder({job.description: [-1.0, 0.0]}), index_for)

        score, trace = scorer.score_job(user, job)

        assert classify(score)[0] == ApplicationStatus.SKIPPED
        assert trace.children[0].passed is False

    def test_blacklisted_company_skips_embedding(self, user, job, index_for):
        embedder = FakeEmbedder()
        evil = job.__class__(id="9", title="Engineer", company="Evil Corp", description="Python", url="")

        score, trace = JobScorer(embedder, index_for).score_job(user, evil)

        assert score.blacklisted
        assert score.confidence == 0.0
        assert embedder.calls == []
        assert trace.passed is False

    def test_no_resume_chunks_scores_zero(self, user, job, tmp_path):
        scorer = JobScorer(FakeEmbedder(), lambda uid: EmbeddingIndex(uid, tmp_path / "empty"))

        score, _ = scorer.score_job(user, job)

        assert score.similarity == 0.0
        assert classify(score) == (ApplicationStatus.SKIPPED, "Low similarity score: 0.00")
