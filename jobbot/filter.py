"""Job scoring: blacklist gate, resume similarity gate and an audit trace."""
from __future__ import annotations

from jobbot.embeddings import RESUME, EmbeddingIndex, Embedder, cosine_similarity
from jobbot.log import get_logger
from jobbot.models import ApplicationStatus, DecisionNode, FilterScore, JobListing, UserProfile

log = get_logger(__name__)

SIMILARITY_THRESHOLD = 0.65

__all__ = ["JobScorer", "classify", "cosine_similarity", "is_blacklisted", "SIMILARITY_THRESHOLD"]


def is_blacklisted(company: str, blacklist: list[str]) -> bool:
    company_low = (company or "").lower()
    return any(entry.strip() and entry.strip().lower() in company_low for entry in blacklist)


def classify(score: FilterScore, threshold: float = SIMILARITY_THRESHOLD) -> tuple[ApplicationStatus, str]:
    """Record status and reason a scored listing should be stored with."""
    if score.blacklisted:
        return ApplicationStatus.SKIPPED, "Company blacklisted"
    if score.similarity < threshold:
        return ApplicationStatus.SKIPPED, f"Low similarity score: {score.similarity:.2f}"
    return ApplicationStatus.FRESH, ""


class JobScorer:
    """Scores listings against the user's embedded resume chunks."""

    def __init__(self, embedder: Embedder, index_for=EmbeddingIndex, threshold: float = SIMILARITY_THRESHOLD) -> None:
        self.embedder = embedder
        self.index_for = index_for
        self.threshold = threshold

    def score_job(self, user: UserProfile, job: JobListing) -> tuple[FilterScore, DecisionNode]:
        blacklisted = is_blacklisted(job.company, user.blacklist)
        similarity = 0.0
        if blacklisted:
            log.debug('Company "%s" is blacklisted; skipping embedding gate', job.company)
        else:
            chunks = self.index_for(user.id).chunks(RESUME)
            if chunks:
                vector = self.embedder.embed(job.description or job.title)
                similarity = max(cosine_similarity(vector, c.embedding) for c in chunks)
                log.debug("Max similarity with resume chunks: %.4f", similarity)
            else:
                log.debug("No resume chunks indexed for user %s", user.id)

        confidence = 0.0 if blacklisted else similarity
        trace = DecisionNode(
            "Is company blacklisted?",
            not blacklisted,
            [
                DecisionNode(
                    f"Similarity > {self.threshold}",
                    similarity >= self.threshold,
                    [DecisionNode("Confidence calculation", True)],
                )
            ],
        )
        score = FilterScore(
            job_id=job.id,
            similarity=similarity,
            blacklisted=blacklisted,
            confidence=confidence,
            explanation=f"Company Blacklisted: {blacklisted}. Max Similarity: {similarity:.4f}.",
        )
        return score, trace
