"""Answer and cover-letter generation through an OpenAI-compatible chat API.

The same `openai` client talks to OpenAI, Groq or a local Ollama server
(its /v1 endpoint); AI_PROVIDER picks one. Answers are grounded on the user's
embedded resume and FAQ chunks.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Sequence

import requests

from jobbot.config import DATA_DIR, Settings
from jobbot.embeddings import FAQ, RESUME, EmbeddingIndex, Embedder
from jobbot.log import get_logger
from jobbot.matching import questions_match
from jobbot.models import Answer, JobListing, UserProfile
from jobbot.retry import retry

log = get_logger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
MAX_ANSWER_CHARS = 400
MAX_COVER_LETTER_CHARS = 2000
COVER_LETTER_BEGIN = "COVER_LETTER_BEGINS_HERE"
COVER_LETTER_END = "COVER_LETTER_ENDS_HERE"
CONTEXT_CHUNKS = 3

_ANSWER_RE = re.compile(r"ANSWER:\s*(.*)", re.IGNORECASE | re.DOTALL)

Complete = Callable[[list[dict], int], str]


# ── Chat backend ─────────────────────────────────────────────────────────


def _client(settings: Settings):
    from openai import OpenAI

    if settings.ai_provider == "openai":
        return OpenAI(api_key=settings.openai_api_key), settings.openai_model
    if settings.ai_provider == "groq":
        return OpenAI(api_key=settings.groq_api_key, base_url=GROQ_BASE_URL), settings.groq_model
    # Ollama ignores the key but the client requires one
    return OpenAI(api_key="ollama", base_url=f"{settings.ollama_host.rstrip('/')}/v1"), settings.ollama_model


@retry(max_attempts=2, base_delay=2.0, retryable=(Exception,))
def _call_llm(settings: Settings, messages: list[dict], max_tokens: int) -> str:
    client, model = _client(settings)
    r = client.chat.completions.create(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=0.3,
    )
    return (r.choices[0].message.content or "").strip()


def check_prerequisites(settings: Settings) -> str | None:
    """Human-readable setup requirement, or None when the AI backend is usable."""
    provider = settings.ai_provider
    if provider not in ("ollama", "openai", "groq"):
        return f"Invalid AI_PROVIDER: {provider}"
    if provider == "openai":
        return None if settings.openai_api_key else "OPENAI_API_KEY is not set."
    if provider == "groq" and not settings.groq_api_key:
        return "GROQ_API_KEY is not set."

    # Ollama serves embeddings for both the ollama and groq providers
    host = settings.ollama_host.rstrip("/")
    try:
        r = requests.get(f"{host}/api/tags", timeout=5)
        r.raise_for_status()
        installed = {m.get("name", "") for m in r.json().get("models", [])}
    except (requests.RequestException, ValueError) as exc:
        log.debug("Ollama check failed: %s", exc)
        return f"Ollama is not reachable at {host}. Install it and run `ollama serve`."

    wanted = [settings.ollama_embedding_model]
    if provider == "ollama":
        wanted.append(settings.ollama_model)
    for model in wanted:
        if not any(name == model or name.split(":")[0] == model for name in installed):
            return f"Ollama model {model} is not installed. Run `ollama pull {model}`."
    return None


# ── Answers ──────────────────────────────────────────────────────────────


def parse_answer(raw: str) -> str:
    m = _ANSWER_RE.search(raw or "")
    answer = (m.group(1) if m else raw or "").strip()
    if len(answer) > MAX_ANSWER_CHARS:
        answer = answer[: MAX_ANSWER_CHARS - 3] + "..."
    return answer


def answer_refs(answer: str, has_resume_context: bool) -> list[str]:
    refs = [name for name in ("Resume", "FAQ") if f"[{name}]" in answer]
    return refs or ["Resume" if has_resume_context else "FAQ"]


class AnswerOracle:
    """Produces one Answer per question; never raises for a single question."""

    def __init__(
        self,
        settings: Settings,
        embedder: Embedder,
        index_for: Callable[[str], EmbeddingIndex] = EmbeddingIndex,
        complete: Complete | None = None,
    ) -> None:
        self.settings = settings
        self.embedder = embedder
        self.index_for = index_for
        self.complete: Complete = complete or (lambda messages, max_tokens: _call_llm(settings, messages, max_tokens))

    def generate_answers(self, user: UserProfile, job: JobListing, questions: Sequence[str]) -> list[Answer]:
        index = self.index_for(user.id)
        answers = [self._answer(user, job, q, index) for q in questions]
        flagged = sum(a.needs_review for a in answers)
        log.info("Generated %d answers for job %s (%d need review)", len(answers), job.id, flagged)
        return answers

    def _answer(self, user: UserProfile, job: JobListing, question: str, index: EmbeddingIndex) -> Answer:
        for known, text in user.answers.items():
            if questions_match(question, known):
                return Answer(question, str(text), ["Profile"], 1.0, False)

        try:
            vector = self.embedder.embed(question)
            resume_hits = index.top_k(RESUME, vector, CONTEXT_CHUNKS)
            faq_hits = index.top_k(FAQ, vector, CONTEXT_CHUNKS)
            confidence = max([sim for sim, _ in resume_hits + faq_hits], default=0.0)

            resume_text = "\n".join(c.text for _, c in resume_hits)
            faq_text = "\n\n".join(c.text for _, c in faq_hits)
            messages = [
                {"role": "system", "content": "Strict: start with ANSWER:. Max 400 chars. First person. Cite [Resume] or [FAQ]."},
                {
                    "role": "user",
                    "content": (
                        f"Context:\n[Resume]\n{resume_text}\n\n[FAQ]\n{faq_text}\n\n"
                        f"Job: {job.title} at {job.company}\nDescription: {job.description[:2000]}\n\n"
                        f"Question: {question}"
                    ),
                },
            ]
            answer = parse_answer(self.complete(messages, 200))
        except Exception as exc:
            log.warning('Answer generation failed for "%s": %s', question, exc)
            return Answer(question, "", [], 0.0, True)

        needs_review = not answer or confidence < self.settings.answer_review_threshold
        return Answer(question, answer, answer_refs(answer, bool(resume_hits)), confidence, needs_review)

    # ── Cover letters ────────────────────────────────────────────────────

    def generate_cover_letter(self, user: UserProfile, job: JobListing) -> str:
        index = self.index_for(user.id)
        highlights = "\n - ".join(c.text for c in index.chunks(RESUME)[:CONTEXT_CHUNKS])
        messages = [
            {"role": "system", "content": f"Wrap between {COVER_LETTER_BEGIN} and {COVER_LETTER_END}. Max 2000 chars."},
            {
                "role": "user",
                "content": (
                    f"Write a 3-paragraph cover letter for this job application.\n"
                    f"Applicant: {user.name}, {user.email}\nResume highlights:\n - {highlights}\n"
                    f"Job: {job.title} at {job.company}\nDescription: {job.description[:1500]}\n"
                    f"Do NOT assume the applicant already works at the company. "
                    f'End with "Best regards," and the applicant name. Do not use placeholders.'
                ),
            },
        ]
        try:
            letter = extract_cover_letter(self.complete(messages, 700))
        except Exception as exc:
            log.warning("Cover letter generation failed (%s), using template", exc)
            return fallback_letter(user, job)
        if not letter:
            return fallback_letter(user, job)
        log.info("Cover letter generated for %s @ %s", job.title, job.company)
        return letter


def extract_cover_letter(raw: str) -> str:
    letter = raw or ""
    start = letter.find(COVER_LETTER_BEGIN)
    end = letter.find(COVER_LETTER_END)
    if start >= 0 and end > start:
        letter = letter[start + len(COVER_LETTER_BEGIN) : end]
    letter = letter.strip()
    if len(letter) > MAX_COVER_LETTER_CHARS:
        letter = letter[: MAX_COVER_LETTER_CHARS - 3] + "..."
    return letter


def fallback_letter(user: UserProfile, job: JobListing) -> str:
    name = user.name or "Candidate"
    return f"""Dear Hiring Team,

I am writing to apply for the {job.title} position at {job.company}.

My experience aligns with your requirements and I am particularly interested in contributing to your team's success.

I would welcome the opportunity to discuss how my background can contribute to your team.

Best regards,
{name}"""


def save_cover_letter(job: JobListing, content: str, directory: Path = DATA_DIR / "cover_letters") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    safe = "".join(c if c.isalnum() or c in " -_" else "_" for c in job.company)[:40]
    path = directory / f"cover_{job.id}_{safe}.txt"
    path.write_text(content, encoding="utf-8")
    return path
