"""
Resume/FAQ embeddings: chunking, embedding backends and a local vector index.

Chunks are keyed by the SHA-256 of their text so re-syncing the same resume
rewrites identical ids. The index is one JSON file per user holding two
collections, `resume` and `faq`.
"""
from __future__ import annotations

import hashlib
import json
import math
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Sequence

import requests

from jobbot.config import DATA_DIR, Settings
from jobbot.log import get_logger
from jobbot.models import UserProfile
from jobbot.resume import extract_text
from jobbot.retry import retry

log = get_logger(__name__)

CHUNK_SIZE = 1000
CHUNK_OVERLAP = 200
EXPECTED_EMBEDDING_LENGTH = 768  # nomic-embed-text
INDEX_DIR: Path = DATA_DIR / "embeddings"
RESUME = "resume"
FAQ = "faq"

_SENTENCE = re.compile(r"[^.!?\n]+[.!?\n]?")


# ── Chunking ────────────────────────────────────────────────────────────


def split_into_sentences(text: str) -> list[str]:
    if not text:
        return []
    return [s.strip() for s in _SENTENCE.findall(text) if s.strip()]


def chunk_text(text: str, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> list[str]:
    """Greedy sentence packing into chunks of at most ~chunk_size characters.

    Each new chunk starts with the trailing sentences of the previous one that
    fit within *overlap* characters. A single sentence longer than chunk_size
    becomes its own chunk.
    """
    sentences = split_into_sentences(text)
    chunks: list[str] = []
    current: list[str] = []
    length = 0
    i = 0
    while i < len(sentences):
        sentence = sentences[i]
        if current and length + 1 + len(sentence) > chunk_size:
            chunks.append(" ".join(current))
            carried: list[str] = []
            carried_len = 0
            for prev in reversed(current):
                extra = len(prev) + (1 if carried else 0)
                if carried_len + extra > overlap:
                    break
                carried.insert(0, prev)
                carried_len += extra
            # Without progress the same sentence would be retried forever
            if carried and carried_len + 1 + len(sentence) > chunk_size:
                carried, carried_len = [], 0
            current, length = carried, carried_len
        else:
            length += len(sentence) + (1 if current else 0)
            current.append(sentence)
            i += 1
    if current:
        chunks.append(" ".join(current))
    return [c for c in chunks if c.strip()]


def chunk_id(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two vectors; 0 for empty, mismatched or zero-norm input."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


# ── Embedding backends ──────────────────────────────────────────────────


@retry(max_attempts=3, base_delay=1.0, retryable=(requests.RequestException,))
def _ollama_embedding(host: str, model: str, text: str) -> list[float]:
    r = requests.post(
        f"{host.rstrip('/')}/api/embeddings",
        json={"model": model, "prompt": text},
        timeout=60,
    )
    r.raise_for_status()
    embedding = r.json().get("embedding")
    if not isinstance(embedding, list):
        raise ValueError("Invalid embedding format from Ollama")
    return embedding


@retry(max_attempts=3, base_delay=1.0)
def _openai_embedding(api_key: str, model: str, text: str) -> list[float]:
    from openai import OpenAI

    client = OpenAI(api_key=api_key)
    r = client.embeddings.create(model=model, input=text)
    return list(r.data[0].embedding)


class Embedder:
    """Turns text into a vector using the configured backend.

    OpenAI embeddings are used when AI_PROVIDER is "openai"; otherwise the
    local Ollama server (Groq has no embedding endpoint).
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def backend(self) -> str:
        return "openai" if self.settings.ai_provider == "openai" else "ollama"

    def embed(self, text: str) -> list[float]:
        s = self.settings
        if self.backend == "openai":
            return _openai_embedding(s.openai_api_key, s.openai_embedding_model, text)
        vector = _ollama_embedding(s.ollama_host, s.ollama_embedding_model, text)
        if s.ollama_embedding_model.startswith("nomic-embed-text") and len(vector) != EXPECTED_EMBEDDING_LENGTH:
            log.warning("Embedding dimension %d, expected %d", len(vector), EXPECTED_EMBEDDING_LENGTH)
        return vector


# ── Local vector index ──────────────────────────────────────────────────


@dataclass
class Chunk:
    id: str
    text: str
    embedding: list[float]
    source_id: str = ""


class EmbeddingIndex:
    """Per-user JSON store of embedded chunks."""

    def __init__(self, user_id: str, directory: Path = INDEX_DIR) -> None:
        self.path = Path(directory) / f"{user_id}.json"
        self._data: dict[str, list[Chunk]] | None = None

    def _load(self) -> dict[str, list[Chunk]]:
        if self._data is None:
            data: dict[str, list[Chunk]] = {RESUME: [], FAQ: []}
            if self.path.exists():
                try:
                    raw = json.loads(self.path.read_text(encoding="utf-8"))
                    for name in data:
                        data[name] = [Chunk(**c) for c in raw.get(name, [])]
                except (json.JSONDecodeError, TypeError) as exc:
                    log.warning("Embedding index %s unreadable (%s); starting empty", self.path.name, exc)
            self._data = data
        return self._data

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {name: [asdict(c) for c in chunks] for name, chunks in self._load().items()}
        self.path.write_text(json.dumps(payload), encoding="utf-8")

    def chunks(self, collection: str) -> list[Chunk]:
        return list(self._load()[collection])

    def upsert(self, collection: str, chunks: Sequence[Chunk]) -> None:
        existing = {c.id: c for c in self._load()[collection]}
        for c in chunks:
            existing[c.id] = c
        self._load()[collection] = list(existing.values())

    def replace(self, collection: str, chunks: Sequence[Chunk]) -> None:
        self._load()[collection] = []
        self.upsert(collection, chunks)

    def top_k(self, collection: str, vector: Sequence[float], k: int = 5) -> list[tuple[float, Chunk]]:
        """The *k* chunks most similar to *vector*, best first."""
        scored = [(cosine_similarity(vector, c.embedding), c) for c in self._load()[collection]]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return scored[:k]


# ── Sync ────────────────────────────────────────────────────────────────


def _embed_chunks(embedder: Embedder, texts: Sequence[str], source_id: str = "") -> list[Chunk]:
    out: list[Chunk] = []
    for text in texts:
        try:
            out.append(Chunk(chunk_id(text), text, embedder.embed(text), source_id))
        except Exception as exc:
            log.warning("Embedding failed for chunk %r...: %s", text[:50], exc)
    return out


def sync_embeddings(user: UserProfile, embedder: Embedder, index: EmbeddingIndex | None = None) -> int:
    """Re-index the user's resume and FAQ entries; return chunks stored."""
    index = index or EmbeddingIndex(user.id)
    stored = 0

    resume_text = ""
    if user.resume_path:
        try:
            resume_text = extract_text(user.resume_path)
        except (OSError, ValueError) as exc:
            log.error("Could not read resume %s: %s", user.resume_path, exc)
    if resume_text.strip():
        chunks = _embed_chunks(embedder, chunk_text(resume_text))
        index.replace(RESUME, chunks)
        stored += len(chunks)
        log.info("Resume: %d chunks embedded", len(chunks))
    else:
        log.info("No resume text to index for user %s", user.id)

    faq_chunks: list[Chunk] = []
    for i, item in enumerate(user.faq):
        question, answer = item.get("question", ""), item.get("answer", "")
        if not question or not answer:
            log.debug("Skipping FAQ item %d: missing question or answer", i)
            continue
        faq_chunks.extend(_embed_chunks(embedder, chunk_text(f"{question}\n{answer}"), source_id=str(i)))
    index.replace(FAQ, faq_chunks)
    stored += len(faq_chunks)

    index.save()
    log.info("Embedding sync finished for user %s: %d chunks", user.id, stored)
    return stored
