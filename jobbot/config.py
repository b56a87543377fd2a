"""Load the user profile, paths and runtime settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from jobbot.log import get_logger
from jobbot.models import UserProfile

log = get_logger(__name__)

load_dotenv()

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = ROOT_DIR / "config"
PROFILE_PATH: Path = CONFIG_DIR / "profile.yaml"
DATA_DIR: Path = Path(os.environ.get("JOBBOT_DATA_DIR", ROOT_DIR / "data"))
RESUME_DIR: Path = ROOT_DIR / "resume"

DEFAULT_KEYWORDS: list[str] = ["Software Engineer"]
DEFAULT_LOCATIONS: list[str] = ["Remote"]


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _env_int(key: str, default: int) -> int:
    raw = get_env(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r, using %d", key, raw, default)
        return default


def _env_float(key: str, default: float) -> float:
    raw = get_env(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("Ignoring non-numeric %s=%r, using %s", key, raw, default)
        return default


def _env_bool(key: str, default: bool) -> bool:
    raw = get_env(key).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # pacing
    hourly_cap: int = 25
    daily_cap: int = 45
    cycle_interval_s: float = 60.0
    jobs_per_cycle: int = 10
    apply_delay_min_s: float = 30.0
    apply_delay_max_s: float = 60.0
    # application flow
    application_timeout_s: float = 45.0
    max_form_steps: int = 10
    dry_run: bool = False
    headless: bool = True
    generate_cover_letters: bool = False
    # discovery and scoring
    scan_each_cycle: bool = True
    similarity_threshold: float = 0.65
    answer_review_threshold: float = 0.5
    max_jobs_per_scan: int = 50
    max_jobs_per_search: int = 25
    min_loaded_results: int = 25
    max_scroll_attempts: int = 5
    # AI backend
    ai_provider: str = "ollama"
    ollama_host: str = "http://127.0.0.1:11434"
    ollama_model: str = "llama3.2:latest"
    ollama_embedding_model: str = "nomic-embed-text"
    openai_api_key: str = ""
    openai_model: str = "gpt-3.5-turbo"
    openai_embedding_model: str = "text-embedding-3-small"
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"


def load_settings() -> Settings:
    """Build Settings from the environment (.env already loaded)."""
    d = Settings()
    return Settings(
        hourly_cap=_env_int("HOURLY_CAP", d.hourly_cap),
        daily_cap=_env_int("DAILY_CAP", d.daily_cap),
        cycle_interval_s=_env_float("CYCLE_INTERVAL_SECONDS", d.cycle_interval_s),
        jobs_per_cycle=_env_int("JOBS_PER_CYCLE", d.jobs_per_cycle),
        apply_delay_min_s=_env_float("APPLY_DELAY_MIN", d.apply_delay_min_s),
        apply_delay_max_s=_env_float("APPLY_DELAY_MAX", d.apply_delay_max_s),
        application_timeout_s=_env_float("APPLICATION_TIMEOUT_SECONDS", d.application_timeout_s),
        max_form_steps=_env_int("MAX_FORM_STEPS", d.max_form_steps),
        dry_run=_env_bool("DRY_RUN", d.dry_run),
        headless=_env_bool("RUN_HEADLESS", d.headless),
        generate_cover_letters=_env_bool("GENERATE_COVER_LETTERS", d.generate_cover_letters),
        scan_each_cycle=_env_bool("SCAN_EACH_CYCLE", d.scan_each_cycle),
        similarity_threshold=_env_float("SIMILARITY_THRESHOLD", d.similarity_threshold),
        answer_review_threshold=_env_float("ANSWER_REVIEW_THRESHOLD", d.answer_review_threshold),
        max_jobs_per_scan=_env_int("MAX_JOBS_PER_SCAN", d.max_jobs_per_scan),
        max_jobs_per_search=_env_int("MAX_JOBS_PER_SEARCH", d.max_jobs_per_search),
        min_loaded_results=_env_int("MIN_LOADED_RESULTS", d.min_loaded_results),
        max_scroll_attempts=_env_int("MAX_SCROLL_ATTEMPTS", d.max_scroll_attempts),
        ai_provider=get_env("AI_PROVIDER", d.ai_provider).lower(),
        ollama_host=get_env("OLLAMA_HOST", d.ollama_host).rstrip("/"),
        ollama_model=get_env("OLLAMA_MODEL", d.ollama_model),
        ollama_embedding_model=get_env("OLLAMA_EMBEDDING_MODEL", d.ollama_embedding_model),
        openai_api_key=get_env("OPENAI_API_KEY"),
        openai_model=get_env("OPENAI_MODEL_NAME", d.openai_model),
        openai_embedding_model=get_env("OPENAI_EMBEDDING_MODEL_NAME", d.openai_embedding_model),
        groq_api_key=get_env("GROQ_API_KEY"),
        groq_model=get_env("GROQ_LLM_MODEL", d.groq_model),
    )


def ensure_dirs() -> None:
    for d in (DATA_DIR, RESUME_DIR):
        d.mkdir(parents=True, exist_ok=True)


def get_resume_path() -> Path | None:
    """First PDF or DOCX in resume folder."""
    if not RESUME_DIR.exists():
        return None
    for ext in (".pdf", ".docx", ".doc"):
        for p in RESUME_DIR.iterdir():
            if p.suffix.lower() == ext and p.is_file():
                return p
    return None


def _str_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v).strip() for v in value if str(v).strip()]


def profile_from_dict(data: dict[str, Any]) -> UserProfile | None:
    """Build a UserProfile from parsed profile YAML; None without a user id."""
    user = data.get("user") or {}
    user_id = str(user.get("id") or "").strip()
    if not user_id:
        return None

    search = data.get("search") or {}
    resume_path = str(data.get("resume_path") or "")
    if not resume_path:
        found = get_resume_path()
        resume_path = str(found) if found else ""

    faq = [
        {"question": str(item.get("question", "")), "answer": str(item.get("answer", ""))}
        for item in data.get("faq") or []
        if isinstance(item, dict)
    ]

    return UserProfile(
        id=user_id,
        name=str(user.get("name") or ""),
        email=str(user.get("email") or ""),
        resume_path=resume_path,
        cover_letter_path=str(data.get("cover_letter_path") or ""),
        keywords=_str_list(search.get("keywords")) or list(DEFAULT_KEYWORDS),
        locations=_str_list(search.get("locations")) or list(DEFAULT_LOCATIONS),
        blacklist=_str_list(data.get("blacklist")),
        answers={str(k): str(v) for k, v in (data.get("answers") or {}).items()},
        questions=_str_list(data.get("questions")),
        faq=faq,
    )


def load_user(path: Path = PROFILE_PATH) -> UserProfile | None:
    """Current user context, or None when no usable profile exists."""
    if not path.exists():
        log.debug("No profile at %s", path)
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        log.error("Could not read profile %s: %s", path, exc)
        return None
    return profile_from_dict(data)
