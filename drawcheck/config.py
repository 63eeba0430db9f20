from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
import os


DetectorProvider = Literal["gemini", "local"]
Language = Literal["en", "vi"]

# Render scale for PDF pages (relative to the PDF's native 72 dpi page size).
PDF_RENDER_SCALE = 2.0
EXPORT_JPEG_QUALITY = 90


@dataclass(frozen=True)
class Settings:
    detector_provider: DetectorProvider
    gemini_api_key: str
    gemini_model: str

    # Local (Ollama) vision model, used when detector_provider == "local"
    ollama_base_url: str
    ollama_vlm_model: str
    ollama_timeout: int

    batch_pause_seconds: float
    ui_language: Language

    data_dir: Path
    export_dir: Path


def _env_float(name: str, default: float, lo: float, hi: float) -> float:
    raw = (os.getenv(name, "") or "").strip()
    try:
        val = float(raw) if raw else default
    except Exception:
        val = default
    return max(lo, min(hi, val))


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    try:
        val = int(raw) if raw else default
    except Exception:
        val = default
    return max(lo, min(hi, val))


def load_settings() -> Settings:
    # Load .env if present (dev-friendly)
    load_dotenv(override=False)

    provider_raw = (os.getenv("DETECTOR_PROVIDER", "gemini") or "gemini").strip().lower()
    detector_provider: DetectorProvider = "gemini"
    if provider_raw in ("gemini", "local"):
        detector_provider = provider_raw  # type: ignore[assignment]

    lang_raw = (os.getenv("UI_LANGUAGE", "en") or "en").strip().lower()
    ui_language: Language = "vi" if lang_raw in ("vi", "vn") else "en"

    data_dir = Path((os.getenv("DATA_DIR", "") or "").strip() or "./data")
    export_dir = Path((os.getenv("EXPORT_DIR", "") or "").strip() or str(data_dir / "exports"))

    return Settings(
        detector_provider=detector_provider,
        gemini_api_key=(os.getenv("GEMINI_API_KEY", "") or "").strip(),
        gemini_model=(os.getenv("GEMINI_MODEL", "") or "").strip() or "gemini-2.5-flash",
        ollama_base_url=(os.getenv("OLLAMA_BASE_URL", "") or "").strip() or "http://localhost:11434",
        ollama_vlm_model=(os.getenv("OLLAMA_VLM_MODEL", "") or "").strip() or "llava:7b",
        ollama_timeout=_env_int("OLLAMA_TIMEOUT", 120, 5, 600),
        # Pause between pages of a batch scan; keeps the UI responsive, nothing else.
        batch_pause_seconds=_env_float("BATCH_PAUSE_SECONDS", 0.5, 0.0, 5.0),
        ui_language=ui_language,
        data_dir=data_dir,
        export_dir=export_dir,
    )
