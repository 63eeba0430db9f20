"""
Local VLM backend via Ollama HTTP API.

Thin wrapper around Ollama's /api/generate so a locally hosted vision model
can stand in for Gemini as the drawing detector.

No external dependency beyond `urllib` (stdlib). Ollama must be running locally.
"""
from __future__ import annotations

import base64
import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class OllamaConfig:
    """
    base_url: e.g. "http://localhost:11434"
    vlm_model: vision model name in Ollama (e.g. "llava:7b")
    timeout: HTTP request timeout in seconds
    """

    base_url: str = "http://localhost:11434"
    vlm_model: str = "llava:7b"
    timeout: int = 120


def _ollama_generate(
    base_url: str,
    model: str,
    prompt: str,
    system: str = "",
    images: Optional[list[str]] = None,
    json_format: bool = False,
    temperature: float = 0.0,
    max_tokens: int = 4096,
    timeout: int = 120,
) -> str:
    """
    Call Ollama /api/generate (streaming disabled) and return the response text.

    images: list of base64-encoded image strings (for vision models).
    Single attempt; a failed call is reported to the caller as-is.
    """
    url = f"{base_url.rstrip('/')}/api/generate"

    payload: dict = {
        "model": model,
        "prompt": prompt,
        "stream": False,
        "options": {
            "temperature": temperature,
            "num_predict": max_tokens,
        },
    }
    if system:
        payload["system"] = system
    if images:
        payload["images"] = images
    if json_format:
        payload["format"] = "json"

    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="ignore")[:300]
        raise RuntimeError(f"Ollama HTTP {e.code}: {detail}") from e
    except urllib.error.URLError as e:
        raise RuntimeError(f"Ollama unreachable at {base_url}: {e.reason}") from e
    return (body.get("response") or "").strip()


def ollama_vision_generate(
    cfg: OllamaConfig,
    image_bytes: bytes,
    prompt: str,
    system: str = "",
    json_format: bool = True,
    temperature: float = 0.1,
    max_tokens: int = 4096,
) -> str:
    """Vision (multimodal) generation via Ollama: one image + text prompt."""
    img_b64 = base64.b64encode(image_bytes).decode("ascii")
    return _ollama_generate(
        base_url=cfg.base_url,
        model=cfg.vlm_model,
        prompt=prompt,
        system=system,
        images=[img_b64],
        json_format=json_format,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=cfg.timeout,
    )
