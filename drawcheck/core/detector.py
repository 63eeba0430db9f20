from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from google import genai
from google.genai import types

from ..config import Settings
from .annotation import extract_raw_defects
from .local_llm import OllamaConfig, ollama_vision_generate


CHECKLIST_RULES = """\
A. TITLE BLOCK
- Project Title present
- Drawing Title format correct (e.g. US3_L2_TYPE D-... ROOM CSD FLOOR PLAN)
- Drawing Number format correct
- Revision index & date present
- Status: FOR COORDINATION / SUBMISSION / APPROVAL
- Issued Date matches Check Date
- Consultant/Contractor listed
- Disclaimers/Notes present
- Approval signatures present

B. ANNOTATION / TAGS
- Pipes tagged (DN + system)
- Ducts tagged (Size + system)
- MEP Equipment tagged (e.g., FCU-US3-L2-10)
- Levels (BOP/BOD/BOT/COS/TOS) indicated with mm unit
- No overlapping text
- Consistency across sheets
- "BY ID" for ID dependent equipment

C. SYSTEM NAME
- CHWS/CHWR distinguished
- Domestic Water (DWGF, HWSP, HWRP) distinguished
- Sanitary (SWP, WP, VP, CDP) distinguished
- HVAC components labeled
- Electrical components labeled
- ELV systems labeled

D. LEGEND
- Colour Legend present
- Abbreviations defined and used consistently
- Device symbols explained

E. CONSISTENCY
- Plan vs Section levels match
- Room names consistent
- Equipment shown on both Plan & Section
- Duct/Pipe sizes consistent
- Level references consistent
- Dimensions from FFL/Wall correct
- Ceiling heights (CH) shown on section
- Spelling check
- Numbering logic (1..100)
"""

SYSTEM_INSTRUCTION = f"""\
You are a Senior BIM QA/QC Engineer. Your task is to review construction drawings (Images) \
and detect errors based strictly on the visible content.
DO NOT hallucinate. If you cannot find an error, do not invent one.

CHECKLIST TO VERIFY:
{CHECKLIST_RULES}
OUTPUT INSTRUCTION:
Return a JSON object with a property "errors" which is an array of objects.
Each object must have:
- "id": integer (1, 2, 3...)
- "description_en": string (Description in English)
- "description_vn": string (Description in Vietnamese)
- "type": "critical" | "warning" | "info"
- "box_2d": [ymin, xmin, ymax, xmax] (Array of 4 integers).
  IMPORTANT: Coordinates are normalized to 0-1000 scale.
  (0,0) is top-left, (1000,1000) is bottom-right.
  Mark the location of the error precisely. If the error is general (e.g. Title Block missing), \
mark the area where it should be or the whole sheet if applicable.

Example:
{{
  "errors": [
    {{
      "id": 1,
      "description_en": "Missing DN tag on pipe",
      "description_vn": "Thiếu tag DN trên ống",
      "type": "warning",
      "box_2d": [450, 200, 480, 250]
    }}
  ]
}}
"""

USER_PROMPT = "Perform a QA/QC check on this drawing based on the provided checklist. Return JSON format."


class Detector(Protocol):
    """Inspects one page image and returns the raw (unvalidated) `errors` entries."""

    def detect(self, payload: bytes, mime_type: str) -> list[Any]:
        ...


@dataclass(frozen=True)
class GeminiDetector:
    api_key: str
    model: str = "gemini-2.5-flash"
    temperature: float = 0.1

    def detect(self, payload: bytes, mime_type: str) -> list[Any]:
        if not self.api_key:
            raise RuntimeError("GEMINI_API_KEY is missing")

        client = genai.Client(api_key=self.api_key)
        resp = client.models.generate_content(
            model=self.model,
            contents=[
                types.Part.from_bytes(data=payload, mime_type=mime_type),
                types.Part.from_text(text=USER_PROMPT),
            ],
            config=types.GenerateContentConfig(
                system_instruction=SYSTEM_INSTRUCTION,
                response_mime_type="application/json",
                temperature=self.temperature,
            ),
        )
        return extract_raw_defects(resp.text or "")


@dataclass(frozen=True)
class OllamaDetector:
    cfg: OllamaConfig

    def detect(self, payload: bytes, mime_type: str) -> list[Any]:
        text = ollama_vision_generate(
            cfg=self.cfg,
            image_bytes=payload,
            prompt=USER_PROMPT,
            system=SYSTEM_INSTRUCTION,
            json_format=True,
        )
        return extract_raw_defects(text)


def build_detector(settings: Settings) -> Detector:
    if settings.detector_provider == "local":
        return OllamaDetector(
            cfg=OllamaConfig(
                base_url=settings.ollama_base_url,
                vlm_model=settings.ollama_vlm_model,
                timeout=settings.ollama_timeout,
            )
        )
    return GeminiDetector(api_key=settings.gemini_api_key, model=settings.gemini_model)
