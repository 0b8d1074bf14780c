"""
Model providers behind a single ``infer(request) -> response`` capability.

- GeminiExtractionModel: reads a PDF (or one page of it) and returns the
  raw extraction JSON.
- OpenAIVerificationModel: re-reads the PDF alongside the extracted JSON
  and returns a pass/fail verdict with corrections.

Provider-specific payload shapes stay in this module; the stages only see
the request/response dataclasses below.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, TypeVar

import google.generativeai as genai
from openai import AsyncOpenAI

from backend.core.config import GeminiSettings, OpenAISettings, get_settings
from workers.biomarker_pipeline.exceptions import ExtractionError
from workers.biomarker_pipeline.prompts import build_extraction_prompt, build_verification_prompt

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", contravariant=True)
ResponseT = TypeVar("ResponseT", covariant=True)


class ModelProvider(Protocol[RequestT, ResponseT]):
    """Anything that can answer one request with one response."""

    model_name: str

    async def infer(self, request: RequestT) -> ResponseT:
        ...


@dataclass(frozen=True)
class ExtractionRequest:
    pdf_bytes: bytes
    page_number: Optional[int] = None
    total_pages: Optional[int] = None
    mime_type: str = "application/pdf"


@dataclass
class ExtractionResponse:
    data: Dict[str, Any]
    raw_text: str = ""


@dataclass(frozen=True)
class VerificationRequest:
    pdf_bytes: bytes
    extracted: Dict[str, Any]
    page_number: Optional[int] = None


@dataclass
class VerificationResponse:
    passed: bool
    corrections: List[str] = field(default_factory=list)
    corrected_data: Optional[Dict[str, Any]] = None


def clean_json(text: str) -> str:
    """Remove markdown fences the models often wrap JSON in."""
    text = (text or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class GeminiExtractionModel:
    """Stage 1 provider: Gemini reading the PDF inline."""

    def __init__(self, config: Optional[GeminiSettings] = None):
        self.config = config or get_settings().gemini
        self._configure_gemini()
        self.model_name = self.config.model
        # google.generativeai has no thinking control; the model runs at its own default
        self.thinking_level = "default"
        self.model = genai.GenerativeModel(self.config.model)

    def _configure_gemini(self) -> None:
        api_key = self.config.api_key
        if not api_key:
            raise ValueError(
                "GOOGLE_API_KEY not set. Please set the GEMINI__API_KEY environment variable "
                "or add GOOGLE_API_KEY to your .env file."
            )
        genai.configure(api_key=api_key)

    async def infer(self, request: ExtractionRequest) -> ExtractionResponse:
        prompt = build_extraction_prompt(request.page_number, request.total_pages)
        response = await self.model.generate_content_async(
            [prompt, {"mime_type": request.mime_type, "data": request.pdf_bytes}],
            generation_config=genai.GenerationConfig(
                temperature=self.config.temperature,
                max_output_tokens=self.config.max_output_tokens,
            ),
        )

        result_text = clean_json(response.text)
        try:
            data = json.loads(result_text)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Failed to parse extraction result from Gemini: {e}") from e
        if not isinstance(data, dict):
            raise ExtractionError("Gemini extraction result is not a JSON object")

        return ExtractionResponse(data=data, raw_text=result_text)


class OpenAIVerificationModel:
    """Stage 2 provider: an OpenAI reasoning model cross-checking stage 1."""

    def __init__(self, config: Optional[OpenAISettings] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or get_settings().openai
        if client is None:
            if not self.config.api_key:
                raise ValueError(
                    "OPENAI_API_KEY not set. Please set the OPENAI__API_KEY environment variable "
                    "or add OPENAI_API_KEY to your .env file."
                )
            client = AsyncOpenAI(api_key=self.config.api_key)
        self.client = client
        self.model_name = self.config.model
        self.reasoning_effort = self.config.reasoning_effort

    async def infer(self, request: VerificationRequest) -> VerificationResponse:
        pdf_b64 = base64.b64encode(request.pdf_bytes).decode("ascii")
        response = await self.client.responses.create(
            model=self.config.model,
            input=[{
                "role": "user",
                "content": [
                    {
                        "type": "input_file",
                        "filename": "lab-result.pdf",
                        "file_data": f"data:application/pdf;base64,{pdf_b64}",
                    },
                    {"type": "input_text", "text": build_verification_prompt(request.extracted)},
                ],
            }],
            max_output_tokens=self.config.max_output_tokens,
            reasoning={"effort": self.config.reasoning_effort},
        )
        return parse_verification_output(response.output_text, request.extracted)


def parse_verification_output(text: str, extracted: Dict[str, Any]) -> VerificationResponse:
    """
    Turn verifier text into a verdict.

    Unusable output is a failed verification, not an error: the
    unverified extraction carries on and the reason lands in corrections.
    """
    content = clean_json(text)
    if not content:
        return VerificationResponse(
            passed=False,
            corrections=["Verifier returned empty content - returning unverified extraction"],
        )

    try:
        verified = json.loads(content)
    except json.JSONDecodeError:
        logger.warning("Verification output was not valid JSON")
        return VerificationResponse(
            passed=False,
            corrections=["Verifier output was not valid JSON - returning unverified extraction"],
        )
    if not isinstance(verified, dict):
        return VerificationResponse(
            passed=False,
            corrections=["Verifier output was not a JSON object - returning unverified extraction"],
        )

    corrections = [str(c) for c in verified.pop("corrections", None) or []]
    passed = verified.pop("verificationPassed", True)
    if not isinstance(passed, bool):
        logger.warning(f"Verification verdict {passed!r} is not a boolean; treating it as failed")
        passed = False
    if not verified.get("biomarkers"):
        verified["biomarkers"] = extracted.get("biomarkers", [])

    return VerificationResponse(passed=passed, corrections=corrections, corrected_data=verified)
