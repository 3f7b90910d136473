"""Narrative generator client (OpenAI-style chat completions behind a gateway)."""

from __future__ import annotations

import re
from typing import Any

import httpx

from mindfusion.config import Settings
from mindfusion.schemas import FusionResult, Modality, ScoreSet

REPORT_SYSTEM_PROMPT = "You are a professional psychological assessment specialist."
REPORT_PLACEHOLDER = "Report generation pending."


class NarrativeError(RuntimeError):
    pass


class NarrativeConfigError(NarrativeError):
    """Credentials or endpoint for the narrative generator are missing."""


class NarrativeGenerationError(NarrativeError):
    """The narrative generator call failed or returned no text."""


def build_report_prompt(
    result: FusionResult,
    scores: ScoreSet,
    recommendations: list[str],
) -> str:
    modality_lines = "\n".join(
        f"- {m.value} analysis: "
        + (f"{scores[m]:g}/10" if m in scores else "not provided")
        for m in Modality
    )
    symptom_lines = "\n".join(
        f"- {dimension.value.replace('_', ' ')}: {value:g}/10"
        for dimension, value in result.symptoms.items()
    )
    recommendation_lines = "\n".join(f"- {line}" for line in recommendations)
    return (
        "Based on the following multimodal analysis results, write a detailed assessment report.\n\n"
        f"[Composite emotion score] {result.composite_score:.2f}/10\n"
        f"[Risk level] {result.risk_level}/10\n"
        f"[Per-modality scores]\n{modality_lines}\n\n"
        f"[Symptom dimensions]\n{symptom_lines}\n\n"
        f"[Recommended directions]\n{recommendation_lines}\n\n"
        "The report should cover:\n"
        "1. Overall emotional state (about 100 words)\n"
        "2. Main symptom patterns (about 100 words)\n"
        "3. Possible contributing factors (about 80 words)\n"
        "4. Concrete suggestions for improvement (about 120 words)\n\n"
        "Keep it objective and professional while offering care and hope."
    )


class NarrativeGenerator:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    @property
    def model_name(self) -> str:
        return self._settings.narrative_model or "gateway-default"

    @property
    def configured(self) -> bool:
        return bool(self._settings.narrative_api_key and self._settings.narrative_url)

    def ensure_configured(self) -> None:
        if not self._settings.narrative_api_key:
            raise NarrativeConfigError("INTEGRATIONS_API_KEY is not configured")
        if not self._settings.narrative_url:
            raise NarrativeConfigError("MINDFUSION_NARRATIVE_URL is not configured")

    @staticmethod
    def _normalize_text(text: str) -> str:
        return re.sub(r"[ \t]+", " ", text).strip()

    @staticmethod
    def extract_text(data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        first = choices[0] or {}
        for key in ("message", "delta"):
            content = (first.get(key) or {}).get("content")
            if content:
                return str(content)
        return ""

    async def complete(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        self.ensure_configured()

        body: dict[str, Any] = {"messages": messages}
        if self._settings.narrative_model:
            body["model"] = self._settings.narrative_model
        headers = {"X-Gateway-Authorization": f"Bearer {self._settings.narrative_api_key}"}

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.narrative_timeout_sec,
                transport=self._transport,
            ) as client:
                response = await client.post(self._settings.narrative_url, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise NarrativeGenerationError(
                f"narrative call failed: {status} - {exc.response.text[:300]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise NarrativeGenerationError(f"narrative call failed: {type(exc).__name__}: {exc}") from exc

        if not isinstance(data, dict):
            raise NarrativeGenerationError("narrative reply was not a JSON object")
        return data

    async def compose_report(
        self,
        result: FusionResult,
        scores: ScoreSet,
        recommendations: list[str],
    ) -> str:
        prompt = build_report_prompt(result, scores, recommendations)
        data = await self.complete(
            [
                {"role": "system", "content": REPORT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ]
        )
        text = self._normalize_text(self.extract_text(data))
        if not text:
            raise NarrativeGenerationError("narrative reply contained no text")
        return text
