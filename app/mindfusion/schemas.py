"""Pydantic schemas for MindFusion endpoints and internal contracts."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_SCORE = 10.0


class Modality(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"
    VIDEO = "video"


class SymptomDimension(str, Enum):
    LOW_MOOD = "low_mood"
    LOSS_OF_INTEREST = "loss_of_interest"
    SLEEP_DISTURBANCE = "sleep_disturbance"
    LOW_ENERGY = "low_energy"
    LOW_SELF_WORTH = "low_self_worth"
    POOR_CONCENTRATION = "poor_concentration"


class Stage(str, Enum):
    OPENING = "opening"
    EXPLORATION = "exploration"
    DEEP_DIVE = "deep_dive"
    SUMMARY = "summary"


# Only modalities that produced a signal are present.
ScoreSet = dict[Modality, float]


class ModalityAnalysis(BaseModel):
    """Output of one external analyzer; only `emotion_score` is read."""

    model_config = ConfigDict(extra="allow")

    emotion_score: float | None = None

    @field_validator("emotion_score")
    @classmethod
    def _check_score(cls, value: float | None) -> float | None:
        if value is None:
            return None
        if not math.isfinite(value):
            raise ValueError("emotion_score must be a finite number")
        if value < 0:
            raise ValueError("emotion_score must be >= 0")
        return min(value, MAX_SCORE)


class FusionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text_analysis: ModalityAnalysis | None = None
    image_analysis: ModalityAnalysis | None = None
    voice_analysis: ModalityAnalysis | None = None
    video_analysis: ModalityAnalysis | None = None
    user_id: str = Field(min_length=1)
    assessment_id: str = Field(min_length=1)

    def analysis_for(self, modality: Modality) -> ModalityAnalysis | None:
        return getattr(self, f"{modality.value}_analysis")

    def scores(self) -> ScoreSet:
        out: ScoreSet = {}
        for modality in Modality:
            analysis = self.analysis_for(modality)
            if analysis is not None and analysis.emotion_score is not None:
                out[modality] = analysis.emotion_score
        return out


class FusionResult(BaseModel):
    composite_score: float = Field(ge=0.0, le=MAX_SCORE)
    risk_level: int = Field(ge=0, le=int(MAX_SCORE))
    symptoms: dict[SymptomDimension, float]
    modalities_used: int = Field(ge=0, le=len(Modality))
    weights_applied: dict[Modality, float]


class AlertRecord(BaseModel):
    subject_id: str
    risk_level: int
    description: str
    source_session_id: str
    created_at: datetime
    alert_type: str
    data_source: str
    alert_key: str

    def to_row(self) -> dict[str, Any]:
        return {
            "patient_id": self.subject_id,
            "alert_type": self.alert_type,
            "risk_level": self.risk_level,
            "description": self.description,
            "data_source": self.data_source,
            "source_id": self.source_session_id,
            "alert_key": self.alert_key,
            "is_handled": False,
            "created_at": self.created_at.isoformat(),
        }


class ConversationState(BaseModel):
    message_count: int = Field(ge=0)
    stage: Stage
    directive: str


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class DialogueTurnRequest(BaseModel):
    query: str = Field(min_length=1)
    conversation_history: list[ChatMessage] = Field(default_factory=list)
    # Interpolated into the knowledge-base filter, so kept to a plain scale name.
    assessment_type: str = Field(default="PHQ-9", pattern=r"^[A-Za-z0-9_-]{1,32}$")


class FusionResponse(BaseModel):
    success: bool = True
    fused_score: float
    risk_level: int
    symptoms: dict[str, float]
    recommendations: list[str]
    detailed_report: str
    modalities_used: int
    weights_applied: dict[str, float]
    alert_emitted: bool = False
    alert_stored: bool = False
