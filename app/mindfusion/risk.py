"""Risk fusion, symptom decomposition, guidance tiers and alert policy."""

from __future__ import annotations

import logging
from datetime import datetime

from mindfusion.config import FusionPolicy
from mindfusion.schemas import AlertRecord, FusionResult, Modality, ScoreSet, SymptomDimension
from mindfusion.utils import round1, round_half_up, utc_now

logger = logging.getLogger(__name__)

# (modality A, weight A, modality B, weight B); each pair of weights sums to 1.
SYMPTOM_BLENDS: dict[SymptomDimension, tuple[Modality, float, Modality, float]] = {
    SymptomDimension.LOW_MOOD: (Modality.TEXT, 0.5, Modality.VIDEO, 0.5),
    SymptomDimension.LOSS_OF_INTEREST: (Modality.TEXT, 0.6, Modality.VOICE, 0.4),
    SymptomDimension.SLEEP_DISTURBANCE: (Modality.TEXT, 0.7, Modality.IMAGE, 0.3),
    SymptomDimension.LOW_ENERGY: (Modality.VOICE, 0.5, Modality.VIDEO, 0.5),
    SymptomDimension.LOW_SELF_WORTH: (Modality.TEXT, 0.8, Modality.IMAGE, 0.2),
    SymptomDimension.POOR_CONCENTRATION: (Modality.TEXT, 0.5, Modality.VOICE, 0.5),
}

RECOMMENDATION_TIERS: dict[str, list[str]] = {
    "urgent": [
        "Seek help from a mental health professional as soon as possible.",
        "Discuss medication options alongside regular counseling.",
        "Set up a 24-hour emergency contact channel with someone you trust.",
    ],
    "counseling": [
        "Schedule regular sessions with a counselor.",
        "Try cognitive behavioral therapy (CBT) techniques.",
        "Keep a regular daily routine with moderate exercise.",
    ],
    "self_care": [
        "Practice self-regulation and relaxation exercises.",
        "Stay socially active and lean on your support network.",
        "Use meditation and mindfulness practice.",
    ],
    "maintenance": [
        "Keep up healthy daily habits.",
        "Check in on your mood regularly.",
        "Make time for hobbies and activities you enjoy.",
    ],
}

ALERT_TYPE = "multimodal_assessment_high_risk"
ALERT_DATA_SOURCE = "multimodal_emotion_fusion"


def active_modalities(scores: ScoreSet) -> list[Modality]:
    return [m for m in Modality if scores.get(m, 0.0) > 0]


def rebalance_weights(
    scores: ScoreSet,
    base_weights: dict[Modality, float] | None = None,
) -> dict[Modality, float]:
    """Renormalize base weights over the modalities that fired.

    Relative ratios between active modalities are preserved; inactive
    modalities get exactly 0. With no active modality every weight is 0.
    """
    base = base_weights or FusionPolicy().base_weights
    active = active_modalities(scores)
    if len(active) == len(Modality):
        return dict(base)

    total = sum(base[m] for m in active)
    weights = {m: 0.0 for m in Modality}
    if total <= 0:
        return weights
    for m in active:
        weights[m] = base[m] / total
    return weights


def decompose_symptoms(scores: ScoreSet) -> dict[SymptomDimension, float]:
    # Missing modalities count as 0 here, unlike in the composite.
    symptoms: dict[SymptomDimension, float] = {}
    for dimension, (mod_a, w_a, mod_b, w_b) in SYMPTOM_BLENDS.items():
        blended = w_a * scores.get(mod_a, 0.0) + w_b * scores.get(mod_b, 0.0)
        symptoms[dimension] = round1(blended)
    return symptoms


def composite_score(
    scores: ScoreSet,
    weights: dict[Modality, float],
    *,
    max_score: float = 10.0,
) -> float:
    total = sum(weights.get(m, 0.0) * scores.get(m, 0.0) for m in Modality)
    return min(max(total, 0.0), max_score)


def fuse_scores(scores: ScoreSet, policy: FusionPolicy | None = None) -> FusionResult:
    policy = policy or FusionPolicy()
    weights = rebalance_weights(scores, policy.base_weights)
    fused = composite_score(scores, weights, max_score=policy.max_score)
    result = FusionResult(
        composite_score=fused,
        risk_level=round_half_up(fused),
        symptoms=decompose_symptoms(scores),
        modalities_used=len(active_modalities(scores)),
        weights_applied=weights,
    )
    logger.info(
        "fusion_computed: composite=%.2f risk_level=%d modalities_used=%d",
        result.composite_score,
        result.risk_level,
        result.modalities_used,
    )
    return result


def recommendation_tier(risk_level: float, policy: FusionPolicy | None = None) -> str:
    policy = policy or FusionPolicy()
    if risk_level >= policy.urgent_tier_floor:
        return "urgent"
    if risk_level >= policy.counseling_tier_floor:
        return "counseling"
    if risk_level >= policy.self_care_tier_floor:
        return "self_care"
    return "maintenance"


def select_recommendations(risk_level: float, policy: FusionPolicy | None = None) -> list[str]:
    return list(RECOMMENDATION_TIERS[recommendation_tier(risk_level, policy)])


def alert_key(assessment_id: str, risk_level: int, policy: FusionPolicy | None = None) -> str:
    """One alert per assessment and recommendation tier crossed."""
    return f"{assessment_id}:{recommendation_tier(risk_level, policy)}"


def build_alert(
    *,
    risk_level: int,
    subject_id: str,
    session_id: str,
    composite_score: float,
    policy: FusionPolicy | None = None,
    created_at: datetime | None = None,
) -> AlertRecord | None:
    policy = policy or FusionPolicy()
    if risk_level < policy.alert_risk_level:
        return None

    return AlertRecord(
        subject_id=subject_id,
        risk_level=risk_level,
        description=(
            f"Composite emotion score {composite_score:.2f}/10; "
            "immediate attention recommended."
        ),
        source_session_id=session_id,
        created_at=created_at or utc_now(),
        alert_type=ALERT_TYPE,
        data_source=ALERT_DATA_SOURCE,
        alert_key=alert_key(session_id, risk_level, policy),
    )


def wellbeing_score(fused_score: float) -> int:
    """Inverse 0-100 score stored on the assessment record."""
    return round_half_up((10.0 - fused_score) * 10.0)
