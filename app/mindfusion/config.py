"""Runtime settings and decision policy for MindFusion services."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from mindfusion.schemas import MAX_SCORE, Modality

BASE_WEIGHTS: dict[Modality, float] = {
    Modality.TEXT: 0.40,
    Modality.IMAGE: 0.20,
    Modality.VOICE: 0.20,
    Modality.VIDEO: 0.20,
}
ALERT_RISK_LEVEL = 7
URGENT_TIER_FLOOR = 8
COUNSELING_TIER_FLOOR = 5
SELF_CARE_TIER_FLOOR = 3
DEEP_DIVE_STAGE_FROM = 6
SUMMARY_STAGE_FROM = 12


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, *, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


@dataclass(frozen=True)
class FusionPolicy:
    """Tunable thresholds and weights for fusion, tiering, alerting and staging."""

    base_weights: dict[Modality, float] = field(default_factory=lambda: dict(BASE_WEIGHTS))
    max_score: float = MAX_SCORE
    alert_risk_level: int = ALERT_RISK_LEVEL
    urgent_tier_floor: int = URGENT_TIER_FLOOR
    counseling_tier_floor: int = COUNSELING_TIER_FLOOR
    self_care_tier_floor: int = SELF_CARE_TIER_FLOOR
    deep_dive_stage_from: int = DEEP_DIVE_STAGE_FROM
    summary_stage_from: int = SUMMARY_STAGE_FROM

    def __post_init__(self) -> None:
        missing = [m.value for m in Modality if m not in self.base_weights]
        if missing:
            raise ValueError(f"base_weights missing modalities: {', '.join(missing)}")
        total = sum(self.base_weights.values())
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"base_weights must sum to 1.0, got {total:.6f}")
        if not self.self_care_tier_floor <= self.counseling_tier_floor <= self.urgent_tier_floor:
            raise ValueError("recommendation tier floors must be ascending")
        if not 0 < self.deep_dive_stage_from <= self.summary_stage_from:
            raise ValueError("stage boundaries must be positive and ascending")

    def as_dict(self) -> dict[str, object]:
        return {
            "base_weights": {m.value: w for m, w in self.base_weights.items()},
            "max_score": self.max_score,
            "alert_risk_level": self.alert_risk_level,
            "recommendation_tier_floors": [
                self.urgent_tier_floor,
                self.counseling_tier_floor,
                self.self_care_tier_floor,
            ],
            "stage_boundaries": [self.deep_dive_stage_from, self.summary_stage_from],
        }


def _policy_from_env() -> FusionPolicy:
    return FusionPolicy(
        alert_risk_level=_as_int(os.getenv("MINDFUSION_ALERT_RISK_LEVEL"), default=ALERT_RISK_LEVEL),
    )


@dataclass(frozen=True)
class Settings:
    app_name: str = field(default_factory=lambda: os.getenv("MINDFUSION_APP_NAME", "mindfusion-api"))

    # Narrative generator (OpenAI-style chat completions behind a gateway).
    narrative_api_key: str | None = field(
        default_factory=lambda: _first_env(
            "INTEGRATIONS_API_KEY",
            "MINDFUSION_NARRATIVE_API_KEY",
        )
    )
    narrative_url: str | None = field(default_factory=lambda: os.getenv("MINDFUSION_NARRATIVE_URL"))
    narrative_model: str | None = field(default_factory=lambda: os.getenv("MINDFUSION_NARRATIVE_MODEL"))
    narrative_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("MINDFUSION_NARRATIVE_TIMEOUT_SEC", "60"))
    )

    # Persistence
    supabase_url: str | None = field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    supabase_service_role_key: str | None = field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    )
    store_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("MINDFUSION_STORE_TIMEOUT_SEC", "10"))
    )
    s3_bucket: str | None = field(default_factory=lambda: os.getenv("MINDFUSION_S3_BUCKET"))
    s3_region: str = field(default_factory=lambda: os.getenv("MINDFUSION_S3_REGION", "us-east-1"))
    s3_prefix: str = field(default_factory=lambda: os.getenv("MINDFUSION_S3_PREFIX", "mindfusion"))
    local_storage_dir: str = field(
        default_factory=lambda: os.getenv("MINDFUSION_LOCAL_STORAGE_DIR", ".mindfusion_local_store")
    )
    alert_deduplicate: bool = field(
        default_factory=lambda: _as_bool(os.getenv("MINDFUSION_ALERT_DEDUPLICATE"), default=True)
    )

    log_level: str = field(default_factory=lambda: os.getenv("MINDFUSION_LOG_LEVEL", "INFO"))

    policy: FusionPolicy = field(default_factory=_policy_from_env)


def get_settings() -> Settings:
    return Settings()
