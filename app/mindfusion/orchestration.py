"""End-to-end orchestration for fusion rounds and dialogue turns."""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Awaitable, Callable

from mindfusion.config import FusionPolicy
from mindfusion.dialogue import build_system_prompt, build_turn_messages, classify_stage
from mindfusion.narrative import REPORT_PLACEHOLDER, NarrativeConfigError, NarrativeGenerator
from mindfusion.risk import build_alert, fuse_scores, select_recommendations, wellbeing_score
from mindfusion.schemas import (
    DialogueTurnRequest,
    FusionRequest,
    FusionResponse,
    FusionResult,
    Modality,
    ScoreSet,
)
from mindfusion.storage import RecordStore
from mindfusion.utils import elapsed_ms, now_ms, utc_now

logger = logging.getLogger(__name__)

EmitFn = Callable[[str, dict[str, Any]], Awaitable[None]]


async def _discard(event_name: str, payload: dict[str, Any]) -> None:
    _ = (event_name, payload)


def build_assessment_update(
    scores: ScoreSet,
    result: FusionResult,
    recommendations: list[str],
    report: str,
    *,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    stamp = (timestamp or utc_now()).isoformat()
    return {
        "ai_analysis": {
            "multimodal_scores": {m.value: scores.get(m) for m in Modality},
            "fused_score": result.composite_score,
            "symptoms": {d.value: v for d, v in result.symptoms.items()},
            "modalities_used": result.modalities_used,
            "timestamp": stamp,
        },
        "risk_level": result.risk_level,
        "score": wellbeing_score(result.composite_score),
        "report": {
            "content": report,
            "recommendations": recommendations,
            "generated_at": stamp,
        },
    }


class SessionReportComposer:
    def __init__(
        self,
        narrative: NarrativeGenerator,
        store: RecordStore,
        *,
        policy: FusionPolicy | None = None,
    ):
        self._narrative = narrative
        self._store = store
        self._policy = policy or FusionPolicy()
        self._session_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def policy(self) -> FusionPolicy:
        return self._policy

    def _session_lock(self, assessment_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(assessment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[assessment_id] = lock
        return lock

    async def _compose_report(
        self,
        result: FusionResult,
        scores: ScoreSet,
        recommendations: list[str],
        assessment_id: str,
        emit: EmitFn,
    ) -> str:
        t0 = now_ms()
        try:
            report = await self._narrative.compose_report(result, scores, recommendations)
        except NarrativeConfigError:
            raise
        except Exception as exc:
            logger.warning("narrative_fallback: id=%s %s: %s", assessment_id, type(exc).__name__, exc)
            await emit(
                "narrative.fallback",
                {"assessment_id": assessment_id, "error": f"{type(exc).__name__}: {exc}"},
            )
            return REPORT_PLACEHOLDER

        await emit(
            "narrative.completed",
            {
                "assessment_id": assessment_id,
                "model": self._narrative.model_name,
                "latency_ms": elapsed_ms(t0),
            },
        )
        return report

    async def run_fusion(self, request: FusionRequest, emit: EmitFn | None = None) -> FusionResponse:
        emit = emit or _discard
        self._narrative.ensure_configured()

        started = now_ms()
        scores = request.scores()
        assessment_id = request.assessment_id
        await emit(
            "fusion.accepted",
            {
                "assessment_id": assessment_id,
                "user_id": request.user_id,
                "modalities_present": [m.value for m in scores],
            },
        )

        async with self._session_lock(assessment_id):
            result = fuse_scores(scores, self._policy)
            recommendations = select_recommendations(result.risk_level, self._policy)
            await emit(
                "fusion.computed",
                {
                    "assessment_id": assessment_id,
                    "fused_score": result.composite_score,
                    "risk_level": result.risk_level,
                    "modalities_used": result.modalities_used,
                },
            )

            report = await self._compose_report(result, scores, recommendations, assessment_id, emit)

            update = build_assessment_update(scores, result, recommendations, report)
            persisted = await self._store.update_assessment(assessment_id, update)
            await emit("assessment.persisted", {"assessment_id": assessment_id, "persisted": persisted})

            alert = build_alert(
                risk_level=result.risk_level,
                subject_id=request.user_id,
                session_id=assessment_id,
                composite_score=result.composite_score,
                policy=self._policy,
            )
            stored = False
            if alert is not None:
                logger.warning(
                    "risk_alert: id=%s user=%s risk_level=%d",
                    assessment_id,
                    request.user_id,
                    alert.risk_level,
                )
                stored = await self._store.insert_alert(alert)
                await emit(
                    "alert.emitted",
                    {
                        "assessment_id": assessment_id,
                        "risk_level": alert.risk_level,
                        "alert_key": alert.alert_key,
                        "stored": stored,
                    },
                )

        response = FusionResponse(
            fused_score=result.composite_score,
            risk_level=result.risk_level,
            symptoms={d.value: v for d, v in result.symptoms.items()},
            recommendations=recommendations,
            detailed_report=report,
            modalities_used=result.modalities_used,
            weights_applied={m.value: w for m, w in result.weights_applied.items()},
            alert_emitted=alert is not None,
            alert_stored=stored,
        )
        payload = response.model_dump(mode="json")
        await self._store.archive_report(assessment_id, payload)
        await emit(
            "fusion.final",
            {"assessment_id": assessment_id, "latency_ms": elapsed_ms(started), **payload},
        )
        return response

    async def run_dialogue_turn(
        self,
        request: DialogueTurnRequest,
        emit: EmitFn | None = None,
    ) -> dict[str, Any]:
        emit = emit or _discard
        self._narrative.ensure_configured()

        knowledge = await self._store.search_knowledge(request.assessment_type)
        state = classify_stage(len(request.conversation_history), self._policy)
        await emit(
            "dialogue.stage",
            {
                "assessment_type": request.assessment_type,
                "message_count": state.message_count,
                "stage": state.stage.value,
                "knowledge_used": len(knowledge),
            },
        )

        system_prompt = build_system_prompt(
            state,
            assessment_type=request.assessment_type,
            knowledge_items=knowledge,
        )
        messages = build_turn_messages(system_prompt, request.conversation_history, request.query)
        data = await self._narrative.complete(messages)

        reply = {
            **data,
            "knowledge_used": len(knowledge),
            "assessment_type": request.assessment_type,
            "stage": state.stage.value,
            "directive": state.directive,
        }
        await emit(
            "dialogue.final",
            {"stage": state.stage.value, "reply_chars": len(self._narrative.extract_text(data))},
        )
        return reply
