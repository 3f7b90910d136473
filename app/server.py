"""ASGI entrypoint for the MindFusion risk-fusion and screening-dialogue API."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from mindfusion.config import get_settings
from mindfusion.narrative import NarrativeError, NarrativeGenerator
from mindfusion.orchestration import SessionReportComposer
from mindfusion.schemas import DialogueTurnRequest, FusionRequest
from mindfusion.storage import RecordStore
from mindfusion.utils import utc_now

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

store = RecordStore(settings)
narrative = NarrativeGenerator(settings)
composer = SessionReportComposer(narrative=narrative, store=store, policy=settings.policy)

app = FastAPI(title="MindFusion API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


async def emit(event_name: str, event_payload: dict[str, Any]) -> None:
    await store.append_event(event_name, event_payload)


def _validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    return exc.errors(include_url=False, include_context=False, include_input=False)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.get("/health")
async def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "service": settings.app_name,
        "timestamp": utc_now().isoformat(),
        "narrative_configured": narrative.configured,
        "narrative_model": narrative.model_name,
        "record_store_remote": store.remote_configured,
        "report_archive_configured": store.archive_configured,
        "alert_deduplicate": settings.alert_deduplicate,
        "policy": composer.policy.as_dict(),
    }


@app.post("/v1/fusion")
async def fusion(payload: dict[str, Any] = Body(...)):
    try:
        request = FusionRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc

    try:
        response = await composer.run_fusion(request, emit)
    except NarrativeError as exc:
        logger.error("fusion_failed: id=%s %s", request.assessment_id, exc)
        return _error(500, str(exc))
    except Exception as exc:
        logger.exception("fusion_failed: id=%s", request.assessment_id)
        return _error(500, str(exc) or "internal server error")
    return response.model_dump(mode="json")


@app.post("/v1/dialogue/turn")
async def dialogue_turn(payload: dict[str, Any] = Body(...)):
    try:
        request = DialogueTurnRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc

    try:
        return await composer.run_dialogue_turn(request, emit)
    except NarrativeError as exc:
        logger.error("dialogue_turn_failed: %s", exc)
        return _error(500, str(exc))
    except Exception as exc:
        logger.exception("dialogue_turn_failed")
        return _error(500, str(exc) or "internal server error")


@app.get("/v1/assessments/{assessment_id}")
async def assessment_result(assessment_id: str):
    payload = store.read_assessment(assessment_id)
    if payload is None:
        raise HTTPException(status_code=404, detail="assessment_id not found")
    return payload
