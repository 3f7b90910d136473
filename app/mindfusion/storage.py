"""Assessment, alert and event persistence for MindFusion.

Primary target is Supabase (tables `assessments`, `risk_alerts`, `knowledge_base`).
A local filesystem copy is always kept for dev/test and for serving
`GET /v1/assessments/{assessment_id}` without external dependencies. Final fusion
payloads are optionally archived to S3.

Every write here is best-effort: failures are logged and reported through the
return value, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable
from urllib.parse import quote

from mindfusion.config import Settings
from mindfusion.schemas import AlertRecord
from mindfusion.utils import utc_now

logger = logging.getLogger(__name__)

KNOWLEDGE_LIMIT = 5


class RecordStore:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._root = Path(settings.local_storage_dir)
        for sub in ("assessments", "alerts", "knowledge", "artifacts", "logs"):
            (self._root / sub).mkdir(parents=True, exist_ok=True)
        self._alerts_file = self._root / "alerts" / "alerts.jsonl"
        self._knowledge_file = self._root / "knowledge" / "knowledge_base.json"
        self._events_file = self._root / "logs" / "events.jsonl"

        self._supabase = None
        if settings.supabase_url and settings.supabase_service_role_key:
            try:
                from supabase import create_client

                self._supabase = create_client(settings.supabase_url, settings.supabase_service_role_key)
            except Exception as exc:
                logger.warning("supabase_client_unavailable: %s: %s", type(exc).__name__, exc)
                self._supabase = None

        self._s3 = None
        if settings.s3_bucket:
            try:
                import boto3

                self._s3 = boto3.client("s3", region_name=settings.s3_region)
            except Exception as exc:
                logger.warning("s3_client_unavailable: %s: %s", type(exc).__name__, exc)
                self._s3 = None

    @property
    def remote_configured(self) -> bool:
        return self._supabase is not None

    @property
    def archive_configured(self) -> bool:
        return self._s3 is not None

    async def _run_blocking(self, fn: Callable[[], Any]) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self._settings.store_timeout_sec)

    @staticmethod
    def _safe_id(assessment_id: str) -> str:
        # Reversible, so distinct ids never share a file; "." is escaped to rule out "..".
        return quote(assessment_id, safe="").replace(".", "%2E")

    def _assessment_path(self, assessment_id: str) -> Path:
        return self._root / "assessments" / f"{self._safe_id(assessment_id)}.json"

    def _write_local_assessment(self, assessment_id: str, payload: dict[str, Any]) -> None:
        path = self._assessment_path(assessment_id)
        current = self.read_assessment(assessment_id) or {"id": assessment_id}
        current.update(payload)
        current["updated_at"] = utc_now().isoformat()
        path.write_text(json.dumps(current, ensure_ascii=False, indent=2, default=str), encoding="utf-8")

    def read_assessment(self, assessment_id: str) -> dict[str, Any] | None:
        path = self._assessment_path(assessment_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            logger.error("assessment_local_read_failed: id=%s %s", assessment_id, exc)
            return None
        return data if isinstance(data, dict) else None

    async def update_assessment(self, assessment_id: str, payload: dict[str, Any]) -> bool:
        try:
            self._write_local_assessment(assessment_id, payload)
        except (OSError, ValueError) as exc:
            logger.error("assessment_local_write_failed: id=%s %s", assessment_id, exc)
            if self._supabase is None:
                return False

        if self._supabase is None:
            return True

        def _update() -> Any:
            return self._supabase.table("assessments").update(payload).eq("id", assessment_id).execute()

        try:
            await self._run_blocking(_update)
            return True
        except Exception as exc:
            logger.error(
                "assessment_update_failed: id=%s %s: %s", assessment_id, type(exc).__name__, exc
            )
            return False

    def list_alerts(self, assessment_id: str | None = None) -> list[dict[str, Any]]:
        if not self._alerts_file.exists():
            return []
        rows = []
        with self._alerts_file.open("r", encoding="utf-8", errors="replace") as fp:
            for line in fp:
                line = line.strip()
                if not line:
                    continue
                try:
                    row = json.loads(line)
                except ValueError:
                    logger.warning("alert_line_skipped: file=%s line=%r", self._alerts_file, line[:80])
                    continue
                if not isinstance(row, dict):
                    continue
                if assessment_id is None or row.get("source_id") == assessment_id:
                    rows.append(row)
        return rows

    @staticmethod
    def _append_line(path: Path, text: str) -> None:
        with path.open("ab+") as fp:
            # Start on a fresh line if a previous append was cut short.
            fp.seek(0, os.SEEK_END)
            prefix = b""
            if fp.tell() > 0:
                fp.seek(-1, os.SEEK_END)
                if fp.read(1) != b"\n":
                    prefix = b"\n"
            fp.write(prefix + text.encode("utf-8") + b"\n")

    def _alert_exists(self, key: str) -> bool:
        return any(row.get("alert_key") == key for row in self.list_alerts())

    async def insert_alert(self, alert: AlertRecord) -> bool:
        """Persist one alert; returns False when skipped as duplicate or on failure."""
        row = alert.to_row()
        dedupe = self._settings.alert_deduplicate
        try:
            if dedupe and self._alert_exists(alert.alert_key):
                logger.info("alert_duplicate_skipped: key=%s", alert.alert_key)
                return False
            self._append_line(self._alerts_file, json.dumps(row, ensure_ascii=False, default=str))
        except (OSError, ValueError) as exc:
            logger.error("alert_local_write_failed: key=%s %s", alert.alert_key, exc)
            if self._supabase is None:
                return False

        if self._supabase is None:
            return True

        def _insert() -> Any:
            table = self._supabase.table("risk_alerts")
            if dedupe:
                return table.upsert(row, on_conflict="alert_key", ignore_duplicates=True).execute()
            return table.insert(row).execute()

        try:
            await self._run_blocking(_insert)
            return True
        except Exception as exc:
            logger.error("alert_insert_failed: key=%s %s: %s", alert.alert_key, type(exc).__name__, exc)
            return False

    def _local_knowledge(self, assessment_type: str, limit: int) -> list[dict[str, Any]]:
        if not self._knowledge_file.exists():
            return []
        items = json.loads(self._knowledge_file.read_text(encoding="utf-8"))
        if not isinstance(items, list):
            return []
        matched = [
            item
            for item in items
            if isinstance(item, dict)
            and item.get("is_active", True)
            and (item.get("category") == "assessment" or assessment_type in (item.get("tags") or []))
        ]
        return matched[:limit]

    async def search_knowledge(self, assessment_type: str, *, limit: int = KNOWLEDGE_LIMIT) -> list[dict[str, Any]]:
        if self._supabase is None:
            try:
                return self._local_knowledge(assessment_type, limit)
            except (OSError, ValueError) as exc:
                logger.error("knowledge_local_read_failed: %s: %s", type(exc).__name__, exc)
                return []

        def _select() -> Any:
            return (
                self._supabase.table("knowledge_base")
                .select("*")
                .eq("is_active", True)
                .or_(f"category.eq.assessment,tags.cs.{{{assessment_type}}}")
                .limit(limit)
                .execute()
            )

        try:
            response = await self._run_blocking(_select)
            return list(response.data or [])
        except Exception as exc:
            logger.error("knowledge_search_failed: %s: %s", type(exc).__name__, exc)
            return []

    def _s3_key(self, assessment_id: str, name: str) -> str:
        prefix = self._settings.s3_prefix.strip("/")
        return f"{prefix}/{assessment_id}/{name}" if prefix else f"{assessment_id}/{name}"

    async def archive_report(self, assessment_id: str, payload: dict[str, Any]) -> str | None:
        raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str).encode("utf-8")
        name = "fusion_report.json"

        if self._s3 is not None and self._settings.s3_bucket:
            key = self._s3_key(assessment_id, name)

            def _put() -> Any:
                return self._s3.put_object(
                    Bucket=self._settings.s3_bucket,
                    Key=key,
                    Body=raw,
                    ContentType="application/json",
                )

            try:
                await self._run_blocking(_put)
                return f"s3://{self._settings.s3_bucket}/{key}"
            except Exception as exc:
                logger.error("report_archive_failed: id=%s %s: %s", assessment_id, type(exc).__name__, exc)
                return None

        local_path = self._root / "artifacts" / self._safe_id(assessment_id) / name
        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            local_path.write_bytes(raw)
        except OSError as exc:
            logger.error("report_archive_failed: id=%s %s", assessment_id, exc)
            return None
        return str(local_path)

    async def append_event(self, event_name: str, payload: dict[str, Any]) -> None:
        envelope = {
            "timestamp": utc_now().isoformat(),
            "event": event_name,
            "payload": payload,
        }
        try:
            self._append_line(self._events_file, json.dumps(envelope, ensure_ascii=False, default=str))
        except OSError as exc:
            logger.warning("event_append_failed: event=%s %s", event_name, exc)
