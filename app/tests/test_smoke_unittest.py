import asyncio
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from mindfusion.config import Settings
from mindfusion.dialogue import classify_stage
from mindfusion.narrative import NarrativeGenerator
from mindfusion.orchestration import SessionReportComposer
from mindfusion.risk import fuse_scores, recommendation_tier
from mindfusion.schemas import FusionRequest, Modality, Stage
from mindfusion.storage import RecordStore


class CannedNarrative(NarrativeGenerator):
    async def complete(self, messages):
        self.ensure_configured()
        return {"choices": [{"message": {"role": "assistant", "content": "Mood is steady overall."}}]}


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        narrative_api_key="smoke-key",
        narrative_url="http://narrative.test/v2/chat/completions",
        local_storage_dir=str(tmp_path),
        supabase_url=None,
        supabase_service_role_key=None,
        s3_bucket=None,
    )


class MindFusionSmokeTests(unittest.TestCase):
    def test_full_signal_risk_level(self):
        result = fuse_scores({m: 9.0 for m in Modality})

        self.assertEqual(result.risk_level, 9)
        self.assertEqual(recommendation_tier(result.risk_level), "urgent")

    def test_stage_progression(self):
        self.assertEqual(classify_stage(0).stage, Stage.OPENING)
        self.assertEqual(classify_stage(12).stage, Stage.SUMMARY)

    def test_fusion_round_runs_and_persists(self):
        with TemporaryDirectory() as tmp:
            settings = _settings(Path(tmp))
            store = RecordStore(settings)
            composer = SessionReportComposer(
                narrative=CannedNarrative(settings),
                store=store,
                policy=settings.policy,
            )
            request = FusionRequest(
                user_id="smoke-user",
                assessment_id="smoke-assessment",
                text_analysis={"emotion_score": 3},
                video_analysis={"emotion_score": 4},
            )

            emitted: list[str] = []

            async def emit(event_name, payload):
                emitted.append(event_name)

            response = asyncio.run(composer.run_fusion(request, emit))

            self.assertEqual(response.risk_level, 3)
            self.assertEqual(response.detailed_report, "Mood is steady overall.")
            self.assertIn("fusion.final", emitted)
            self.assertIsNotNone(store.read_assessment("smoke-assessment"))
            self.assertEqual(store.list_alerts(), [])


if __name__ == "__main__":
    unittest.main()
