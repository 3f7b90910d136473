import pytest
from pydantic import ValidationError

from mindfusion.schemas import DialogueTurnRequest, FusionRequest, Modality


def test_scores_only_include_modalities_with_a_value():
    request = FusionRequest(
        user_id="u1",
        assessment_id="a1",
        text_analysis={"emotion_score": 6.5, "keywords": ["tired"]},
        image_analysis={"emotion_score": None},
        voice_analysis={"transcript": "no score here"},
        video_analysis={"emotion_score": 0},
    )

    scores = request.scores()

    assert scores == {Modality.TEXT: 6.5, Modality.VIDEO: 0.0}


def test_score_above_range_is_clamped():
    request = FusionRequest(user_id="u1", assessment_id="a1", text_analysis={"emotion_score": 14})

    assert request.scores()[Modality.TEXT] == 10.0


@pytest.mark.parametrize("bad", [-0.1, float("nan"), float("inf")])
def test_negative_and_non_finite_scores_rejected(bad):
    with pytest.raises(ValidationError):
        FusionRequest(user_id="u1", assessment_id="a1", voice_analysis={"emotion_score": bad})


def test_unknown_modality_key_rejected():
    with pytest.raises(ValidationError):
        FusionRequest.model_validate(
            {
                "user_id": "u1",
                "assessment_id": "a1",
                "heart_rate_analysis": {"emotion_score": 4},
            }
        )


def test_user_and_assessment_ids_required():
    with pytest.raises(ValidationError):
        FusionRequest.model_validate({"text_analysis": {"emotion_score": 4}})


def test_dialogue_request_defaults():
    request = DialogueTurnRequest(query="hello")

    assert request.conversation_history == []
    assert request.assessment_type == "PHQ-9"


def test_dialogue_request_rejects_unknown_role():
    with pytest.raises(ValidationError):
        DialogueTurnRequest(query="hi", conversation_history=[{"role": "tool", "content": "x"}])


@pytest.mark.parametrize("scale", ["PHQ-9,category.eq.x", "GAD-7}", "PHQ-9)", "PHQ 9", ""])
def test_dialogue_request_rejects_unsafe_assessment_type(scale):
    with pytest.raises(ValidationError):
        DialogueTurnRequest(query="hi", assessment_type=scale)


def test_dialogue_request_accepts_plain_scale_names():
    assert DialogueTurnRequest(query="hi", assessment_type="GAD_7").assessment_type == "GAD_7"
