import pytest
from pydantic import ValidationError

from cropadvisor.schemas import (
    CropRecommendation,
    FarmDataUpdate,
    DiseaseAnalysis,
    InsertChatMessage,
    InsertCropRecommendation,
    InsertDiseaseDetection,
    InsertFarmData,
    InsertSatelliteData,
    RecommendationBatch,
)


def _suggestion(**overrides):
    data = {
        "cropName": "Rice",
        "matchScore": 85,
        "expectedYield": "5 t/ha",
        "profitMargin": "₹40,000/ha",
        "waterRequirement": "High",
        "sustainability": "Medium",
        "marketDemand": "High",
        "reasoning": "Plenty of irrigation",
    }
    data.update(overrides)
    return data


def test_insertable_accepts_camel_case_payload():
    rec = InsertCropRecommendation.model_validate({"farmId": "f1", **_suggestion()})
    assert rec.farm_id == "f1"
    assert rec.match_score == 85
    assert rec.model_dump(by_alias=True)["cropName"] == "Rice"


@pytest.mark.parametrize("field", ["id", "createdAt"])
def test_server_assigned_fields_cannot_be_supplied(field):
    payload = {"userId": "u1", "message": "hello", field: "caller-value"}
    with pytest.raises(ValidationError) as exc:
        InsertChatMessage.model_validate(payload)
    assert [err["loc"] for err in exc.value.errors()] == [(field,)]


def test_last_updated_cannot_be_supplied():
    with pytest.raises(ValidationError):
        InsertSatelliteData.model_validate({
            "farmId": "f1", "ndvi": 0.5, "fieldBoundary": 2, "vegetationHealth": "ok",
            "lastUpdated": "2024-01-01T00:00:00Z",
        })


@pytest.mark.parametrize("score", [-1, 101])
def test_match_score_out_of_range_rejected(score):
    with pytest.raises(ValidationError):
        InsertCropRecommendation.model_validate({"farmId": "f1", **_suggestion(matchScore=score)})


def test_confidence_out_of_range_rejected():
    with pytest.raises(ValidationError):
        InsertDiseaseDetection(farm_id="f1", image_path="x.jpg", confidence=1.5)
    with pytest.raises(ValidationError):
        DiseaseAnalysis.model_validate({
            "diseaseName": "Rust", "confidence": 1.5, "severity": "High",
            "treatment": "t", "preventionTips": "p",
        })


def test_validation_reports_every_bad_field():
    with pytest.raises(ValidationError) as exc:
        InsertFarmData.model_validate({"userId": "u1", "area": -3})
    bad = {err["loc"][0] for err in exc.value.errors()}
    assert bad == {"farmName", "area"}


def test_recommendation_batch_size_bounds():
    assert len(RecommendationBatch.model_validate({"recommendations": [_suggestion()] * 3}).recommendations) == 3
    with pytest.raises(ValidationError):
        RecommendationBatch.model_validate({"recommendations": []})
    with pytest.raises(ValidationError):
        RecommendationBatch.model_validate({"recommendations": [_suggestion()] * 6})


def test_entity_serializes_with_camel_case_keys():
    rec = CropRecommendation.model_validate({
        "id": "r1", "farmId": "f1", "createdAt": "2024-05-01T10:00:00Z", **_suggestion(),
    })
    dumped = rec.model_dump(by_alias=True)
    assert {"id", "farmId", "createdAt", "matchScore"} <= set(dumped)


@pytest.mark.parametrize("field", ["userId", "farmName", "area"])
def test_farm_update_rejects_null_for_required_fields(field):
    with pytest.raises(ValidationError) as exc:
        FarmDataUpdate.model_validate({field: None})
    assert [err["loc"] for err in exc.value.errors()] == [(field,)]


def test_farm_update_allows_omitting_fields_and_clearing_soil():
    update = FarmDataUpdate.model_validate({"soilData": None})
    assert update.model_fields_set == {"soil_data"}
    assert update.farm_name is None
