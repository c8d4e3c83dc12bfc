"""Tests for the vision-model client, reply extraction and payload hardening."""
import json

import httpx
import pytest

from soilsync.config import Settings
from soilsync.errors import AnalysisProviderError, InvalidAnalysisPayload, UnparsableResponse
from soilsync.services.analysis import (
    SoilAnalysisClient,
    build_prompt,
    build_record,
    extract_json_object,
    normalize_payload,
    ph_category_for,
)

from .helpers import TINY_JPEG_URI, gemini_body, mock_http


class TestExtractJsonObject:

    def test_strategies_agree(self):
        obj = {"soilType": "Loam", "soilHealth": {"score": 61}}
        raw = json.dumps(obj)
        replies = [
            f"Here you go:\n```json\n{raw}\n```\nGood luck!",
            f"```\n{raw}\n```",
            f"Analysis follows {raw} -- end of analysis",
        ]
        assert [extract_json_object(r) for r in replies] == [obj, obj, obj]

    def test_json_fence_preferred_over_bare_fence(self):
        reply = '```\n{"a": 1}\n```\n```json\n{"b": 2}\n```'
        assert extract_json_object(reply) == {"b": 2}

    def test_falls_through_broken_fence(self):
        reply = '```json\n{not json}\n```'
        with pytest.raises(UnparsableResponse):
            extract_json_object(reply)

    @pytest.mark.parametrize("reply", ["", "no json here", "[1, 2, 3]", "```\n[1]\n```"])
    def test_unparsable(self, reply):
        with pytest.raises(UnparsableResponse):
            extract_json_object(reply)


class TestNormalizePayload:

    def test_unknown_enums_get_defaults(self, model_payload):
        model_payload["confidence"] = "very sure"
        model_payload["moisture"]["level"] = "soggy"
        model_payload["transport"]["nearestMarketType"] = "Galactic"
        model_payload["topCrops"][0]["marketPrice"]["demand"] = "huge"
        data = normalize_payload(model_payload)
        assert data["confidence"] == "Low"
        assert data["moisture"]["level"] == "Moist"
        assert data["transport"]["nearestMarketType"] == "Local"
        assert data["topCrops"][0]["marketPrice"]["demand"] == "Medium"

    def test_enum_case_is_fixed(self, model_payload):
        model_payload["soilHealth"]["status"] = "excellent"
        model_payload["pH"]["category"] = "slightly alkaline"
        data = normalize_payload(model_payload)
        assert data["soilHealth"]["status"] == "Excellent"
        assert data["pH"]["category"] == "Slightly Alkaline"

    def test_scores_are_clamped_integers(self, model_payload):
        model_payload["soilHealth"]["score"] = 140
        model_payload["nutrients"]["nitrogen"]["score"] = -3
        model_payload["nutrients"]["phosphorus"]["score"] = "41.6"
        data = normalize_payload(model_payload)
        assert data["soilHealth"]["score"] == 100
        assert data["nutrients"]["nitrogen"]["score"] == 0
        assert data["nutrients"]["phosphorus"]["score"] == 42

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan"), "1e999", "NaN"])
    def test_non_finite_scores_fall_back_to_zero(self, model_payload, value):
        model_payload["soilHealth"]["score"] = value
        model_payload["topCrops"][0]["suitabilityScore"] = value
        model_payload["topCrops"][1]["shelfLife"]["days"] = value
        data = normalize_payload(model_payload)
        assert data["soilHealth"]["score"] == 0
        assert data["soilHealth"]["status"] == "Good"
        assert all(crop["shelfLife"]["days"] >= 0 for crop in data["topCrops"])
        assert data["topCrops"][-1]["suitabilityScore"] == 0

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), "-Infinity"])
    def test_non_finite_ph_is_not_categorised(self, model_payload, value):
        model_payload["pH"]["estimate"] = value
        del model_payload["pH"]["category"]
        data = normalize_payload(model_payload)
        assert data["pH"]["estimate"] is None
        assert data["pH"]["category"] == "Neutral"

    def test_status_derived_from_score_when_missing(self, model_payload):
        model_payload["soilHealth"] = {"score": 35, "description": "Tired soil"}
        assert normalize_payload(model_payload)["soilHealth"]["status"] == "Poor"

    def test_crops_resorted(self, model_payload):
        model_payload["topCrops"].reverse()
        data = normalize_payload(model_payload)
        scores = [c["suitabilityScore"] for c in data["topCrops"]]
        assert scores == sorted(scores, reverse=True)
        assert data["topCrops"][0]["name"] == "Maize"

    def test_caller_fields_are_dropped(self, model_payload):
        model_payload.update(id="model-id", farmName="Model Farm")
        data = normalize_payload(model_payload)
        assert "id" not in data
        assert "farmName" not in data

    def test_malformed_optional_nutrient_removed(self, model_payload):
        model_payload["nutrients"]["calcium"] = "plenty"
        assert "calcium" not in normalize_payload(model_payload)["nutrients"]

    @pytest.mark.parametrize("estimate,category", [(4.0, "Very Acidic"), (6.2, "Slightly Acidic"), (7.0, "Neutral"), (9.1, "Very Alkaline")])
    def test_ph_category_bands(self, estimate, category):
        assert ph_category_for(estimate) == category


class TestBuildRecord:

    def test_fresh_identity_and_caller_metadata(self, model_payload):
        model_payload["id"] = "from-the-model"
        first = build_record(model_payload, "Kofi's Farm", "Kumasi")
        second = build_record(model_payload, "Kofi's Farm", "Kumasi")
        assert first.id != second.id
        assert first.id != "from-the-model"
        assert first.farmName == "Kofi's Farm"
        assert first.location == "Kumasi"
        assert first.timestamp

    def test_missing_section_is_invalid(self, model_payload):
        del model_payload["transport"]
        with pytest.raises(InvalidAnalysisPayload):
            build_record(model_payload)

    def test_no_crops_is_invalid(self, model_payload):
        model_payload["topCrops"] = []
        with pytest.raises(InvalidAnalysisPayload):
            build_record(model_payload)

    def test_invalid_payload_is_unparsable(self):
        assert issubclass(InvalidAnalysisPayload, UnparsableResponse)

    def test_nan_ph_is_invalid(self, model_payload):
        model_payload["pH"]["estimate"] = float("nan")
        with pytest.raises(InvalidAnalysisPayload):
            build_record(model_payload)

    def test_infinite_organic_matter_is_invalid(self, model_payload):
        model_payload["nutrients"]["organicMatter"]["percentage"] = float("inf")
        with pytest.raises(InvalidAnalysisPayload):
            build_record(model_payload)


def test_prompt_mentions_caller_context():
    prompt = build_prompt("Green Acres", "Tamale")
    assert "Include exactly 5 crop recommendations" in prompt
    assert prompt.endswith("Farm name: Green Acres\nLocation: Tamale")
    assert "Farm name" not in build_prompt()


class TestSoilAnalysisClient:

    def test_sends_image_and_parses_reply(self, model_payload):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=gemini_body(json.dumps(model_payload)))

        settings = Settings(api_keys=["abc"], max_output_tokens=2048)
        client = SoilAnalysisClient(settings, http_client=mock_http(handler))
        record = client.analyze("data:image/png;base64,iVBORw0KGgo=", "Farm A", None)

        assert record.soilType == "Sandy Loam"
        assert record.farmName == "Farm A"
        assert record.location is None
        assert "key=abc" in seen["url"]
        assert "gemini-2.5-flash:generateContent" in seen["url"]
        inline = seen["body"]["contents"][0]["parts"][0]["inline_data"]
        assert inline == {"mime_type": "image/png", "data": "iVBORw0KGgo="}
        assert seen["body"]["generationConfig"]["maxOutputTokens"] == 2048

    def test_rotates_keys_on_rate_limit(self, model_payload):
        keys = []

        def handler(request):
            key = request.url.params["key"]
            keys.append(key)
            if key == "first":
                return httpx.Response(429, json={"error": "quota"})
            return httpx.Response(200, json=gemini_body(json.dumps(model_payload)))

        client = SoilAnalysisClient(Settings(api_keys=["first", "second"]), http_client=mock_http(handler))
        record = client.analyze(TINY_JPEG_URI)
        assert keys == ["first", "second"]
        assert len(record.topCrops) == 5

    def test_server_error_raises_provider_error(self):
        client = SoilAnalysisClient(
            Settings(api_keys=["k"]),
            http_client=mock_http(lambda request: httpx.Response(500, text="boom")),
        )
        with pytest.raises(AnalysisProviderError):
            client.analyze(TINY_JPEG_URI)

    def test_network_error_raises_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        client = SoilAnalysisClient(Settings(api_keys=["k"]), http_client=mock_http(handler))
        with pytest.raises(AnalysisProviderError):
            client.analyze(TINY_JPEG_URI)

    def test_empty_candidates(self):
        client = SoilAnalysisClient(
            Settings(api_keys=["k"]),
            http_client=mock_http(lambda request: httpx.Response(200, json={"candidates": []})),
        )
        with pytest.raises(AnalysisProviderError):
            client.analyze(TINY_JPEG_URI)

    def test_prose_reply_is_unparsable(self):
        client = SoilAnalysisClient(
            Settings(api_keys=["k"]),
            http_client=mock_http(lambda request: httpx.Response(200, json=gemini_body("I cannot see any soil."))),
        )
        with pytest.raises(UnparsableResponse):
            client.analyze(TINY_JPEG_URI)

    def test_without_keys_returns_demo_without_calling(self):
        def handler(request):
            raise AssertionError("provider must not be called")

        client = SoilAnalysisClient(Settings(api_keys=[]), http_client=mock_http(handler))
        record = client.analyze(TINY_JPEG_URI, "Farm B", "Accra")
        assert record.id.startswith("demo-")
        assert record.farmName == "Farm B"
        assert record.location == "Accra"

    def test_reply_with_infinity_literal_still_builds(self, model_payload):
        model_payload["soilHealth"]["score"] = float("inf")
        text = "```json\n" + json.dumps(model_payload) + "\n```"
        assert "Infinity" in text
        client = SoilAnalysisClient(
            Settings(api_keys=["k"]),
            http_client=mock_http(lambda request: httpx.Response(200, json=gemini_body(text))),
        )
        assert client.analyze(TINY_JPEG_URI).soilHealth.score == 0

    def test_reply_with_nan_ph_is_invalid(self, model_payload):
        model_payload["pH"]["estimate"] = float("nan")
        client = SoilAnalysisClient(
            Settings(api_keys=["k"]),
            http_client=mock_http(lambda request: httpx.Response(200, json=gemini_body(json.dumps(model_payload)))),
        )
        with pytest.raises(InvalidAnalysisPayload):
            client.analyze(TINY_JPEG_URI)
