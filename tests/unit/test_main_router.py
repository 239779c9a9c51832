"""
Router and handler tests through the single Lambda entrypoint.

Run with: pytest tests/unit/test_main_router.py -v
"""

import base64
import json

import pytest

from handlers import main

from conftest import OTHER_SHOP_DOMAIN, SHOP_DOMAIN


def _event(method, path, body=None, raw_body=None, base64_body=False):
    if raw_body is None and body is not None:
        raw_body = json.dumps(body)
    if base64_body and raw_body is not None:
        raw_body = base64.b64encode(raw_body.encode("utf-8")).decode("ascii")
    return {
        "requestContext": {"http": {"method": method, "path": path, "sourceIp": "203.0.113.9"}},
        "headers": {"user-agent": "pytest"},
        "body": raw_body,
        "isBase64Encoded": base64_body,
    }


def _call(method, path, body=None, **kwargs):
    resp = main.lambda_handler(_event(method, path, body, **kwargs), None)
    return resp["statusCode"], json.loads(resp["body"]) if resp["body"] else None


class TestRouting:
    def test_main_routes_health(self, monkeypatch):
        monkeypatch.setitem(main.ROUTES, "/health", ("GET", lambda e, c: {"status": "ok"}))
        resp = main.lambda_handler(_event("GET", "/health"), None)
        assert resp["status"] == "ok"

    def test_health_check_body(self):
        status, body = _call("GET", "/health")
        assert status == 200
        assert body["status"] == "ok"

    def test_main_unknown_route(self):
        status, body = _call("GET", "/unknown")
        assert status == 404
        assert body["message"] == "Route not found"

    @pytest.mark.parametrize("path", sorted(main.ROUTES))
    def test_preflight_has_no_body(self, path):
        resp = main.lambda_handler(_event("OPTIONS", path), None)
        assert resp["statusCode"] == 200
        assert resp["body"] == ""
        assert resp["headers"]["Access-Control-Allow-Origin"] == "*"

    def test_wrong_method_is_405(self):
        status, body = _call("GET", "/api/session/create")
        assert status == 405
        assert body["allowed"] == "POST"

    def test_trailing_slash_is_accepted(self, engine):
        status, _ = _call("POST", "/api/popup-check/", {"shopDomain": SHOP_DOMAIN})
        assert status == 200

    def test_unhandled_error_is_500(self, monkeypatch):
        def explode(event, context):
            raise RuntimeError("boom")

        monkeypatch.setitem(main.ROUTES, "/api/popup-check", ("POST", explode))
        status, body = _call("POST", "/api/popup-check", {"shopDomain": SHOP_DOMAIN})
        assert status == 500
        assert body["code"] == "internal"
        assert body["correlationId"]


class TestSessionEndpoints:
    def _create(self):
        status, body = _call(
            "POST",
            "/api/session/create",
            {"shopDomain": SHOP_DOMAIN, "popupId": "popup-quiz", "pageUrl": "https://x/"},
        )
        assert status == 200, body
        return body

    def test_create_response_shape(self, engine, store):
        body = self._create()
        assert body["success"] is True
        assert body["currentStep"] == 1
        assert body["totalSteps"] == 3
        assert body["popup"]["type"] == "QUIZ_DISCOUNT"
        assert body["popup"]["steps"][0]["stepType"] == "QUESTION"

        stored = store.get_session(body["sessionToken"])
        assert stored.ip_address == "203.0.113.9"
        assert stored.user_agent == "pytest"

    def test_full_quiz_discount_flow(self, engine):
        token = self._create()["sessionToken"]
        base = {"sessionToken": token, "shopDomain": SHOP_DOMAIN}

        status, body = _call(
            "POST", "/api/session/progress",
            {**base, "stepNumber": 1, "stepResponse": {"value": "gifts"}, "action": "answer"},
        )
        assert status == 200
        assert body["currentStep"] == 2
        assert body["nextStep"]["stepNumber"] == 2

        _call(
            "POST", "/api/session/progress",
            {**base, "stepNumber": 2, "stepResponse": {"value": "high"}, "action": "answer"},
        )
        status, body = _call(
            "POST", "/api/session/progress", {**base, "stepNumber": 3, "action": "complete"}
        )
        assert body["isCompleted"] is True
        assert body["currentStep"] == 3

        status, first = _call("POST", "/api/discount/generate", base)
        assert status == 200
        assert first["discountCode"]
        assert first["discountInfo"]["codeDisplay"] == first["discountCode"]
        _, second = _call("POST", "/api/discount/generate", base)
        assert second["discountCode"] == first["discountCode"]

        status, verified = _call(
            "POST", "/api/discount/validate",
            {"shopDomain": SHOP_DOMAIN, "discountCode": first["discountCode"]},
        )
        assert status == 200
        assert verified["valid"] is True

        status, state = _call("POST", "/api/session/validate", base)
        assert status == 200
        assert state["isCompleted"] is True
        assert set(state["responses"]) == {"step_1", "step_2"}

    def test_foreign_shop_create_is_404(self, engine):
        status, body = _call(
            "POST", "/api/session/create", {"shopDomain": SHOP_DOMAIN, "popupId": "popup-foreign"}
        )
        assert status == 404
        assert body["success"] is False
        assert body["code"] == "not_found"

    def test_validate_with_other_shop_is_404(self, engine):
        token = self._create()["sessionToken"]
        status, _ = _call(
            "POST", "/api/session/validate",
            {"sessionToken": token, "shopDomain": OTHER_SHOP_DOMAIN},
        )
        assert status == 404

    @pytest.mark.parametrize("body,fragment", [
        ({"shopDomain": SHOP_DOMAIN}, "popupId"),
        ({"popupId": "popup-quiz"}, "shopDomain"),
    ])
    def test_missing_fields_are_400(self, engine, body, fragment):
        status, resp = _call("POST", "/api/session/create", body)
        assert status == 400
        assert resp["code"] == "invalid_request"
        assert fragment in resp["error"]

    def test_malformed_json_is_400(self, engine):
        status, body = _call("POST", "/api/session/create", raw_body="{not json")
        assert status == 400
        assert body["error"] == "Request body must be valid JSON"

    def test_unknown_action_is_400(self, engine):
        token = self._create()["sessionToken"]
        status, _ = _call(
            "POST", "/api/session/progress",
            {"sessionToken": token, "shopDomain": SHOP_DOMAIN, "stepNumber": 1, "action": "skip"},
        )
        assert status == 400

    def test_base64_body_is_decoded(self, engine):
        status, body = _call(
            "POST", "/api/session/create",
            {"shopDomain": SHOP_DOMAIN, "popupId": "popup-quiz"},
            base64_body=True,
        )
        assert status == 200
        assert body["currentStep"] == 1

    def test_discount_for_email_popup_is_409(self, engine):
        _, created = _call(
            "POST", "/api/session/create", {"shopDomain": SHOP_DOMAIN, "popupId": "popup-email"}
        )
        status, body = _call(
            "POST", "/api/discount/generate",
            {"sessionToken": created["sessionToken"], "shopDomain": SHOP_DOMAIN},
        )
        assert status == 409
        assert body["code"] == "invalid_state"


class TestOtherEndpoints:
    def test_collect_email_with_session(self, engine, store):
        _, created = _call(
            "POST", "/api/session/create", {"shopDomain": SHOP_DOMAIN, "popupId": "popup-quiz"}
        )
        status, body = _call(
            "POST", "/api/collect-email",
            {
                "email": "fan@example.com",
                "shopDomain": SHOP_DOMAIN,
                "sessionToken": created["sessionToken"],
                "popupId": "popup-quiz",
            },
        )
        assert status == 200
        assert body["id"]
        assert body["discountCode"]
        assert store.emails[0].email == "fan@example.com"

    def test_collect_email_rejects_bad_address(self, engine):
        status, body = _call(
            "POST", "/api/collect-email", {"email": "nope", "shopDomain": SHOP_DOMAIN}
        )
        assert status == 400
        assert body["code"] == "invalid_request"

    def test_popup_check(self, engine):
        status, body = _call(
            "POST", "/api/popup-check", {"shopDomain": SHOP_DOMAIN, "pageType": "product"}
        )
        assert status == 200
        assert body["showPopup"] is True
        assert body["config"]["popupId"] == "popup-quiz"

    def test_analytics_event(self, engine, store):
        status, body = _call(
            "POST", "/api/analytics/events",
            {"eventType": "impression", "shopDomain": SHOP_DOMAIN, "popupId": "popup-quiz"},
        )
        assert status == 200
        assert body["eventId"] == store.events[0].id
        assert store.events[0].ip_address == "203.0.113.9"
