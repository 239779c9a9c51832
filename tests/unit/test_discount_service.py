"""
Discount Issuer tests.

Run with: pytest tests/unit/test_discount_service.py -v
"""

import random
import re

import pytest

from conftest import SHOP_DOMAIN, quiz_discount_popup


@pytest.fixture
def manager(catalog, store, clock):
    from services.session_manager import SessionManager

    return SessionManager(catalog, store, clock=clock)


@pytest.fixture
def issuer(catalog, store, clock):
    from services.discount_service import DiscountIssuer

    return DiscountIssuer(catalog, store, clock=clock, rng=random.Random(7))


def _session_for(manager, popup_id="popup-quiz"):
    return manager.create(SHOP_DOMAIN, popup_id).unwrap().session_token


class TestGenerateCode:
    def test_code_shape(self):
        from services.discount_service import generate_discount_code

        assert re.fullmatch(r"QUIZSAVE[0-9A-F]{6}", generate_discount_code({}))
        vip = generate_discount_code({"step_1": "a", "step_2": "b", "step_3": "c"})
        assert re.fullmatch(r"QUIZVIP[0-9A-F]{6}", vip)


class TestIssue:
    def test_issue_is_idempotent(self, manager, issuer, store):
        token = _session_for(manager)
        first = issuer.issue(token, SHOP_DOMAIN).unwrap()
        second = issuer.issue(token, SHOP_DOMAIN).unwrap()

        assert first.discount_code == second.discount_code
        assert store.get_session(token).discount_code == first.discount_code

    def test_discount_info_uses_reveal_step_content(self, manager, issuer):
        token = _session_for(manager)
        issued = issuer.issue(token, SHOP_DOMAIN).unwrap()
        info = issued.to_wire()["discountInfo"]

        assert info["headline"] == "You unlocked 15% off"
        assert info["validityText"] == "Valid today only"
        assert info["description"] == "Thanks for completing the quiz"
        assert info["codeDisplay"] == issued.discount_code

    def test_non_discount_popup_is_invalid_state(self, manager, issuer):
        from utils.error_handling import ErrorKind

        token = _session_for(manager, "popup-email")
        assert issuer.issue(token, SHOP_DOMAIN).kind == ErrorKind.INVALID_STATE

    def test_unknown_session_is_not_found(self, issuer):
        from utils.error_handling import ErrorKind

        assert issuer.issue("f" * 64, SHOP_DOMAIN).kind == ErrorKind.NOT_FOUND

    def test_disabled_engine_refuses(self, catalog, store, manager):
        from services.discount_service import DiscountIssuer
        from utils.error_handling import ErrorKind

        token = _session_for(manager)
        issuer = DiscountIssuer(catalog, store, multi_step_enabled=False)
        assert issuer.issue(token, SHOP_DOMAIN).kind == ErrorKind.INVALID_STATE

    def test_lost_race_reuses_winning_code(self, manager, issuer, store, monkeypatch):
        """If another writer stored a code first, that code is returned."""
        token = _session_for(manager)
        original_save = store.save_session
        calls = {"n": 0}

        def racing_save(session, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                winner = store.get_session(token).model_copy(update={"discount_code": "WINNER1"})
                original_save(winner, expected_version)
            return original_save(session, expected_version)

        monkeypatch.setattr(store, "save_session", racing_save)
        issued = issuer.issue(token, SHOP_DOMAIN).unwrap()
        assert issued.discount_code == "WINNER1"


class TestStrategies:
    def _issuer_with(self, catalog, store, clock, **popup_overrides):
        from services.discount_service import DiscountIssuer

        catalog.add_popup(quiz_discount_popup(popup_id="strategy", **popup_overrides))
        return DiscountIssuer(catalog, store, clock=clock, rng=random.Random(1))

    def test_fixed_code(self, catalog, store, clock, manager):
        issuer = self._issuer_with(
            catalog, store, clock, discount_type="FIXED", discount_config={"code": "WELCOME10"}
        )
        token = _session_for(manager, "strategy")
        assert issuer.issue(token, SHOP_DOMAIN).unwrap().discount_code == "WELCOME10"

    def test_randomized_picks_a_configured_code(self, catalog, store, clock, manager):
        issuer = self._issuer_with(
            catalog,
            store,
            clock,
            discount_type="RANDOMIZED",
            discount_config={
                "options": [
                    {"weight": 50, "code": "TEN"},
                    {"weight": 50, "code": "TWENTY"},
                    {"weight": 0, "code": "NEVER"},
                ]
            },
        )
        codes = {
            issuer.issue(_session_for(manager, "strategy"), SHOP_DOMAIN).unwrap().discount_code
            for _ in range(20)
        }
        assert codes <= {"TEN", "TWENTY"}
        assert codes

    def test_logic_based_tiers(self, catalog, store, clock, manager):
        issuer = self._issuer_with(
            catalog,
            store,
            clock,
            discount_type="LOGIC_BASED",
            discount_config={
                "tiers": [
                    {"condition": "specific_answer", "value": "high", "code": "BIGSPENDER"},
                    {"condition": "steps_completed", "value": 2, "code": "LOYAL"},
                ],
                "fallback": {"code": "BASIC"},
            },
        )

        token = _session_for(manager, "strategy")
        manager.advance(token, SHOP_DOMAIN, 1, "answer", {"value": "gifts"})
        manager.advance(token, SHOP_DOMAIN, 2, "answer", {"value": "high"})
        assert issuer.issue(token, SHOP_DOMAIN).unwrap().discount_code == "BIGSPENDER"

        token = _session_for(manager, "strategy")
        manager.advance(token, SHOP_DOMAIN, 1, "answer", {"value": "gifts"})
        manager.advance(token, SHOP_DOMAIN, 2, "answer", {"value": "low"})
        assert issuer.issue(token, SHOP_DOMAIN).unwrap().discount_code == "LOYAL"

        token = _session_for(manager, "strategy")
        assert issuer.issue(token, SHOP_DOMAIN).unwrap().discount_code == "BASIC"


class TestVerify:
    def test_issued_code_verifies(self, manager, issuer):
        token = _session_for(manager)
        code = issuer.issue(token, SHOP_DOMAIN).unwrap().discount_code

        verification = issuer.verify(code, SHOP_DOMAIN).unwrap()
        assert verification.valid is True
        assert verification.session_info["sessionToken"] == token
        assert verification.session_info["emailCollected"] is False

    def test_unknown_code_is_not_found(self, issuer):
        from utils.error_handling import ErrorKind

        assert issuer.verify("NOPE", SHOP_DOMAIN).kind == ErrorKind.NOT_FOUND

    def test_expired_code_is_not_found(self, manager, issuer, clock):
        from utils.error_handling import ErrorKind

        token = _session_for(manager)
        code = issuer.issue(token, SHOP_DOMAIN).unwrap().discount_code
        clock.advance(days=2)
        assert issuer.verify(code, SHOP_DOMAIN).kind == ErrorKind.NOT_FOUND

    def test_shared_code_finds_live_holder_past_expired_one(self, catalog, store, clock, manager):
        from services.discount_service import DiscountIssuer

        catalog.add_popup(
            quiz_discount_popup(
                popup_id="fixed", discount_type="FIXED", discount_config={"code": "WELCOME10"}
            )
        )
        issuer = DiscountIssuer(catalog, store, clock=clock)
        stale = _session_for(manager, "fixed")
        issuer.issue(stale, SHOP_DOMAIN).unwrap()
        clock.advance(days=2)
        live = _session_for(manager, "fixed")
        assert issuer.issue(live, SHOP_DOMAIN).unwrap().discount_code == "WELCOME10"

        verification = issuer.verify("WELCOME10", SHOP_DOMAIN).unwrap()
        assert verification.session_info["sessionToken"] == live
