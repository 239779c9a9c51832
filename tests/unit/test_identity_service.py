"""
Identity Correlator tests.

Run with: pytest tests/unit/test_identity_service.py -v
"""

import pytest

from conftest import SHOP_DOMAIN


@pytest.fixture
def manager(catalog, store, clock):
    from services.session_manager import SessionManager

    return SessionManager(catalog, store, clock=clock)


@pytest.fixture
def correlator(catalog, store, clock):
    from services.discount_service import DiscountIssuer
    from services.identity_service import IdentityCorrelator

    issuer = DiscountIssuer(catalog, store, clock=clock)
    return IdentityCorrelator(catalog, store, issuer, clock=clock)


class TestCapture:
    def test_email_without_session(self, correlator, store):
        captured = correlator.capture("Visitor@Example.COM", SHOP_DOMAIN).unwrap()

        assert captured.discount_code is None
        [record] = store.emails
        assert record.id == captured.id
        assert record.email == "Visitor@example.com"
        assert record.session_id is None
        assert record.source == "popup"

    def test_links_and_completes_session(self, correlator, manager, store):
        token = manager.create(SHOP_DOMAIN, "popup-email").unwrap().session_token
        manager.advance(token, SHOP_DOMAIN, 1, "answer", {"value": "red"})

        captured = correlator.capture("a@b.co", SHOP_DOMAIN, session_token=token).unwrap()

        session = store.get_session(token)
        assert captured.discount_code is None
        assert session.is_completed
        assert session.email_provided is True
        assert session.current_step == session.total_steps
        [record] = store.emails
        assert record.session_id == session.id
        assert record.popup_id == "popup-email"
        assert record.quiz_responses == {"step_1": {"value": "red"}}

    def test_discount_popup_returns_session_code(self, correlator, manager, store):
        from services.discount_service import DiscountIssuer

        token = manager.create(SHOP_DOMAIN, "popup-quiz").unwrap().session_token
        captured = correlator.capture("a@b.co", SHOP_DOMAIN, session_token=token).unwrap()

        assert captured.discount_code
        assert store.get_session(token).discount_code == captured.discount_code
        assert store.emails[0].discount_used == captured.discount_code

        reissued = correlator.discounts.issue(token, SHOP_DOMAIN).unwrap()
        assert isinstance(correlator.discounts, DiscountIssuer)
        assert reissued.discount_code == captured.discount_code

    def test_duplicate_submissions_are_kept(self, correlator, manager, store):
        token = manager.create(SHOP_DOMAIN, "popup-quiz").unwrap().session_token
        first = correlator.capture("a@b.co", SHOP_DOMAIN, session_token=token).unwrap()
        second = correlator.capture("a@b.co", SHOP_DOMAIN, session_token=token).unwrap()

        assert first.id != second.id
        assert first.discount_code == second.discount_code
        assert len(store.emails) == 2

    def test_unresolvable_session_still_stores_email(self, correlator, store):
        captured = correlator.capture("a@b.co", SHOP_DOMAIN, session_token="0" * 64).unwrap()
        assert captured.discount_code is None
        assert store.emails[0].session_id is None

    def test_explicit_snapshot_wins(self, correlator, manager, store):
        token = manager.create(SHOP_DOMAIN, "popup-email").unwrap().session_token
        correlator.capture(
            "a@b.co", SHOP_DOMAIN, session_token=token, quiz_responses={"step_1": "client"}
        )
        assert store.emails[0].quiz_responses == {"step_1": "client"}

    @pytest.mark.parametrize("email", ["", "not-an-email", "a@", "@b.co"])
    def test_malformed_email_is_invalid_request(self, correlator, store, email):
        from utils.error_handling import ErrorKind

        assert correlator.capture(email, SHOP_DOMAIN).kind == ErrorKind.INVALID_REQUEST
        assert store.emails == []

    def test_unknown_shop_is_not_found(self, correlator):
        from utils.error_handling import ErrorKind

        assert correlator.capture("a@b.co", "nope.example").kind == ErrorKind.NOT_FOUND

    def test_disabled_engine_skips_session_link(self, catalog, store, manager):
        from services.discount_service import DiscountIssuer
        from services.identity_service import IdentityCorrelator

        token = manager.create(SHOP_DOMAIN, "popup-quiz").unwrap().session_token
        correlator = IdentityCorrelator(
            catalog,
            store,
            DiscountIssuer(catalog, store, multi_step_enabled=False),
            multi_step_enabled=False,
        )
        captured = correlator.capture("a@b.co", SHOP_DOMAIN, session_token=token).unwrap()

        assert captured.discount_code is None
        assert store.get_session(token).is_completed is False


class TestCaptureOrdering:
    def test_failed_email_write_leaves_session_open(self, correlator, manager, store, monkeypatch):
        from utils.error_handling import ErrorKind

        token = manager.create(SHOP_DOMAIN, "popup-email").unwrap().session_token

        def broken_add_email(record):
            raise RuntimeError("table unavailable")

        monkeypatch.setattr(store, "add_email", broken_add_email)
        result = correlator.capture("a@b.co", SHOP_DOMAIN, session_token=token)

        assert result.kind == ErrorKind.INTERNAL
        session = store.get_session(token)
        assert session.is_completed is False
        assert session.email_provided is False

    def test_email_tier_applies_while_capturing(self, correlator, catalog, manager, store):
        from conftest import quiz_discount_popup

        catalog.add_popup(
            quiz_discount_popup(
                popup_id="tiered",
                discount_type="LOGIC_BASED",
                discount_config={
                    "tiers": [{"condition": "email_provided", "value": True, "code": "INBOX"}],
                    "fallback": {"code": "BASIC"},
                },
            )
        )
        token = manager.create(SHOP_DOMAIN, "tiered").unwrap().session_token

        captured = correlator.capture("a@b.co", SHOP_DOMAIN, session_token=token).unwrap()

        assert captured.discount_code == "INBOX"
        assert store.get_session(token).email_provided is True
