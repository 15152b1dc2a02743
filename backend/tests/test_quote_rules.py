"""
SEIDO - Éligibilité des prestataires et cycle des demandes de devis
"""

import pytest

from services.quotes import compute_eligibility, build_request_update, QuoteRequestError


class TestEligibility:
    def test_no_history_all_eligible(self):
        result = compute_eligibility(["p1", "p2"], [], [])
        assert result["eligible_ids"] == ["p1", "p2"]
        assert result["ineligible_ids"] == []

    def test_active_request_blocks(self):
        result = compute_eligibility(
            ["p1", "p2"],
            [{"provider_id": "p1", "status": "viewed"}],
            [],
        )
        assert result["eligible_ids"] == ["p2"]
        assert result["ineligible_reasons"]["p1"] == "a déjà consulté une demande de devis"

    def test_cancelled_request_does_not_block(self):
        result = compute_eligibility(["p1"], [{"provider_id": "p1", "status": "cancelled"}], [])
        assert result["eligible_ids"] == ["p1"]

    def test_pending_quote_blocks(self):
        result = compute_eligibility(["p1"], [], [{"provider_id": "p1", "status": "pending"}])
        assert result["ineligible_reasons"] == {"p1": "a déjà un devis en attente"}

    def test_rejected_quote_does_not_block(self):
        result = compute_eligibility(["p1"], [], [{"provider_id": "p1", "status": "rejected"}])
        assert result["eligible_ids"] == ["p1"]

    def test_request_reason_wins_over_quote_reason(self):
        result = compute_eligibility(
            ["p1"],
            [{"provider_id": "p1", "status": "responded"}],
            [{"provider_id": "p1", "status": "approved"}],
        )
        assert result["ineligible_reasons"]["p1"] == "a déjà répondu à une demande de devis"


class TestRequestUpdate:
    def test_cancel(self):
        assert build_request_update({"status": "sent"}, "cancel", {})["status"] == "cancelled"

    def test_cancel_twice(self):
        with pytest.raises(QuoteRequestError):
            build_request_update({"status": "cancelled"}, "cancel", {})

    def test_resend_only_from_cancelled_or_expired(self):
        update = build_request_update({"status": "expired"}, "resend", {})
        assert update["status"] == "sent"
        assert update["viewed_at"] is None
        with pytest.raises(QuoteRequestError):
            build_request_update({"status": "sent"}, "resend", {})

    def test_free_update_drops_none(self):
        update = build_request_update({"status": "sent"}, None, {"deadline": "2030-01-01", "individual_message": None})
        assert update["deadline"] == "2030-01-01"
        assert "individual_message" not in update

    def test_unknown_action(self):
        with pytest.raises(QuoteRequestError):
            build_request_update({"status": "sent"}, "explode", {})
