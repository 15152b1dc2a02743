"""
SEIDO - Demandes de devis et devis (API)
"""

from tests.conftest import _db_op, create_user, login, auth_h, tenant_request, approved_intervention
import config


def _request_quotes(client, world, intervention_id, provider_ids, **extra):
    payload = {"interventionId": intervention_id, "providerIds": provider_ids}
    payload.update(extra)
    return client.post("/api/intervention-quote-request", headers=world["manager_h"], json=payload)


class TestQuoteRequests:
    def test_request_moves_to_demande_de_devis(self, client, world):
        intervention = approved_intervention(client, world)
        r = _request_quotes(client, world, intervention["id"], [world["provider"]["id"]],
                            deadline="2030-01-31", additionalNotes="Accès par la cour")
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["intervention"]["status"] == "demande_de_devis"
        assert len(body["quoteRequests"]) == 1
        assert body["ineligibleProviders"] == []
        assert "Paul Plombier" in body["message"]

        stored = _db_op(config.db.interventions.find_one({"id": intervention["id"]}, {"_id": 0}))
        assert stored["requires_quote"] is True
        assert stored["quote_deadline"] == "2030-01-31"

        assignment = _db_op(config.db.intervention_assignments.find_one(
            {"intervention_id": intervention["id"], "user_id": world["provider"]["id"]}, {"_id": 0}
        ))
        assert assignment["role"] == "prestataire"

        notif = _db_op(config.db.notifications.find_one({"user_id": world["provider"]["id"]}, {"_id": 0}))
        assert notif["type"] == "quote_request"

    def test_second_request_skips_ineligible_provider(self, client, world):
        intervention = approved_intervention(client, world)
        other = create_user("prestataire", world["team"]["id"], name="Eric Électricien")
        _request_quotes(client, world, intervention["id"], [world["provider"]["id"]])

        r = _request_quotes(client, world, intervention["id"], [world["provider"]["id"], other["id"]])
        assert r.status_code == 200
        body = r.json()
        assert [qr["provider_id"] for qr in body["quoteRequests"]] == [other["id"]]
        assert body["ineligibleProviders"][0]["id"] == world["provider"]["id"]
        assert body["ineligibleProviders"][0]["reason"] == "a déjà une demande de devis en attente"

    def test_all_ineligible(self, client, world):
        intervention = approved_intervention(client, world)
        _request_quotes(client, world, intervention["id"], [world["provider"]["id"]])
        r = _request_quotes(client, world, intervention["id"], [world["provider"]["id"]])
        assert r.status_code == 400
        assert "Aucun prestataire éligible" in r.json()["detail"]

    def test_non_provider_target(self, client, world):
        intervention = approved_intervention(client, world)
        r = _request_quotes(client, world, intervention["id"], [world["tenant"]["id"]])
        assert r.status_code == 400

    def test_unknown_provider(self, client, world):
        intervention = approved_intervention(client, world)
        r = _request_quotes(client, world, intervention["id"], ["ghost"])
        assert r.status_code == 404

    def test_wrong_status(self, client, world):
        intervention = tenant_request(client, world)
        r = _request_quotes(client, world, intervention["id"], [world["provider"]["id"]])
        assert r.status_code == 400

    def test_provider_viewing_marks_viewed(self, client, world):
        intervention = approved_intervention(client, world)
        qr = _request_quotes(client, world, intervention["id"], [world["provider"]["id"]]).json()["quoteRequests"][0]

        r = client.get(f"/api/quote-requests/{qr['id']}", headers=world["provider_h"])
        assert r.status_code == 200
        assert r.json()["quoteRequest"]["status"] == "viewed"
        assert r.json()["quoteRequest"]["intervention"]["id"] == intervention["id"]

        other = create_user("prestataire", world["team"]["id"])
        r = client.get(f"/api/quote-requests/{qr['id']}", headers=auth_h(login(client, other)))
        assert r.status_code == 403

    def test_list_for_provider(self, client, world):
        intervention = approved_intervention(client, world)
        _request_quotes(client, world, intervention["id"], [world["provider"]["id"]])
        r = client.get("/api/quote-requests", headers=world["provider_h"])
        assert r.json()["count"] == 1
        assert client.get("/api/quote-requests", headers=world["tenant_h"]).status_code == 403

    def test_cancel_then_resend(self, client, world):
        intervention = approved_intervention(client, world)
        qr = _request_quotes(client, world, intervention["id"], [world["provider"]["id"]]).json()["quoteRequests"][0]

        r = client.patch(f"/api/quote-requests/{qr['id']}", headers=world["manager_h"], json={"action": "resend"})
        assert r.status_code == 400

        r = client.patch(f"/api/quote-requests/{qr['id']}", headers=world["manager_h"], json={"action": "cancel"})
        assert r.json()["quoteRequest"]["status"] == "cancelled"

        r = client.patch(f"/api/quote-requests/{qr['id']}", headers=world["manager_h"], json={"action": "resend"})
        assert r.json()["quoteRequest"]["status"] == "sent"
        assert r.json()["message"] == "Demande de devis renvoyée"

    def test_provider_cannot_update(self, client, world):
        intervention = approved_intervention(client, world)
        qr = _request_quotes(client, world, intervention["id"], [world["provider"]["id"]]).json()["quoteRequests"][0]
        r = client.patch(f"/api/quote-requests/{qr['id']}", headers=world["provider_h"], json={"action": "cancel"})
        assert r.status_code == 403

    def test_delete_refused_once_responded(self, client, world):
        intervention = approved_intervention(client, world)
        qr = _request_quotes(client, world, intervention["id"], [world["provider"]["id"]]).json()["quoteRequests"][0]
        client.post(f"/api/interventions/{intervention['id']}/quotes", headers=world["provider_h"], json={
            "amount": 250, "description": "Remplacement du siphon",
        })
        r = client.delete(f"/api/quote-requests/{qr['id']}", headers=world["manager_h"])
        assert r.status_code == 400


class TestQuotes:
    def _two_quotes(self, client, world):
        intervention = approved_intervention(client, world)
        other = create_user("prestataire", world["team"]["id"], name="Eric Électricien")
        _request_quotes(client, world, intervention["id"], [world["provider"]["id"], other["id"]])

        first = client.post(f"/api/interventions/{intervention['id']}/quotes", headers=world["provider_h"], json={
            "amount": 250, "description": "Remplacement du siphon", "estimated_duration": 60,
        })
        assert first.status_code == 201, first.text
        other_h = auth_h(login(client, other))
        second = client.post(f"/api/interventions/{intervention['id']}/quotes", headers=other_h, json={
            "amount": 320, "description": "Remplacement complet",
        })
        assert second.status_code == 201
        return intervention, first.json()["quote"], second.json()["quote"]

    def test_submit_marks_request_responded(self, client, world):
        intervention, quote, _ = self._two_quotes(client, world)
        request = _db_op(config.db.quote_requests.find_one({"id": quote["quote_request_id"]}, {"_id": 0}))
        assert request["status"] == "responded"

        notif = _db_op(config.db.notifications.find_one(
            {"user_id": world["manager"]["id"], "type": "quote"}, {"_id": 0}
        ))
        assert notif["metadata"]["amount"] == 250

    def test_submit_without_request(self, client, world):
        intervention = approved_intervention(client, world)
        client.post(f"/api/interventions/{intervention['id']}/assign", headers=world["manager_h"], json={
            "user_id": world["provider"]["id"], "role": "prestataire",
        })
        r = client.post(f"/api/interventions/{intervention['id']}/quotes", headers=world["provider_h"], json={
            "amount": 100, "description": "Spontané",
        })
        assert r.status_code == 400

    def test_invalid_amount(self, client, world):
        intervention = approved_intervention(client, world)
        r = client.post(f"/api/interventions/{intervention['id']}/quotes", headers=world["provider_h"], json={
            "amount": 0, "description": "Gratuit",
        })
        assert r.status_code == 422

    def test_approve_rejects_others_and_moves_to_planification(self, client, world):
        intervention, quote, other_quote = self._two_quotes(client, world)
        r = client.post(f"/api/quotes/{quote['id']}/approve", headers=world["manager_h"], json={"notes": "OK"})
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["quote"]["status"] == "approved"
        assert body["intervention"]["status"] == "planification"
        assert body["intervention"]["estimated_cost"] == 250
        assert body["rejected_count"] == 1

        other = _db_op(config.db.intervention_quotes.find_one({"id": other_quote["id"]}, {"_id": 0}))
        assert other["status"] == "rejected"

        r = client.post(f"/api/quotes/{quote['id']}/approve", headers=world["manager_h"], json={})
        assert r.status_code == 400

    def test_cancel_closes_pending_quotes(self, client, world):
        intervention, quote, other_quote = self._two_quotes(client, world)
        r = client.post(f"/api/interventions/{intervention['id']}/cancel", headers=world["manager_h"],
                        json={"reason": "Le locataire a réparé lui-même"})
        assert r.status_code == 200, r.text

        statuses = {
            q["id"]: q["status"]
            for q in _db_op(config.db.intervention_quotes.find({"intervention_id": intervention["id"]}, {"_id": 0}).to_list(10))
        }
        assert statuses == {quote["id"]: "cancelled", other_quote["id"]: "cancelled"}

        r = client.post(f"/api/quotes/{quote['id']}/approve", headers=world["manager_h"], json={})
        assert r.status_code == 400

    def test_approve_refused_on_cancelled_intervention(self, client, world):
        intervention, quote, other_quote = self._two_quotes(client, world)
        client.post(f"/api/interventions/{intervention['id']}/cancel", headers=world["manager_h"],
                    json={"reason": "Doublon"})
        # Devis resté en attente malgré l'annulation
        _db_op(config.db.intervention_quotes.update_many(
            {"intervention_id": intervention["id"]}, {"$set": {"status": "pending"}}
        ))

        r = client.post(f"/api/quotes/{quote['id']}/approve", headers=world["manager_h"], json={})
        assert r.status_code == 400
        assert "annulee" in r.json()["detail"]

        stored = _db_op(config.db.interventions.find_one({"id": intervention["id"]}, {"_id": 0}))
        assert stored["status"] == "annulee"
        assert "estimated_cost" not in stored
        other = _db_op(config.db.intervention_quotes.find_one({"id": other_quote["id"]}, {"_id": 0}))
        assert other["status"] == "pending"

    def test_reject_requires_reason(self, client, world):
        _, quote, _ = self._two_quotes(client, world)
        r = client.post(f"/api/quotes/{quote['id']}/reject", headers=world["manager_h"], json={"reason": "   "})
        assert r.status_code == 422

        r = client.post(f"/api/quotes/{quote['id']}/reject", headers=world["manager_h"], json={"reason": "Trop cher"})
        assert r.json()["quote"]["status"] == "rejected"
        assert r.json()["quote"]["rejection_reason"] == "Trop cher"

    def test_quote_visibility(self, client, world):
        intervention, quote, _ = self._two_quotes(client, world)
        r = client.get(f"/api/interventions/{intervention['id']}/quotes", headers=world["provider_h"])
        assert [q["id"] for q in r.json()["quotes"]] == [quote["id"]]

        assert client.get(f"/api/interventions/{intervention['id']}/quotes", headers=world["manager_h"]).json()["count"] == 2
        assert client.get(f"/api/interventions/{intervention['id']}/quotes", headers=world["tenant_h"]).json()["count"] == 0

    def test_provider_cannot_decide(self, client, world):
        _, quote, _ = self._two_quotes(client, world)
        r = client.post(f"/api/quotes/{quote['id']}/approve", headers=world["provider_h"], json={})
        assert r.status_code == 403
