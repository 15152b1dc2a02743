"""
SEIDO - Interventions: création, lecture, cycle de vie complet (API)
"""

import pytest

from tests.conftest import (
    _db_op, create_user, login, auth_h, future_day, tenant_request, approved_intervention,
)
import config


def _manager_payload(world, **overrides):
    payload = {
        "title": "Remplacement chaudière",
        "description": "La chaudière ne démarre plus",
        "type": "heating",
        "urgency": "urgent",
        "selectedLotId": world["lot"]["id"],
        "selectedManagerIds": [world["manager"]["id"]],
        "selectedProviderIds": [],
        "schedulingType": "none",
    }
    payload.update(overrides)
    return payload


def _assignments(intervention_id):
    return _db_op(config.db.intervention_assignments.find(
        {"intervention_id": intervention_id}, {"_id": 0}
    ).to_list(100))


# ==================== DEMANDE LOCATAIRE ====================

class TestTenantRequest:
    def test_creates_demande_with_assignments_and_threads(self, client, world):
        intervention = tenant_request(client, world)
        assert intervention["status"] == "demande"
        assert intervention["type"] == "plomberie"
        assert intervention["urgency"] == "haute"
        assert intervention["team_id"] == world["team"]["id"]
        assert intervention["reference"].startswith("INT-")

        roles = {(a["user_id"], a["role"]) for a in _assignments(intervention["id"])}
        assert (world["tenant"]["id"], "locataire") in roles
        assert (world["manager"]["id"], "gestionnaire") in roles

        threads = _db_op(config.db.conversation_threads.find(
            {"intervention_id": intervention["id"]}, {"_id": 0}
        ).to_list(10))
        assert {t["thread_type"] for t in threads} == {"group", "tenant_to_managers"}

        notifs = _db_op(config.db.notifications.find({"user_id": world["manager"]["id"]}, {"_id": 0}).to_list(10))
        assert len(notifs) == 1
        assert notifs[0]["priority"] == "high"

    def test_tenant_of_another_lot_is_refused(self, client, world):
        stranger = create_user("locataire", world["team"]["id"])
        r = client.post("/api/create-intervention", headers=auth_h(login(client, stranger)), json={
            "lot_id": world["lot"]["id"], "title": "Test", "description": "Test",
        })
        assert r.status_code == 403

    def test_unknown_lot(self, client, world):
        r = client.post("/api/create-intervention", headers=world["tenant_h"], json={
            "lot_id": "missing", "title": "Test", "description": "Test",
        })
        assert r.status_code == 404

    def test_provider_cannot_request(self, client, world):
        r = client.post("/api/create-intervention", headers=world["provider_h"], json={
            "lot_id": world["lot"]["id"], "title": "Test", "description": "Test",
        })
        assert r.status_code == 403


# ==================== CRÉATION GESTIONNAIRE ====================

class TestManagerCreation:
    def test_missing_fields(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"],
                        json=_manager_payload(world, title=""))
        assert r.status_code == 400

    def test_missing_location(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"],
                        json=_manager_payload(world, selectedLotId="undefined"))
        assert r.status_code == 400

    def test_requires_a_manager(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"],
                        json=_manager_payload(world, selectedManagerIds=[]))
        assert r.status_code == 400
        assert "gestionnaire" in r.json()["detail"]

    def test_provider_is_refused(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["provider_h"], json=_manager_payload(world))
        assert r.status_code == 403

    def test_unknown_lot(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"],
                        json=_manager_payload(world, selectedLotId="nope"))
        assert r.status_code == 404

    def test_tenant_auto_detected(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(world))
        assert r.status_code == 201, r.text
        created = r.json()["intervention"]
        assert created["tenant_id"] == world["tenant"]["id"]
        assert created["status"] == "planification"

        roles = {(a["user_id"], a["role"]) for a in _assignments(created["id"])}
        assert (world["tenant"]["id"], "locataire") in roles

        tenant_notifs = _db_op(config.db.notifications.count_documents({"user_id": world["tenant"]["id"]}))
        manager_notifs = _db_op(config.db.notifications.count_documents({"user_id": world["manager"]["id"]}))
        assert tenant_notifs == 1
        assert manager_notifs == 0

    def test_quote_expected_creates_requests(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, selectedProviderIds=[world["provider"]["id"]], expectsQuote=True,
            messageType="individual", individualMessages={world["provider"]["id"]: "Merci de passer rapidement"},
        ))
        assert r.status_code == 201, r.text
        created = r.json()["intervention"]
        assert created["status"] == "demande_de_devis"

        requests = _db_op(config.db.quote_requests.find({"intervention_id": created["id"]}, {"_id": 0}).to_list(10))
        assert len(requests) == 1
        assert requests[0]["provider_id"] == world["provider"]["id"]
        assert requests[0]["status"] == "sent"

        threads = _db_op(config.db.conversation_threads.find(
            {"intervention_id": created["id"]}, {"_id": 0}
        ).to_list(10))
        assert "provider_to_managers" in {t["thread_type"] for t in threads}

    def test_building_level_with_fixed_date_is_scheduled(self, client, world):
        day = future_day(3)
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, selectedLotId=None, selectedBuildingId=world["building"]["id"],
            schedulingType="fixed", fixedDateTime={"date": day, "time": "09:30"},
        ))
        assert r.status_code == 201, r.text
        created = r.json()["intervention"]
        assert created["status"] == "planifiee"
        assert created["tenant_id"] is None
        assert created["scheduled_date"] == f"{day}T09:30:00+00:00"

    @pytest.mark.parametrize("fixed", [
        {"date": "demain", "time": "09:00"},
        {"date": "2030-01-15", "time": "9h"},
        {"date": "2030-01-15", "time": "25:00"},
    ])
    def test_invalid_fixed_date_time(self, client, world, fixed):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, selectedLotId=None, selectedBuildingId=world["building"]["id"],
            schedulingType="fixed", fixedDateTime=fixed,
        ))
        assert r.status_code == 400
        assert _db_op(config.db.interventions.count_documents({})) == 0

    def test_fixed_time_single_digit_hour(self, client, world):
        day = future_day(3)
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, selectedLotId=None, selectedBuildingId=world["building"]["id"],
            schedulingType="fixed", fixedDateTime={"date": day, "time": "8:45"},
        ))
        assert r.status_code == 201, r.text
        assert r.json()["intervention"]["scheduled_date"] == f"{day}T08:45:00+00:00"

    def test_unknown_scheduling_type(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, schedulingType="someday",
        ))
        assert r.status_code == 422

    def test_unknown_provider_ids_are_ignored(self, client, world):
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, selectedProviderIds=["ghost", world["provider"]["id"]],
        ))
        assert r.status_code == 201
        providers = [a for a in _assignments(r.json()["intervention"]["id"]) if a["role"] == "prestataire"]
        assert [a["user_id"] for a in providers] == [world["provider"]["id"]]

    def test_slots_create_pending_responses(self, client, world):
        day = future_day(4)
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, schedulingType="slots",
            selectedProviderIds=[world["provider"]["id"]],
            timeSlots=[
                {"date": day, "startTime": "09:00", "endTime": "11:00"},
                {"date": day, "startTime": "14:00", "endTime": "16:00"},
                {"date": day, "startTime": "", "endTime": "16:00"},
            ],
        ))
        assert r.status_code == 201
        intervention_id = r.json()["intervention"]["id"]

        detail = client.get(f"/api/interventions/{intervention_id}", headers=world["manager_h"]).json()["intervention"]
        assert len(detail["time_slots"]) == 2
        responders = {resp["user_id"] for resp in detail["time_slots"][0]["responses"]}
        assert responders == {world["tenant"]["id"], world["provider"]["id"]}
        assert detail["planning_message"] == "En attente des disponibilités du locataire et prestataire"
        assert set(detail["pending_responders"]) == {"Lucie", "Paul"}

    def test_other_team_lot_is_refused(self, client, world):
        outsider = create_user("gestionnaire", "other-team")
        r = client.post("/api/create-manager-intervention", headers=auth_h(login(client, outsider)),
                        json=_manager_payload(world, selectedManagerIds=[outsider["id"]]))
        assert r.status_code == 403


# ==================== LECTURE ====================

class TestRead:
    def test_list_is_scoped_by_role(self, client, world):
        tenant_request(client, world, "Première")
        other_tenant = create_user("locataire", world["team"]["id"])
        _db_op(config.db.lot_contacts.insert_one({
            "id": "c2", "lot_id": world["lot"]["id"], "user_id": other_tenant["id"], "end_date": None,
        }))
        r = client.post("/api/create-intervention", headers=auth_h(login(client, other_tenant)), json={
            "lot_id": world["lot"]["id"], "title": "Seconde", "description": "Autre demande",
        })
        assert r.status_code == 201

        manager_list = client.get("/api/interventions", headers=world["manager_h"]).json()
        assert manager_list["total"] == 2

        tenant_list = client.get("/api/interventions", headers=world["tenant_h"]).json()
        assert [i["title"] for i in tenant_list["interventions"]] == ["Première"]

        provider_list = client.get("/api/interventions", headers=world["provider_h"]).json()
        assert provider_list["total"] == 0

    def test_filter_by_status(self, client, world):
        approved_intervention(client, world)
        tenant_request(client, world, "Encore une")
        r = client.get("/api/interventions?status=demande", headers=world["manager_h"])
        assert [i["title"] for i in r.json()["interventions"]] == ["Encore une"]

    def test_detail_access(self, client, world):
        intervention = tenant_request(client, world)
        r = client.get(f"/api/interventions/{intervention['id']}", headers=world["tenant_h"])
        assert r.status_code == 200
        detail = r.json()["intervention"]
        assert detail["lot"]["reference"] == "A-101"
        assert "quote_requests" not in detail

        assert client.get(f"/api/interventions/{intervention['id']}", headers=world["provider_h"]).status_code == 403
        assert client.get("/api/interventions/missing", headers=world["manager_h"]).status_code == 404


# ==================== CYCLE DE VIE ====================

class TestLifecycle:
    def test_full_workflow(self, client, world):
        intervention = approved_intervention(client, world)
        iid = intervention["id"]
        assert intervention["status"] == "approuvee"

        r = client.post(f"/api/interventions/{iid}/start-planning", headers=world["manager_h"])
        assert r.json()["intervention"]["status"] == "planification"

        r = client.post(f"/api/interventions/{iid}/assign", headers=world["manager_h"], json={
            "user_id": world["provider"]["id"], "role": "prestataire",
        })
        assert r.status_code == 200, r.text

        day = future_day(6)
        r = client.post("/api/intervention-schedule", headers=world["manager_h"], json={
            "interventionId": iid,
            "planningType": "propose",
            "proposedSlots": [
                {"date": day, "startTime": "08:00", "endTime": "10:00"},
                {"date": day, "startTime": "13:00", "endTime": "15:00"},
            ],
        })
        assert r.status_code == 200, r.text
        slots = r.json()["timeSlots"]
        assert len(slots) == 2
        slot_id = slots[1]["id"]

        r = client.post(f"/api/intervention/{iid}/time-slots/{slot_id}/response",
                        headers=world["tenant_h"], json={"response": "accepted"})
        assert r.status_code == 200
        assert r.json()["autoConfirmed"] is False

        r = client.post(f"/api/intervention/{iid}/time-slots/{slot_id}/response",
                        headers=world["provider_h"], json={"response": "accepted"})
        assert r.json()["autoConfirmed"] is True
        assert r.json()["intervention"]["status"] == "planifiee"
        assert r.json()["intervention"]["scheduled_date"] == f"{day}T13:00:00+00:00"

        r = client.post(f"/api/interventions/{iid}/start", headers=world["provider_h"])
        assert r.json()["intervention"]["status"] == "en_cours"

        r = client.post(f"/api/interventions/{iid}/complete", headers=world["provider_h"],
                        json={"report": "Joint remplacé"})
        assert r.json()["intervention"]["status"] == "cloturee_par_prestataire"

        r = client.post("/api/intervention-validate-tenant", headers=world["tenant_h"], json={
            "interventionId": iid, "validationStatus": "approved",
            "tenantComment": "Parfait", "satisfactionRating": 5,
        })
        assert r.status_code == 200, r.text
        assert r.json()["intervention"]["status"] == "cloturee_par_locataire"
        assert "Note satisfaction: 5/5" in r.json()["intervention"]["tenant_comment"]

        r = client.post("/api/intervention-finalize", headers=world["manager_h"], json={
            "interventionId": iid, "paymentStatus": "paid", "finalAmount": 180.5, "paymentMethod": "virement",
        })
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["intervention"]["status"] == "cloturee_par_gestionnaire"
        assert body["intervention"]["final_amount"] == 180.5
        assert body["paymentStatus"] == "paid"

        stored = _db_op(config.db.interventions.find_one({"id": iid}, {"_id": 0}))
        assert "Montant final validé: 180.5€" in stored["manager_comment"]
        assert stored["finalized_by"] == world["manager"]["id"]

        transitions = _db_op(config.db.activity_logs.count_documents(
            {"entity_id": iid, "action": {"$regex": "^intervention_(approuvee|planification|planifiee|en_cours|cloturee)"}}
        ))
        assert transitions == 7

    def test_reject_requires_reason_and_is_terminal(self, client, world):
        intervention = tenant_request(client, world)
        r = client.post(f"/api/interventions/{intervention['id']}/reject", headers=world["manager_h"], json={"reason": ""})
        assert r.status_code == 422
        r = client.post(f"/api/interventions/{intervention['id']}/reject", headers=world["manager_h"], json={"reason": "   "})
        assert r.status_code == 422

        r = client.post(f"/api/interventions/{intervention['id']}/reject", headers=world["manager_h"],
                        json={"reason": "Hors contrat"})
        assert r.json()["intervention"]["status"] == "rejetee"

        r = client.post(f"/api/interventions/{intervention['id']}/approve", headers=world["manager_h"], json={})
        assert r.status_code == 400

        tenant_notif = _db_op(config.db.notifications.find_one(
            {"user_id": world["tenant"]["id"], "title": "Demande rejetée"}, {"_id": 0}
        ))
        assert "Hors contrat" in tenant_notif["message"]

    def test_tenant_cannot_approve(self, client, world):
        intervention = tenant_request(client, world)
        r = client.post(f"/api/interventions/{intervention['id']}/approve", headers=world["tenant_h"], json={})
        assert r.status_code == 403

    def test_start_without_provider(self, client, world):
        day = future_day(2)
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, selectedLotId=None, selectedBuildingId=world["building"]["id"],
            schedulingType="fixed", fixedDateTime={"date": day, "time": "10:00"},
        ))
        iid = r.json()["intervention"]["id"]
        r = client.post(f"/api/interventions/{iid}/start", headers=world["manager_h"])
        assert r.status_code == 400
        assert "prestataire" in r.json()["detail"]

    def test_cancel_closes_open_slots_and_requests(self, client, world):
        day = future_day(5)
        r = client.post("/api/create-manager-intervention", headers=world["manager_h"], json=_manager_payload(
            world, selectedProviderIds=[world["provider"]["id"]], expectsQuote=True,
        ))
        iid = r.json()["intervention"]["id"]
        _db_op(config.db.intervention_time_slots.insert_one({
            "id": "slot-1", "intervention_id": iid, "slot_date": day,
            "start_time": "09:00", "end_time": "10:00", "status": "proposed",
        }))

        r = client.post(f"/api/interventions/{iid}/cancel", headers=world["manager_h"], json={"reason": "Doublon"})
        assert r.status_code == 200
        assert r.json()["intervention"]["status"] == "annulee"

        slot = _db_op(config.db.intervention_time_slots.find_one({"id": "slot-1"}))
        assert slot["status"] == "cancelled"
        request = _db_op(config.db.quote_requests.find_one({"intervention_id": iid}))
        assert request["status"] == "cancelled"

    def test_contest_requires_reason_then_goes_back_to_planifiee(self, client, world):
        iid = _completed_intervention(client, world)

        r = client.post("/api/intervention-validate-tenant", headers=world["tenant_h"], json={
            "interventionId": iid, "validationStatus": "contested",
        })
        assert r.status_code == 400

        r = client.post("/api/intervention-validate-tenant", headers=world["tenant_h"], json={
            "interventionId": iid, "validationStatus": "contested", "contestReason": "La fuite persiste",
        })
        assert r.status_code == 200
        assert r.json()["intervention"]["status"] == "planifiee"

        provider_notif = _db_op(config.db.notifications.find_one(
            {"user_id": world["provider"]["id"], "title": "Intervention contestée par le locataire"}, {"_id": 0}
        ))
        assert provider_notif["priority"] == "high"

    def test_validation_by_non_tenant(self, client, world):
        iid = _completed_intervention(client, world)
        r = client.post("/api/intervention-validate-tenant", headers=world["manager_h"], json={
            "interventionId": iid, "validationStatus": "approved",
        })
        assert r.status_code == 403

    def test_finalize_in_wrong_status(self, client, world):
        intervention = tenant_request(client, world)
        r = client.post("/api/intervention-finalize", headers=world["manager_h"], json={
            "interventionId": intervention["id"],
        })
        assert r.status_code == 400

    def test_finalize_rejects_invalid_amount(self, client, world):
        intervention = tenant_request(client, world)
        r = client.post("/api/intervention-finalize", headers=world["manager_h"], json={
            "interventionId": intervention["id"], "finalAmount": -5,
        })
        assert r.status_code == 422


# ==================== ASSIGNATIONS ====================

class TestAssignments:
    def test_role_mismatch(self, client, world):
        intervention = tenant_request(client, world)
        r = client.post(f"/api/interventions/{intervention['id']}/assign", headers=world["manager_h"], json={
            "user_id": world["tenant"]["id"], "role": "prestataire",
        })
        assert r.status_code == 400

    @pytest.mark.parametrize("role", ["proprietaire", "admin"])
    def test_invalid_role(self, client, world, role):
        intervention = tenant_request(client, world)
        r = client.post(f"/api/interventions/{intervention['id']}/assign", headers=world["manager_h"], json={
            "user_id": world["provider"]["id"], "role": role,
        })
        assert r.status_code == 400

    def test_unassign(self, client, world):
        intervention = tenant_request(client, world)
        iid = intervention["id"]
        client.post(f"/api/interventions/{iid}/assign", headers=world["manager_h"], json={
            "user_id": world["provider"]["id"], "role": "prestataire",
        })
        r = client.delete(f"/api/interventions/{iid}/assign/{world['provider']['id']}", headers=world["manager_h"])
        assert r.status_code == 200
        r = client.delete(f"/api/interventions/{iid}/assign/{world['provider']['id']}", headers=world["manager_h"])
        assert r.status_code == 404


def _completed_intervention(client, world):
    """Intervention planifiée directement puis exécutée par le prestataire"""
    intervention = approved_intervention(client, world)
    iid = intervention["id"]
    client.post(f"/api/interventions/{iid}/assign", headers=world["manager_h"], json={
        "user_id": world["provider"]["id"], "role": "prestataire",
    })
    r = client.post(f"/api/intervention/{iid}/select-slot", headers=world["manager_h"], json={
        "selectedSlot": {"date": future_day(1), "startTime": "10:00", "endTime": "12:00"},
    })
    assert r.status_code == 200, r.text
    assert client.post(f"/api/interventions/{iid}/start", headers=world["provider_h"]).status_code == 200
    assert client.post(f"/api/interventions/{iid}/complete", headers=world["provider_h"], json={}).status_code == 200
    return iid
