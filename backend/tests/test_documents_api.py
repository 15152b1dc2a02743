"""
SEIDO - Documents d'intervention: upload, liste, téléchargement, suppression (API)
"""

from config import DOCUMENTS_DIR
from tests.conftest import create_user, login, auth_h, tenant_request

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"


def _upload(client, headers, intervention_id, content=PDF_BYTES, mime="application/pdf",
            filename="devis.pdf", document_type="devis"):
    return client.post(
        f"/api/intervention/{intervention_id}/documents",
        headers=headers,
        files={"file": (filename, content, mime)},
        data={"document_type": document_type, "description": "Devis signé"},
    )


class TestUpload:
    def test_upload_and_list(self, client, world):
        intervention = tenant_request(client, world)
        r = _upload(client, world["tenant_h"], intervention["id"])
        assert r.status_code == 201, r.text
        document = r.json()["document"]
        assert document["document_type"] == "devis"
        assert document["file_size"] == len(PDF_BYTES)
        assert document["url"] == f"/api/intervention-document/{document['id']}/download"
        assert (DOCUMENTS_DIR / document["storage_path"]).exists()

        r = client.get(f"/api/intervention/{intervention['id']}/documents", headers=world["manager_h"])
        assert [d["original_filename"] for d in r.json()["documents"]] == ["devis.pdf"]

    def test_unknown_type_falls_back_to_autre(self, client, world):
        intervention = tenant_request(client, world)
        r = _upload(client, world["tenant_h"], intervention["id"], document_type="selfie")
        assert r.json()["document"]["document_type"] == "autre"

    def test_invalid_mime(self, client, world):
        intervention = tenant_request(client, world)
        r = _upload(client, world["tenant_h"], intervention["id"], content=b"#!/bin/sh",
                    mime="application/x-sh", filename="run.sh")
        assert r.status_code == 400
        assert "Format de fichier invalide" in r.json()["detail"]

    def test_empty_file(self, client, world):
        intervention = tenant_request(client, world)
        r = _upload(client, world["tenant_h"], intervention["id"], content=b"")
        assert r.status_code == 400

    def test_stored_extension_follows_mime_type(self, client, world):
        intervention = tenant_request(client, world)
        r = _upload(client, world["tenant_h"], intervention["id"], content=b"\x89PNG\r\n\x1a\n",
                    mime="image/png", filename="photo.php", document_type="photo_avant")
        assert r.status_code == 201, r.text
        document = r.json()["document"]
        assert document["storage_path"].endswith(".png")
        assert document["original_filename"] == "photo.php"

    def test_outsider_cannot_upload(self, client, world):
        intervention = tenant_request(client, world)
        r = _upload(client, world["provider_h"], intervention["id"])
        assert r.status_code == 403


class TestDownloadAndDelete:
    def test_download(self, client, world):
        intervention = tenant_request(client, world)
        document = _upload(client, world["tenant_h"], intervention["id"]).json()["document"]

        r = client.get(document["url"], headers=world["manager_h"])
        assert r.status_code == 200
        assert r.content == PDF_BYTES
        assert r.headers["content-type"] == "application/pdf"
        assert r.headers["x-content-type-options"] == "nosniff"

    def test_other_team_cannot_download(self, client, world):
        intervention = tenant_request(client, world)
        document = _upload(client, world["tenant_h"], intervention["id"]).json()["document"]
        outsider = create_user("gestionnaire", "other-team")
        r = client.get(document["url"], headers=auth_h(login(client, outsider)))
        assert r.status_code == 403

    def test_uploader_can_delete(self, client, world):
        intervention = tenant_request(client, world)
        document = _upload(client, world["tenant_h"], intervention["id"]).json()["document"]

        r = client.delete(f"/api/intervention-document/{document['id']}", headers=world["tenant_h"])
        assert r.status_code == 200
        assert not (DOCUMENTS_DIR / document["storage_path"]).exists()

        r = client.get(f"/api/intervention/{intervention['id']}/documents", headers=world["manager_h"])
        assert r.json()["count"] == 0
        assert client.get(document["url"], headers=world["manager_h"]).status_code == 404

    def test_other_participant_cannot_delete(self, client, world):
        intervention = tenant_request(client, world)
        client.post(f"/api/interventions/{intervention['id']}/assign", headers=world["manager_h"], json={
            "user_id": world["provider"]["id"], "role": "prestataire",
        })
        document = _upload(client, world["tenant_h"], intervention["id"]).json()["document"]

        r = client.delete(f"/api/intervention-document/{document['id']}", headers=world["provider_h"])
        assert r.status_code == 403

        r = client.delete(f"/api/intervention-document/{document['id']}", headers=world["manager_h"])
        assert r.status_code == 200
