"""
Tests d'intégration API pour le registre des élèves.
GET    /api/v1/students              : liste / recherche
POST   /api/v1/students              : inscription
PUT    /api/v1/students/{id}         : mise à jour
DELETE /api/v1/students/{id}         : désactivation
GET    /api/v1/students/{id}/qr-code : étiquette PNG
"""

import uuid


def create(client, **kwargs):
    payload = {
        "name": kwargs.get("name", "Alice Martin"),
        "student_code": kwargs.get("student_code", "ST001"),
        "classroom": kwargs.get("classroom", "3A"),
        "cohort": kwargs.get("cohort", "3"),
    }
    return client.post("/api/v1/students", json=payload)


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ============================================================
# GET /api/v1/students
# ============================================================

def test_liste_vide(client):
    resp = client.get("/api/v1/students")
    assert resp.status_code == 200
    assert resp.json() == []


def test_liste_triee_et_recherche(client):
    create(client, name="Zoé", student_code="ST002", classroom="4A")
    create(client, name="Alice", student_code="ST001", classroom="3A")

    resp = client.get("/api/v1/students")
    assert [s["name"] for s in resp.json()] == ["Alice", "Zoé"]

    resp = client.get("/api/v1/students", params={"q": "4a"})
    assert [s["name"] for s in resp.json()] == ["Zoé"]


# ============================================================
# POST / PUT / DELETE
# ============================================================

def test_create_student_succes(client):
    resp = create(client)

    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "Alice Martin"
    assert data["artifact_count"] == 0
    assert data["artifact_locators"] == []
    assert data["scannable_code"].startswith("STUDENT_ST001_")


def test_create_student_code_en_double(client):
    create(client)
    resp = create(client, name="Autre")
    assert resp.status_code == 409


def test_create_student_champ_vide(client):
    resp = create(client, name="  ")
    assert resp.status_code == 422


def test_update_student(client):
    student_id = create(client).json()["id"]

    resp = client.put(f"/api/v1/students/{student_id}", json={"classroom": "4B"})

    assert resp.status_code == 200
    assert resp.json()["classroom"] == "4B"


def test_update_student_introuvable(client):
    resp = client.put(f"/api/v1/students/{uuid.uuid4()}", json={"name": "X"})
    assert resp.status_code == 404


def test_delete_student_desactive(client):
    student_id = create(client).json()["id"]

    resp = client.delete(f"/api/v1/students/{student_id}")

    assert resp.status_code == 204
    assert client.get("/api/v1/students").json() == []


# ============================================================
# QR code, statistiques, espace occupé
# ============================================================

def test_qr_code_png(client):
    student_id = create(client).json()["id"]

    resp = client.get(f"/api/v1/students/{student_id}/qr-code")

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content[:8] == b"\x89PNG\r\n\x1a\n"


def test_qr_code_eleve_introuvable(client):
    resp = client.get(f"/api/v1/students/{uuid.uuid4()}/qr-code")
    assert resp.status_code == 404


def test_statistiques(client):
    create(client)
    resp = client.get("/api/v1/students/statistics")

    assert resp.status_code == 200
    assert resp.json()["total_students"] == 1


def test_storage_usage_sans_copie(client):
    student_id = create(client).json()["id"]

    resp = client.get(f"/api/v1/students/{student_id}/storage-usage")

    assert resp.status_code == 200
    assert resp.json() == {
        "image_count": 0,
        "total_size_bytes": 0,
        "total_size_mb": 0.0,
        "formatted_size": "0.0 KB",
    }
