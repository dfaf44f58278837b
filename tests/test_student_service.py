"""
Tests du service du registre des élèves (base SQLite en mémoire).
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from markbook.config import Settings
from markbook.models.student import Student
from markbook.schemas.student import StudentCreate, StudentUpdate
from markbook.services import student_service
from markbook.services.qr_codes import generate_scannable_code

TEACHER = "default-teacher"


def make_create(**kwargs) -> StudentCreate:
    return StudentCreate(
        name=kwargs.get("name", "Alice Martin"),
        student_code=kwargs.get("student_code", "ST001"),
        classroom=kwargs.get("classroom", "3A"),
        cohort=kwargs.get("cohort", "3"),
        scannable_code=kwargs.get("scannable_code"),
        email=kwargs.get("email"),
    )


# --- Validation des schémas ---

def test_student_create_nom_vide_rejete():
    with pytest.raises(ValidationError):
        make_create(name="   ")


def test_student_create_email_invalide_rejete():
    with pytest.raises(ValidationError):
        make_create(email="pas-un-email")


def test_student_update_classe_vide_rejetee():
    with pytest.raises(ValidationError):
        StudentUpdate(classroom="")


def test_generate_scannable_code_format():
    code = generate_scannable_code("ST001")
    assert code.startswith("STUDENT_ST001_")


# ============================================================
# load_roster / create_student
# ============================================================

def test_create_student_genere_le_qr_code_et_met_a_jour_l_index(db, index):
    record = student_service.create_student(db, TEACHER, make_create(), index)

    assert record.scannable_code.startswith("STUDENT_ST001_")
    assert record.artifact_locators == ()
    assert record.artifact_count == 0
    assert record.last_artifact_at is None
    assert index.lookup(record.scannable_code) == record


def test_create_student_code_existant_refuse(db, index):
    student_service.create_student(db, TEACHER, make_create(), index)

    with pytest.raises(ValueError) as exc:
        student_service.create_student(db, TEACHER, make_create(name="Autre"), index)
    assert "ST001" in str(exc.value)


def test_create_student_qr_code_deja_attribue(db, index):
    student_service.create_student(db, TEACHER, make_create(scannable_code="QR-1"), index)

    with pytest.raises(ValueError):
        student_service.create_student(db, TEACHER, make_create(student_code="ST002", scannable_code="QR-1"), index)


def test_create_students_lot(db, index):
    rows = [make_create(name="Zoé", student_code="ST002"), make_create(name="Alice", student_code="ST001")]

    records = student_service.create_students(db, TEACHER, rows, index)

    assert len(records) == 2
    assert [r.name for r in index.search("")] == ["Alice", "Zoé"]


def test_create_students_doublon_dans_le_lot(db, index):
    rows = [make_create(student_code="ST001"), make_create(name="Bis", student_code="ST001")]

    with pytest.raises(ValueError):
        student_service.create_students(db, TEACHER, rows, index)
    assert student_service.load_roster(db, TEACHER, index) == []


def test_load_roster_limite_a_l_enseignant_et_aux_actifs(db, index, seed_student):
    seed_student(name="Alice", student_code="ST001", scannable_code="Q1")
    seed_student(name="Bruno", student_code="ST002", scannable_code="Q2", teacher_id="autre")
    seed_student(name="Chloé", student_code="ST003", scannable_code="Q3", is_active=False)

    records = student_service.load_roster(db, TEACHER, index)

    assert [r.name for r in records] == ["Alice"]
    assert len(index) == 1


# ============================================================
# update / désactivation
# ============================================================

def test_update_student_champs_partiels(db, index):
    record = student_service.create_student(db, TEACHER, make_create(), index)

    updated = student_service.update_student(db, record.id, StudentUpdate(classroom="4B"), index)

    assert updated.classroom == "4B"
    assert updated.name == "Alice Martin"
    assert index.search("4b")[0].id == record.id


def test_update_student_inexistant(db, index):
    assert student_service.update_student(db, uuid.uuid4(), StudentUpdate(name="X"), index) is None


def test_deactivate_puis_reactivate(db, index):
    record = student_service.create_student(db, TEACHER, make_create(), index)

    student_service.deactivate_student(db, record.id, index)
    assert index.lookup(record.scannable_code) is None
    assert student_service.get_student(db, record.id).is_active is False

    student_service.reactivate_student(db, record.id, index)
    assert index.lookup(record.scannable_code) is not None


def test_get_students_by_classroom(db, seed_student):
    seed_student(name="Alice", student_code="ST001", scannable_code="Q1", classroom="3A")
    seed_student(name="Bruno", student_code="ST002", scannable_code="Q2", classroom="4A")

    records = student_service.get_students_by_classroom(db, TEACHER, "4A")

    assert [r.name for r in records] == ["Bruno"]


# ============================================================
# Statistiques
# ============================================================

def test_get_student_statistics(db, seed_student):
    alice = seed_student(name="Alice", student_code="ST001", scannable_code="Q1", classroom="3A", cohort="3")
    bruno = seed_student(name="Bruno", student_code="ST002", scannable_code="Q2", classroom="4A", cohort="4")
    seed_student(name="Chloé", student_code="ST003", scannable_code="Q3", classroom="4A", cohort="4")

    now = datetime.now(timezone.utc)
    a = db.get(Student, alice)
    a.artifact_count, a.last_artifact_at = 2, now - timedelta(days=2)
    b = db.get(Student, bruno)
    b.artifact_count, b.last_artifact_at = 1, now - timedelta(days=90)
    db.commit()

    stats = student_service.get_student_statistics(db, TEACHER, Settings(RECENT_ACTIVITY_DAYS=30))

    assert stats.total_students == 3
    assert stats.students_with_assessments == 2
    assert stats.total_assessments == 3
    assert stats.recent_activity_count == 1
    assert stats.classrooms == ["3A", "4A"]
    assert stats.cohorts == ["3", "4"]
    assert stats.assessment_rate == pytest.approx(2 / 3)
    assert stats.average_assessments_per_student == pytest.approx(1.0)


def test_get_student_statistics_registre_vide(db):
    stats = student_service.get_student_statistics(db, TEACHER)

    assert stats.total_students == 0
    assert stats.assessment_rate == 0.0
