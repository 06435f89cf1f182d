"""
Tests d'intégration API des verrous de saisie.
Endpoints : POST /api/locks/check, GET /api/locks/prayers
"""

from datetime import date, datetime, timedelta

from madrasa_sync.schemas.lock import AttendanceLock
from madrasa_sync.schemas.descriptors import RecordType

ATTENDANCE_DESCRIPTOR = {
    "course_type": "pu", "year": "1", "division": "commerce",
    "section": "A", "date": "2025-06-19", "period": 1,
}


def test_seance_non_verrouillee(client, mock_engine):
    mock_engine.locks.lock_info.return_value = None

    response = client.post("/api/locks/check", json={
        "record_type": "attendance", "descriptor": ATTENDANCE_DESCRIPTOR,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["locked"] is False
    assert data["key"] == "pu|1|commerce|A|2025-06-19|1"
    assert data["expires_at"] is None


def test_seance_verrouillee(client, mock_engine):
    mock_engine.locks.lock_info.return_value = AttendanceLock(
        key="pu|1|commerce|A|2025-06-19|1",
        record_type=RecordType.ATTENDANCE,
        locked_at=datetime(2025, 6, 19, 9, 30),
        expires_at=datetime(2025, 6, 20, 0, 0),
    )
    mock_engine.locks.time_remaining.return_value = timedelta(hours=2, minutes=30)

    response = client.post("/api/locks/check", json={
        "record_type": "attendance", "descriptor": ATTENDANCE_DESCRIPTOR,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["locked"] is True
    assert data["expires_at"] == "2025-06-20T00:00:00"
    assert data["time_remaining_seconds"] == 9000


def test_priere_verrouillee(client, mock_engine):
    mock_engine.locks.lock_info.return_value = AttendanceLock(
        key="A|2025-06-19|fajr",
        record_type=RecordType.NAMAZ,
        locked_at=datetime(2025, 6, 19, 5, 0),
        expires_at=datetime(2025, 6, 20, 0, 0),
    )
    mock_engine.locks.time_remaining.return_value = timedelta(hours=1)

    response = client.post("/api/locks/check", json={
        "record_type": "namaz", "descriptor": {"section": "A", "date": "2025-06-19", "prayer": "fajr"},
    })

    assert response.status_code == 200
    assert response.json()["key"] == "A|2025-06-19|fajr"


def test_type_non_verrouillable(client, mock_engine):
    """Un congé n'est pas soumis au verrou → 400."""
    response = client.post("/api/locks/check", json={
        "record_type": "leave",
        "descriptor": {"student_id": 7, "from_date": "2025-06-20", "to_date": "2025-06-21"},
    })
    assert response.status_code == 400


def test_cle_invalide(client, mock_engine):
    response = client.post("/api/locks/check", json={
        "record_type": "attendance", "descriptor": {"course_type": "pu"},
    })
    assert response.status_code == 422
    mock_engine.locks.lock_info.assert_not_called()


# ============================================================
# GET /api/locks/prayers
# ============================================================

def test_prieres_verrouillees(client, mock_engine):
    mock_engine.locks.locked_prayers.return_value = {
        "fajr": True, "zuhr": False, "asr": False, "maghrib": False, "isha": False,
    }

    response = client.get("/api/locks/prayers?section=A&date=2025-06-19")

    assert response.status_code == 200
    assert response.json()["fajr"] is True
    mock_engine.locks.locked_prayers.assert_called_once_with("A", date(2025, 6, 19))


def test_prieres_date_invalide(client, mock_engine):
    response = client.get("/api/locks/prayers?section=A&date=demain")
    assert response.status_code == 422
