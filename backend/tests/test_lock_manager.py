"""
Tests unitaires des verrous de saisie.
Couverture : verrouillage, expiration au minuit suivant, suppression paresseuse,
purge au démarrage, indicateurs namaz.
"""

import datetime as dt
from datetime import datetime, timedelta

from conftest import FakeClock
from madrasa_sync.schemas.descriptors import AttendanceDescriptor, NamazDescriptor
from madrasa_sync.services.lock_manager import AttendanceLockManager, next_local_midnight
from madrasa_sync.storage.memory_store import MemoryStore

SESSION_DATE = dt.date(2025, 6, 19)


def make_descriptor(period=1, division="commerce", date=SESSION_DATE):
    return AttendanceDescriptor(
        course_type="pu", year="1", division=division, section="A", date=date, period=period,
    )


def make_manager(now=datetime(2025, 6, 19, 9, 30)):
    clock = FakeClock(now)
    store = MemoryStore()
    return AttendanceLockManager(store, clock=clock), clock, store


def test_next_local_midnight():
    assert next_local_midnight(SESSION_DATE) == datetime(2025, 6, 20, 0, 0)


def test_lock_puis_is_locked():
    manager, _, _ = make_manager()
    lock = manager.lock(make_descriptor())

    assert manager.is_locked(make_descriptor()) is True
    assert lock.expires_at == datetime(2025, 6, 20, 0, 0)
    assert lock.locked_at == datetime(2025, 6, 19, 9, 30)


def test_autre_periode_non_verrouillee():
    manager, _, _ = make_manager()
    manager.lock(make_descriptor(period=1))
    assert manager.is_locked(make_descriptor(period=2)) is False


def test_division_absente_cle_distincte():
    manager, _, _ = make_manager()
    manager.lock(make_descriptor(division=None))

    assert manager.is_locked(make_descriptor(division=None)) is True
    assert manager.is_locked(make_descriptor(division="commerce")) is False


def test_expiration_a_minuit_et_suppression_paresseuse():
    manager, clock, store = make_manager()
    manager.lock(make_descriptor())
    storage_key = f"lock/attendance/{make_descriptor().canonical_key()}"
    assert store.get(storage_key) is not None

    clock.now = datetime(2025, 6, 20, 0, 0)

    assert manager.is_locked(make_descriptor()) is False
    assert store.get(storage_key) is None


def test_seance_passee_deja_expiree():
    manager, _, _ = make_manager(now=datetime(2025, 6, 21, 8, 0))
    manager.lock(make_descriptor(date=dt.date(2025, 6, 19)))
    assert manager.is_locked(make_descriptor(date=dt.date(2025, 6, 19))) is False


def test_time_remaining():
    manager, clock, _ = make_manager()
    manager.lock(make_descriptor())
    clock.now = datetime(2025, 6, 19, 22, 0)

    assert manager.time_remaining(make_descriptor()) == timedelta(hours=2)


def test_time_remaining_sans_verrou():
    manager, _, _ = make_manager()
    assert manager.time_remaining(make_descriptor()) is None


def test_reverrouillage_conserve_la_premiere_saisie():
    manager, clock, _ = make_manager()
    manager.lock(make_descriptor())
    clock.now = datetime(2025, 6, 19, 11, 0)

    again = manager.lock(make_descriptor())
    assert again.locked_at == datetime(2025, 6, 19, 9, 30)


def test_purge_expired():
    manager, clock, _ = make_manager()
    manager.lock(make_descriptor(date=dt.date(2025, 6, 18)))
    manager.lock(make_descriptor(date=dt.date(2025, 6, 19)))

    clock.now = datetime(2025, 6, 19, 12, 0)

    assert manager.purge_expired() == 1
    assert manager.is_locked(make_descriptor(date=dt.date(2025, 6, 19))) is True


def test_verrous_persistes_relus_par_un_autre_gestionnaire():
    manager, clock, store = make_manager()
    manager.lock(make_descriptor())

    other = AttendanceLockManager(store, clock=clock)
    assert other.is_locked(make_descriptor()) is True


def test_locked_prayers():
    manager, _, _ = make_manager()
    manager.lock(NamazDescriptor(section="A", date=SESSION_DATE, prayer="Fajr"))

    prayers = manager.locked_prayers("A", SESSION_DATE)
    assert prayers == {"fajr": True, "zuhr": False, "asr": False, "maghrib": False, "isha": False}
    assert manager.locked_prayers("B", SESSION_DATE)["fajr"] is False
