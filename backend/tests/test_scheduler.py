"""
Tests du planificateur de synchronisation (APScheduler mocké).
"""

from unittest.mock import MagicMock

from madrasa_sync.scheduler import SYNC_JOB_ID, start_sync_job, stop_scheduler


def test_job_periodique_avec_premiere_execution_immediate():
    scheduler = MagicMock()
    scheduler.running = False
    tick = MagicMock()

    start_sync_job(scheduler, tick, 45)

    args, kwargs = scheduler.add_job.call_args
    assert args == (tick,)
    assert kwargs["seconds"] == 45
    assert kwargs["id"] == SYNC_JOB_ID
    assert kwargs["max_instances"] == 1
    assert kwargs["next_run_time"] is not None
    scheduler.start.assert_called_once()
    tick.assert_not_called()


def test_planificateur_deja_demarre_non_relance():
    scheduler = MagicMock()
    scheduler.running = True

    start_sync_job(scheduler, MagicMock(), 60)
    scheduler.start.assert_not_called()


def test_arret():
    scheduler = MagicMock()
    scheduler.running = True
    stop_scheduler(scheduler)
    scheduler.shutdown.assert_called_once_with(wait=False)


def test_arret_planificateur_inactif():
    scheduler = MagicMock()
    scheduler.running = False
    stop_scheduler(scheduler)
    scheduler.shutdown.assert_not_called()
