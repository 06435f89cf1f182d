"""
Planificateur APScheduler pour la synchronisation périodique.

Le job s'exécute toutes les SYNC_INTERVAL_SECONDS secondes (30–60 s) : sonde de
connectivité puis passe de synchronisation si l'appareil est en ligne.
"""

import logging
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "sync_drain_tick"


def create_scheduler() -> BackgroundScheduler:
    return BackgroundScheduler()


def start_sync_job(scheduler: BackgroundScheduler, tick: Callable[[], None], interval_seconds: int) -> None:
    """
    Enregistre le job périodique et démarre le planificateur s'il ne tourne pas encore.
    Première exécution immédiate, dans le thread du planificateur.
    """
    scheduler.add_job(
        tick,
        trigger="interval",
        seconds=interval_seconds,
        id=SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(),
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("Scheduler démarré : synchronisation toutes les %d secondes.", interval_seconds)


def stop_scheduler(scheduler: BackgroundScheduler) -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt du moteur)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
