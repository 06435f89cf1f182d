"""
Moteur de synchronisation offline-first.

Orchestre la file locale, les verrous, la résolution de conflits et la livraison
vers le Remote Record Store.

Cycle d'une mutation :
- pending  → livraison OK                                   → synced
- pending  → conflit détecté → conflict → résolution livrée → synced
- pending  → échec transitoire (retry_count < plafond)      → pending (backoff)
- pending/conflict → plafond atteint ou 4xx                 → error (hors rotation)

Déclencheurs d'une passe : retour en ligne, minuterie APScheduler, demande manuelle,
saisie en ligne. Une seule passe à la fois : un déclencheur reçu pendant une passe
est fusionné (ignoré), la prochaine passe reprendra le travail restant.
Une passe ne lève jamais : chaque échec est rattaché à sa mutation.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from madrasa_sync.config import Settings, settings as default_settings
from madrasa_sync.exceptions import (
    PermanentDeliveryError,
    RecordLockedError,
    RemoteConflictError,
    StorageError,
    TransientDeliveryError,
)
from madrasa_sync.scheduler import create_scheduler, start_sync_job, stop_scheduler
from madrasa_sync.schemas.conflict import ConflictCase, Resolution
from madrasa_sync.schemas.descriptors import LOCKABLE_TYPES, RecordType, parse_descriptor
from madrasa_sync.schemas.mutation import MutationRecord, RecordSnapshot, SubmitResult, SyncStatus
from madrasa_sync.schemas.status import SyncPassReport, SyncStatusReport, SyncTrigger
from madrasa_sync.services.conflict_resolver import ConflictResolver
from madrasa_sync.services.lock_manager import AttendanceLockManager
from madrasa_sync.services.notifier import (
    CONFLICT_RESOLVED,
    MUTATION_FAILED,
    NETWORK_STATUS_CHANGED,
    SYNC_COMPLETED,
    SyncNotifier,
)
from madrasa_sync.services.remote_client import RemoteRecordStore
from madrasa_sync.services.status_reporter import build_status_report
from madrasa_sync.services.sync_queue import SyncQueue
from madrasa_sync.storage.base import LocalStore
from madrasa_sync.storage.index import CollectionIndex

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_time"
SNAPSHOTS_COLLECTION = "snapshots"
CONFLICT_AUDIT_COLLECTION = "conflict_audit"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """
    Instance unique par processus, construite au démarrage de l'application.

    Dépendances injectées : stockage local, client distant, identité de l'appareil.
    Cycle de vie explicite : start() / stop().
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteRecordStore,
        device_id: str,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
        lock_clock: Callable[[], datetime] = datetime.now,
        notifier: Optional[SyncNotifier] = None,
        scheduler=None,
    ):
        self.settings = settings or default_settings
        self.device_id = device_id
        self._store = store
        self._remote = remote
        self._clock = clock
        self._scheduler = scheduler
        self.notifier = notifier or SyncNotifier()

        # Lève QueueCorruptedError si la file persistée est illisible (fatal)
        self.queue = SyncQueue(
            store,
            retry_ceiling=self.settings.RETRY_CEILING,
            retention=timedelta(hours=self.settings.SYNCED_RETENTION_HOURS),
            backoff_seconds=self.settings.RETRY_BACKOFF_SECONDS,
        )
        self.locks = AttendanceLockManager(store, clock=lock_clock)
        self.resolver = ConflictResolver(window=timedelta(minutes=self.settings.CONFLICT_WINDOW_MINUTES))
        self._index = CollectionIndex(store)

        self._pass_lock = threading.Lock()
        self._sync_in_progress = False
        self._online = False
        self._started = False
        self._stopping = False
        self.last_sync_at = self._load_last_sync()

    # ============================================================
    # Cycle de vie
    # ============================================================

    def start(self) -> None:
        """
        Nettoie les verrous expirés et démarre la minuterie.
        La première sonde réseau est confiée au planificateur (exécution immédiate) :
        le démarrage de l'application n'attend ni le réseau ni une passe.
        """
        if self._started:
            return
        self._started = True
        self._stopping = False

        try:
            self.locks.purge_expired()
        except StorageError as exc:
            logger.warning("Nettoyage des verrous impossible : %s", exc)

        if self._scheduler is None:
            self._scheduler = create_scheduler()
        start_sync_job(self._scheduler, self._on_timer_tick, self.settings.SYNC_INTERVAL_SECONDS)
        logger.info("Moteur de synchronisation démarré (appareil %s)", self.device_id)

    def stop(self) -> None:
        """
        Arrête la minuterie puis ferme le client distant.
        Une passe en cours s'interrompt après la mutation en vol ; le client n'est
        fermé qu'une fois la passe terminée.
        """
        if not self._started:
            return
        self._stopping = True
        stop_scheduler(self._scheduler)
        with self._pass_lock:
            self._remote.close()
        self._started = False
        logger.info("Moteur de synchronisation arrêté.")

    # ============================================================
    # Réseau
    # ============================================================

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    def set_online(self, online: bool) -> None:
        """Met à jour l'état réseau. Le passage hors-ligne → en ligne déclenche une passe."""
        previous = self._online
        self._online = online
        if previous == online:
            return

        logger.info("Réseau %s", "connecté" if online else "déconnecté, mode hors-ligne")
        self.notifier.emit(NETWORK_STATUS_CHANGED, {"is_online": online})
        if online:
            self.run_sync_pass(SyncTrigger.RECONNECT)

    def check_connectivity(self) -> bool:
        online = self._remote.ping()
        self.set_online(online)
        return online

    def _on_timer_tick(self) -> None:
        """Job périodique : sonde puis passe minuterie (la reconnexion a déjà sa propre passe)."""
        try:
            was_online = self._online
            if self.check_connectivity() and was_online:
                self.run_sync_pass(SyncTrigger.TIMER)
        except Exception as exc:
            logger.error("Erreur lors de la synchronisation périodique : %s", exc, exc_info=True)

    # ============================================================
    # Saisie
    # ============================================================

    def submit(
        self,
        record_type: RecordType,
        descriptor: Union[BaseModel, Dict[str, Any]],
        payload: Dict[str, Any],
    ) -> SubmitResult:
        """
        Enregistre une action de l'interface.

        1. Refuse une séance déjà verrouillée (présence / namaz)
        2. Écrit l'instantané local (optimiste)
        3. Verrouille la séance (présence / namaz)
        4. Met la mutation en file
        5. Tente une livraison immédiate si en ligne

        Lève RecordLockedError si la séance est verrouillée, ValidationError si la clé est invalide.
        """
        record_type = RecordType(record_type)
        if isinstance(descriptor, dict):
            descriptor = parse_descriptor(record_type, descriptor)

        lockable = record_type in LOCKABLE_TYPES
        if lockable and self._is_locked(descriptor):
            raise RecordLockedError(descriptor.canonical_key())

        mutation = MutationRecord.build(record_type, descriptor, payload, self.device_id, self._clock())
        self._write_snapshot(mutation, payload, self.device_id, mutation.created_at)

        if lockable:
            try:
                self.locks.lock(descriptor)
            except StorageError as exc:
                logger.warning("Verrou non persisté pour %s : %s", descriptor.canonical_key(), exc)

        stored = self.queue.enqueue(mutation)

        if self._online:
            self.run_sync_pass(SyncTrigger.SUBMIT)

        return SubmitResult(mutation=stored, persisted=self.queue.persisted, online=self._online)

    def _is_locked(self, descriptor: BaseModel) -> bool:
        try:
            return self.locks.is_locked(descriptor)
        except StorageError as exc:
            logger.warning("Lecture du verrou impossible, saisie autorisée : %s", exc)
            return False

    # ============================================================
    # Passe de synchronisation
    # ============================================================

    def force_sync(self) -> SyncPassReport:
        """Synchronisation manuelle : idempotente, sans danger pendant une passe (fusionnée)."""
        if not self._online:
            self.check_connectivity()
        return self.run_sync_pass(SyncTrigger.MANUAL)

    def run_sync_pass(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncPassReport:
        report = SyncPassReport(trigger=trigger, started_at=self._clock())

        if not self._online or self._stopping:
            report.skipped = True
            logger.debug("Hors-ligne ou arrêt en cours : passe %s ignorée", trigger.value)
            return report

        if not self._pass_lock.acquire(blocking=False):
            report.coalesced = True
            logger.debug("Passe déjà en cours : déclencheur %s fusionné", trigger.value)
            return report

        self._sync_in_progress = True
        try:
            self._drain(report)
            report.pruned_count = self.queue.dequeue_synced(self._clock())
            self._prune_snapshots(self._clock())
            report.finished_at = self._clock()
            self._save_last_sync(report.finished_at)
        finally:
            self._sync_in_progress = False
            self._pass_lock.release()

        logger.info(
            "Sync %s terminée : %d tentées, %d synchronisées, %d conflits, %d à réessayer, %d en erreur",
            trigger.value, report.attempted, report.synced_count, report.conflict_count,
            report.retried_count, report.failed_count,
        )
        self.notifier.emit(SYNC_COMPLETED, {
            "synced_count": report.synced_count,
            "conflict_count": report.conflict_count,
        })
        return report

    def _drain(self, report: SyncPassReport) -> None:
        """Livre les mutations actives dans l'ordre FIFO."""
        now = self._clock()
        for mutation in self.queue.list_pending():
            if self._stopping:
                logger.info("Arrêt du moteur demandé : fin de passe anticipée")
                break
            if not self._online:
                logger.info("Connexion perdue pendant la passe : arrêt anticipé")
                break
            # Le backoff n'est pas appliqué aux demandes manuelles
            if report.trigger != SyncTrigger.MANUAL and not self.queue.is_due(mutation, now):
                continue

            report.attempted += 1
            version = mutation.version
            try:
                case = self._deliver(mutation, version)
            except PermanentDeliveryError as exc:
                self._handle_failure(mutation, version, exc, permanent=True, report=report)
                continue
            except TransientDeliveryError as exc:
                self._handle_failure(mutation, version, exc, permanent=False, report=report)
                continue
            except Exception as exc:
                logger.error("Échec inattendu pour la mutation %s : %s", mutation.id, exc, exc_info=True)
                self._handle_failure(mutation, version, exc, permanent=False, report=report)
                continue

            entry = self.queue.get(mutation.id)
            if entry is None or entry.version != version or entry.status != SyncStatus.SYNCED:
                continue
            report.synced_count += 1
            if case is not None:
                report.conflict_count += 1

    def _deliver(self, mutation: MutationRecord, version: int) -> Optional[ConflictCase]:
        """
        Livre une mutation. Retourne le ConflictCase appliqué, ou None si livrée sans conflit.
        Au plus un saut de résolution : pas d'aller-retour itératif.
        """
        remote = self._remote.fetch_by_natural_key(mutation.record_type, mutation.origin_descriptor)
        case = self.resolver.resolve(mutation, remote)
        if case is not None:
            return self._apply_resolution(mutation, version, case)

        try:
            self._remote.create(mutation, mutation.payload)
        except RemoteConflictError:
            # Écriture concurrente arrivée entre la lecture et l'envoi
            remote = self._remote.fetch_by_natural_key(mutation.record_type, mutation.origin_descriptor)
            case = self.resolver.resolve(mutation, remote)
            if case is None:
                raise TransientDeliveryError("Conflit signalé par le serveur sans écriture concurrente visible.")
            return self._apply_resolution(mutation, version, case)

        self.queue.mark_status(mutation.id, SyncStatus.SYNCED, now=self._clock(), expected_version=version)
        logger.debug("Mutation %s synchronisée", mutation.id)
        return None

    def _apply_resolution(self, mutation: MutationRecord, version: int, case: ConflictCase) -> ConflictCase:
        self.queue.mark_status(mutation.id, SyncStatus.CONFLICT, expected_version=version)

        if case.resolution == Resolution.USE_REMOTE:
            # La version distante est plus récente : la saisie locale est abandonnée
            self._write_snapshot(
                mutation, case.remote_record.payload,
                case.remote_record.device_id, case.remote_record.timestamp,
            )
        else:
            payload = case.merged_payload if case.resolution == Resolution.MERGE else mutation.payload
            try:
                self._remote.create(mutation, payload)
            except RemoteConflictError as exc:
                raise TransientDeliveryError(
                    "Nouvelle écriture concurrente après résolution : reportée à la prochaine passe."
                ) from exc
            if case.resolution == Resolution.MERGE:
                self._write_snapshot(mutation, payload, self.device_id, mutation.created_at)

        self.queue.mark_status(mutation.id, SyncStatus.SYNCED, now=self._clock(), expected_version=version)
        self._audit(case)
        logger.info(
            "Conflit résolu sur %s (%s) : %s",
            case.natural_key, case.record_type.value, case.resolution.value,
        )
        self.notifier.emit(CONFLICT_RESOLVED, {
            "mutation_id": case.mutation_id,
            "natural_key": case.natural_key,
            "resolution": case.resolution.value,
        })
        return case

    def _handle_failure(
        self,
        mutation: MutationRecord,
        version: int,
        exc: Exception,
        permanent: bool,
        report: SyncPassReport,
    ) -> None:
        entry = self.queue.record_failure(
            mutation.id, str(exc), permanent=permanent, now=self._clock(), expected_version=version,
        )
        if entry is None:
            return  # Remplacée par une saisie plus récente pendant la livraison
        if entry.status == SyncStatus.ERROR:
            report.failed_count += 1
            report.errors.append(f"{entry.id} : {exc}")
            self.notifier.emit(MUTATION_FAILED, {"mutation_id": entry.id, "error": str(exc)})
        else:
            report.retried_count += 1
            logger.debug("Mutation %s : échec transitoire (%d/%d)", entry.id, entry.retry_count, self.queue.retry_ceiling)

    # ============================================================
    # Relance manuelle, état
    # ============================================================

    def retry_failed(self, mutation_id: str) -> MutationRecord:
        """Remet une mutation en erreur dans la rotation (compteur à zéro)."""
        return self.queue.requeue(mutation_id)

    def status(self) -> SyncStatusReport:
        return build_status_report(
            self.queue.all(),
            is_online=self._online,
            sync_in_progress=self._sync_in_progress,
            last_sync_at=self.last_sync_at,
        )

    # ============================================================
    # Instantanés, audit, horodatage de la dernière passe
    # ============================================================

    def _snapshot_key(self, record_type: RecordType, natural_key: str) -> str:
        return f"snapshot/{record_type.value}/{natural_key}"

    def _write_snapshot(
        self,
        mutation: MutationRecord,
        payload: Dict[str, Any],
        device_id: str,
        recorded_at: datetime,
    ) -> None:
        snapshot = RecordSnapshot(
            record_type=mutation.record_type,
            descriptor=mutation.origin_descriptor,
            payload=payload,
            device_id=device_id,
            recorded_at=recorded_at,
            mutation_id=mutation.id,
        )
        try:
            self._index.put(
                SNAPSHOTS_COLLECTION,
                self._snapshot_key(mutation.record_type, mutation.natural_key),
                snapshot.model_dump_json().encode("utf-8"),
            )
        except StorageError as exc:
            logger.warning("Instantané local non persisté pour %s : %s", mutation.id, exc)

    def get_snapshot(self, record_type: RecordType, descriptor: Dict[str, Any]) -> Optional[RecordSnapshot]:
        natural_key = parse_descriptor(record_type, descriptor).canonical_key()
        raw = self._index.get(self._snapshot_key(RecordType(record_type), natural_key))
        if raw is None:
            return None
        return RecordSnapshot.model_validate_json(raw)

    def _prune_snapshots(self, now: datetime) -> int:
        """Supprime les instantanés plus anciens que la rétention, sauf ceux d'une mutation encore active."""
        cutoff = now - self.queue.retention
        active = {
            self._snapshot_key(e.record_type, e.natural_key) for e in self.queue.list_pending()
        }
        try:
            expired = []
            for key in self._index.members(SNAPSHOTS_COLLECTION):
                if key in active:
                    continue
                raw = self._index.get(key)
                if raw is None:
                    expired.append(key)
                    continue
                try:
                    snapshot = RecordSnapshot.model_validate_json(raw)
                except ValidationError:
                    expired.append(key)
                    continue
                if snapshot.recorded_at < cutoff:
                    expired.append(key)
            removed = self._index.discard(SNAPSHOTS_COLLECTION, expired)
        except StorageError as exc:
            logger.warning("Purge des instantanés impossible : %s", exc)
            return 0
        if removed:
            logger.info("%d instantanés locaux purgés", removed)
        return removed

    def _audit(self, case: ConflictCase) -> None:
        key = f"conflict/{case.mutation_id}/{int(self._clock().timestamp() * 1000)}"
        try:
            self._index.put(CONFLICT_AUDIT_COLLECTION, key, case.model_dump_json().encode("utf-8"))
            self._index.trim(CONFLICT_AUDIT_COLLECTION, self.settings.CONFLICT_AUDIT_LIMIT)
        except StorageError as exc:
            logger.warning("Journal des conflits non persisté : %s", exc)

    def conflict_history(self) -> List[ConflictCase]:
        """Conflits résolus récemment, du plus ancien au plus récent."""
        cases = []
        for key in self._index.members(CONFLICT_AUDIT_COLLECTION):
            raw = self._index.get(key)
            if raw is None:
                continue
            try:
                cases.append(ConflictCase.model_validate_json(raw))
            except ValidationError:
                logger.warning("Entrée d'audit illisible ignorée : %s", key)
        return cases

    def _load_last_sync(self) -> Optional[datetime]:
        try:
            raw = self._store.get(LAST_SYNC_KEY)
        except StorageError as exc:
            logger.warning("Lecture de la dernière synchronisation impossible : %s", exc)
            return None
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.decode("utf-8"))
        except ValueError:
            return None

    def _save_last_sync(self, when: datetime) -> None:
        self.last_sync_at = when
        try:
            self._store.set(LAST_SYNC_KEY, when.isoformat().encode("utf-8"))
        except StorageError as exc:
            logger.warning("Horodatage de synchronisation non persisté : %s", exc)
