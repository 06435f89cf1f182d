"""
Exceptions métier du noyau de synchronisation.

Taxonomie :
- StorageError        : échec d'écriture/lecture du stockage local (quota, disque)
- QueueCorruptedError : file persistée illisible → état local à réinitialiser (fatal)
- RecordLockedError   : saisie refusée, la séance est déjà verrouillée pour la journée
- TransientDeliveryError / PermanentDeliveryError / RemoteConflictError : livraison distante
"""


class SyncError(Exception):
    """Base de toutes les erreurs du noyau de synchronisation."""


class StorageError(SyncError):
    """Le stockage local a refusé une opération."""


class QueueCorruptedError(SyncError):
    """La file persistée ne peut pas être relue."""


class RecordLockedError(SyncError):
    """Une présence a déjà été enregistrée pour cette clé aujourd'hui."""

    def __init__(self, natural_key: str):
        self.natural_key = natural_key
        super().__init__(f"Présence déjà enregistrée et verrouillée : {natural_key}")


class DeliveryError(SyncError):
    """Échec de livraison vers le Remote Record Store."""

    def __init__(self, message: str, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class TransientDeliveryError(DeliveryError):
    """Erreur réseau, timeout ou 5xx : on réessaie."""


class PermanentDeliveryError(DeliveryError):
    """Réponse 4xx ou payload invalide : aucune nouvelle tentative automatique."""


class RemoteConflictError(DeliveryError):
    """Le serveur signale (409) une écriture concurrente sur la même clé naturelle."""
