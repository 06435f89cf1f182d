"""
Client HTTP du Remote Record Store (API CRUD distante, une route par type d'enregistrement).

Interprétation des réponses :
- 2xx                        → succès
- 404 sur lecture par clé    → aucun enregistrement distant
- 409                        → RemoteConflictError (écriture concurrente)
- autre 4xx                  → PermanentDeliveryError (pas de nouvelle tentative)
- 5xx, timeout, erreur réseau → TransientDeliveryError (nouvelle tentative avec backoff)
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from madrasa_sync.exceptions import (
    PermanentDeliveryError,
    RemoteConflictError,
    TransientDeliveryError,
)
from madrasa_sync.schemas.conflict import DeliveryReceipt, RemoteRecord
from madrasa_sync.schemas.descriptors import RecordType
from madrasa_sync.schemas.mutation import MutationRecord

logger = logging.getLogger(__name__)

RECORD_ENDPOINTS: Dict[RecordType, str] = {
    RecordType.ATTENDANCE: "/api/attendance",
    RecordType.NAMAZ: "/api/namaz-attendance",
    RecordType.LEAVE: "/api/leaves",
    RecordType.REMARK: "/api/remarks",
    RecordType.TIMETABLE: "/api/timetable",
    RecordType.STUDENT: "/api/students",
}

HEALTH_ENDPOINT = "/api/health"


class RemoteRecordStore(Protocol):
    def create(self, mutation: MutationRecord, payload: Dict[str, Any]) -> DeliveryReceipt:
        ...

    def fetch_by_natural_key(
        self, record_type: RecordType, descriptor: Dict[str, Any]
    ) -> Optional[RemoteRecord]:
        ...

    def ping(self) -> bool:
        ...

    def close(self) -> None:
        ...


class HttpRemoteClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def create(self, mutation: MutationRecord, payload: Dict[str, Any]) -> DeliveryReceipt:
        """Envoie la mutation (payload éventuellement fusionné) au serveur."""
        body = {
            "mutationId": mutation.id,
            "recordType": mutation.record_type.value,
            "naturalKey": mutation.origin_descriptor,
            "deviceId": mutation.device_id,
            "recordedAt": mutation.created_at.isoformat(),
            "version": mutation.version,
            "payload": payload,
        }
        endpoint = RECORD_ENDPOINTS[mutation.record_type]
        response = self._send("POST", f"{endpoint}/sync", json=body)
        receipt = self._parse(DeliveryReceipt, response)
        logger.debug("Mutation %s livrée (id distant %s)", mutation.id, receipt.id)
        return receipt

    def fetch_by_natural_key(
        self, record_type: RecordType, descriptor: Dict[str, Any]
    ) -> Optional[RemoteRecord]:
        """Dernière version distante pour une clé naturelle, ou None."""
        params = {k: v for k, v in descriptor.items() if v is not None}
        endpoint = RECORD_ENDPOINTS[RecordType(record_type)]
        response = self._send("GET", f"{endpoint}/by-key", params=params, not_found_ok=True)
        if response is None or not response.content or response.content.strip() == b"null":
            return None
        return self._parse(RemoteRecord, response)

    def ping(self) -> bool:
        """Sonde de connectivité : True si l'API répond 2xx."""
        try:
            response = self._client.get(HEALTH_ENDPOINT)
        except httpx.HTTPError as exc:
            logger.debug("Sonde réseau en échec : %s", exc)
            return False
        return response.is_success

    def close(self) -> None:
        self._client.close()

    def _send(self, method: str, url: str, not_found_ok: bool = False, **kwargs) -> Optional[httpx.Response]:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientDeliveryError(f"Délai dépassé ({method} {url})") from exc
        except httpx.TransportError as exc:
            raise TransientDeliveryError(f"Erreur réseau ({method} {url}) : {exc}") from exc

        status = response.status_code
        if status == 404 and not_found_ok:
            return None
        if status == 409:
            raise RemoteConflictError(f"Écriture concurrente signalée ({method} {url})", status)
        if 400 <= status < 500:
            raise PermanentDeliveryError(
                f"Requête refusée {status} ({method} {url}) : {response.text[:200]}", status
            )
        if status >= 500:
            raise TransientDeliveryError(f"Erreur serveur {status} ({method} {url})", status)
        return response

    def _parse(self, model, response: httpx.Response):
        try:
            return model.model_validate(response.json())
        except ValueError as exc:
            # JSON invalide ou champs manquants
            raise PermanentDeliveryError(
                f"Réponse distante invalide : {exc}", response.status_code
            ) from exc
