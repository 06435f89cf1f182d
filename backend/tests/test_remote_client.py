"""
Tests unitaires du client HTTP distant.
Le serveur est simulé par httpx.MockTransport : aucun appel réseau réel.
"""

import datetime as dt
import json
from datetime import datetime, timezone

import httpx
import pytest

from madrasa_sync.exceptions import (
    PermanentDeliveryError,
    RemoteConflictError,
    TransientDeliveryError,
)
from madrasa_sync.schemas.descriptors import AttendanceDescriptor, NamazDescriptor, RecordType
from madrasa_sync.schemas.mutation import MutationRecord
from madrasa_sync.services.remote_client import HttpRemoteClient

NOW = datetime(2025, 6, 19, 10, 0, tzinfo=timezone.utc)

DESCRIPTOR = AttendanceDescriptor(
    course_type="pu", year="1", division=None, section="A", date=dt.date(2025, 6, 19), period=2,
)


def make_client(handler):
    return HttpRemoteClient("http://remote.test", transport=httpx.MockTransport(handler))


def make_mutation(record_type=RecordType.ATTENDANCE, descriptor=DESCRIPTOR):
    return MutationRecord.build(
        record_type, descriptor, {"students": [{"id": 1, "status": "present"}]}, "device-A", NOW,
    )


def receipt(request):
    return httpx.Response(201, json={
        "id": "srv-1", "writtenAt": "2025-06-19T10:00:05+00:00", "deviceId": "device-A",
    })


# ----------------------------------------------------------------
# create
# ----------------------------------------------------------------

class TestCreate:
    def test_post_sur_la_route_du_type(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return receipt(request)

        result = make_client(handler).create(make_mutation(), {"students": []})

        assert seen["method"] == "POST"
        assert seen["path"] == "/api/attendance/sync"
        assert seen["body"]["deviceId"] == "device-A"
        assert seen["body"]["payload"] == {"students": []}
        assert seen["body"]["naturalKey"]["period"] == 2
        assert result.id == "srv-1"
        assert result.device_id == "device-A"

    def test_route_namaz(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return receipt(request)

        namaz = NamazDescriptor(section="A", date=dt.date(2025, 6, 19), prayer="asr")
        make_client(handler).create(make_mutation(RecordType.NAMAZ, namaz), {})
        assert paths == ["/api/namaz-attendance/sync"]

    def test_409_conflit(self):
        client = make_client(lambda request: httpx.Response(409, json={"detail": "conflict"}))
        with pytest.raises(RemoteConflictError) as exc:
            client.create(make_mutation(), {})
        assert exc.value.status_code == 409

    def test_4xx_permanent(self):
        client = make_client(lambda request: httpx.Response(422, json={"detail": "invalide"}))
        with pytest.raises(PermanentDeliveryError) as exc:
            client.create(make_mutation(), {})
        assert exc.value.status_code == 422

    def test_5xx_transitoire(self):
        client = make_client(lambda request: httpx.Response(503))
        with pytest.raises(TransientDeliveryError):
            client.create(make_mutation(), {})

    def test_erreur_reseau_transitoire(self):
        def handler(request):
            raise httpx.ConnectError("connexion refusée", request=request)

        with pytest.raises(TransientDeliveryError):
            make_client(handler).create(make_mutation(), {})

    def test_timeout_transitoire(self):
        def handler(request):
            raise httpx.ReadTimeout("délai", request=request)

        with pytest.raises(TransientDeliveryError, match="Délai dépassé"):
            make_client(handler).create(make_mutation(), {})

    def test_reponse_invalide_permanente(self):
        client = make_client(lambda request: httpx.Response(201, json={"unexpected": True}))
        with pytest.raises(PermanentDeliveryError, match="Réponse distante invalide"):
            client.create(make_mutation(), {})


# ----------------------------------------------------------------
# fetch_by_natural_key
# ----------------------------------------------------------------

class TestFetch:
    def test_404_aucun_enregistrement(self):
        client = make_client(lambda request: httpx.Response(404))
        assert client.fetch_by_natural_key(RecordType.ATTENDANCE, DESCRIPTOR.model_dump(mode="json")) is None

    def test_corps_null_aucun_enregistrement(self):
        client = make_client(lambda request: httpx.Response(200, content=b"null"))
        assert client.fetch_by_natural_key(RecordType.ATTENDANCE, DESCRIPTOR.model_dump(mode="json")) is None

    def test_enregistrement_camel_case(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={
                "id": "srv-1",
                "deviceId": "device-B",
                "recordedAt": "2025-06-19T10:02:00+00:00",
                "writtenAt": "2025-06-19T10:10:00+00:00",
                "payload": {"students": []},
                "version": 2,
            })

        record = make_client(handler).fetch_by_natural_key(
            RecordType.ATTENDANCE, DESCRIPTOR.model_dump(mode="json"),
        )

        assert seen["path"] == "/api/attendance/by-key"
        assert "division" not in seen["params"]
        assert seen["params"]["date"] == "2025-06-19"
        assert record.device_id == "device-B"
        assert record.version == 2
        assert record.recorded_at == datetime(2025, 6, 19, 10, 2, tzinfo=timezone.utc)

    def test_5xx_transitoire(self):
        client = make_client(lambda request: httpx.Response(500))
        with pytest.raises(TransientDeliveryError):
            client.fetch_by_natural_key(RecordType.ATTENDANCE, DESCRIPTOR.model_dump(mode="json"))


# ----------------------------------------------------------------
# ping
# ----------------------------------------------------------------

class TestPing:
    def test_api_disponible(self):
        client = make_client(lambda request: httpx.Response(200, json={"status": "ok"}))
        assert client.ping() is True

    def test_api_en_erreur(self):
        client = make_client(lambda request: httpx.Response(503))
        assert client.ping() is False

    def test_reseau_indisponible(self):
        def handler(request):
            raise httpx.ConnectError("hors-ligne", request=request)

        assert make_client(handler).ping() is False
