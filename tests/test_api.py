"""HTTP surface tests through the ASGI app."""

import base64
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from zenscribe.crud.crud_user import user_crud
from zenscribe.services.auth_service import auth_service
from zenscribe.services.multipart_decoder import StreamingMultipartDecoder
from zenscribe.services.token_service import MAGIC_LINK, token_service
from zenscribe.services.transcription_service import (
    RetryPolicy, TranscriptionDispatcher, transcription_service
)

API = "/api/v1"
TRANSCRIPT = "Buongiorno, oggi parliamo della sua alimentazione."


@pytest.fixture
def speech_api(monkeypatch):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, text=TRANSCRIPT, headers={"content-type": "text/plain"})

    dispatcher = TranscriptionDispatcher(
        api_key="sk-test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_policy=RetryPolicy(max_attempts=1, base_delay=0, max_delay=0),
    )
    monkeypatch.setattr(transcription_service, "dispatcher", dispatcher)
    return calls


def consultation_payload(patient, **overrides):
    payload = {
        "patient_id": str(patient.id),
        "transcription": TRANSCRIPT,
        "duration_seconds": 5 * 60,
        "gdpr_consent": True,
        "report": {"motivo_visita": "Controllo peso", "storia_medica": "N.A."},
    }
    payload.update(overrides)
    return payload


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_has_request_headers(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert len(response.headers["X-Request-ID"]) == 8
        assert "X-Process-Time" in response.headers


class TestTranscribe:
    @pytest.mark.asyncio
    async def test_returns_json_result(self, client, doctor_headers, speech_api, multipart_body,
                                       multipart_content_type):
        body = multipart_body(b"audio-bytes", fields={"session_id": "sess-3"})
        response = await client.post(
            f"{API}/transcribe",
            content=body,
            headers={**doctor_headers, "Content-Type": multipart_content_type},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["result"] == TRANSCRIPT
        assert data["clientId"] == "sess-3"
        assert data["requestId"] == response.headers["X-Request-ID"]
        assert data["fileInfo"]["type"] == "audio/webm"
        assert data["fileInfo"]["size"] == len(b"audio-bytes")
        assert len(speech_api) == 1

    @pytest.mark.asyncio
    async def test_plain_text_result(self, client, doctor_headers, speech_api, multipart_body,
                                     multipart_content_type):
        response = await client.post(
            f"{API}/transcribe",
            content=multipart_body(b"audio-bytes"),
            headers={**doctor_headers, "Content-Type": multipart_content_type, "Accept": "text/plain"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == TRANSCRIPT

    @pytest.mark.asyncio
    async def test_base64_body(self, client, doctor_headers, speech_api, multipart_body, multipart_content_type):
        response = await client.post(
            f"{API}/transcribe",
            content=base64.b64encode(multipart_body(b"audio-bytes")),
            headers={**doctor_headers, "Content-Type": multipart_content_type, "X-Body-Encoding": "base64"},
        )
        assert response.status_code == 200
        assert response.json()["fileInfo"]["size"] == len(b"audio-bytes")

    @pytest.mark.asyncio
    async def test_missing_body(self, client, doctor_headers, speech_api, multipart_content_type):
        response = await client.post(
            f"{API}/transcribe", headers={**doctor_headers, "Content-Type": multipart_content_type}
        )
        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "no_body"
        assert data["request_id"] == response.headers["X-Request-ID"]
        assert speech_api == []

    @pytest.mark.asyncio
    async def test_wrong_content_type_as_plain_text(self, client, doctor_headers, speech_api):
        response = await client.post(
            f"{API}/transcribe",
            content=b'{"file": "x"}',
            headers={**doctor_headers, "Content-Type": "application/json", "Accept": "text/plain"},
        )
        assert response.status_code == 400
        assert response.text.startswith("Error: ")

    @pytest.mark.asyncio
    async def test_upstream_error_status_passes_through(self, client, doctor_headers, multipart_body,
                                                        multipart_content_type, monkeypatch):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Audio file is too short"}})

        monkeypatch.setattr(transcription_service, "dispatcher", TranscriptionDispatcher(
            api_key="sk-test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        ))
        response = await client.post(
            f"{API}/transcribe",
            content=multipart_body(b"a"),
            headers={**doctor_headers, "Content-Type": multipart_content_type},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "upstream_error"
        assert "too short" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_oversized_body_rejected_before_dispatch(self, client, doctor_headers, speech_api, multipart_body,
                                                           multipart_content_type, monkeypatch):
        monkeypatch.setattr(transcription_service, "decoder", StreamingMultipartDecoder(max_size=1000))
        response = await client.post(
            f"{API}/transcribe",
            content=multipart_body(b"z" * 100 * 1024),
            headers={**doctor_headers, "Content-Type": multipart_content_type},
        )
        assert response.status_code == 413
        assert response.json()["code"] == "size_limit"
        assert speech_api == []

    @pytest.mark.asyncio
    async def test_exhausted_minutes_block_upload(self, client, doctor_headers, patient, speech_api,
                                                  multipart_body, multipart_content_type):
        created = await client.post(
            f"{API}/consultations/",
            json=consultation_payload(patient, duration_seconds=30 * 60),
            headers=doctor_headers,
        )
        assert created.status_code == 201

        response = await client.post(
            f"{API}/transcribe",
            content=multipart_body(b"audio-bytes"),
            headers={**doctor_headers, "Content-Type": multipart_content_type},
        )
        assert response.status_code == 402
        assert response.json()["code"] == "quota_exceeded"
        assert speech_api == []

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client, multipart_body, multipart_content_type):
        response = await client.post(
            f"{API}/transcribe", content=multipart_body(b"a"), headers={"Content-Type": multipart_content_type}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, client):
        response = await client.get(f"{API}/transcribe")
        assert response.status_code == 405

    @pytest.mark.asyncio
    async def test_options(self, client):
        response = await client.options(f"{API}/transcribe")
        assert response.status_code == 204


class TestAuth:
    @pytest.mark.asyncio
    async def test_register_and_login(self, client):
        response = await client.post(
            f"{API}/auth/register",
            json={"email": "Nuova@ZenScribe.it", "password": "segreta123", "full_name": "Nuova Dottoressa"},
        )
        assert response.status_code == 201
        assert response.json()["email"] == "nuova@zenscribe.it"
        assert response.json()["subscription_tier"] == "free"

        response = await client.post(
            f"{API}/auth/login", data={"username": "nuova@zenscribe.it", "password": "segreta123"}
        )
        assert response.status_code == 200
        tokens = response.json()

        response = await client.get(
            f"{API}/users/me", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert response.status_code == 200
        assert response.json()["role"] == "doctor"

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, client, doctor):
        response = await client.post(
            f"{API}/auth/register", json={"email": "doctor@zenscribe.it", "password": "password123"}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, doctor):
        response = await client.post(
            f"{API}/auth/login", data={"username": "doctor@zenscribe.it", "password": "sbagliata"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"

    @pytest.mark.asyncio
    async def test_outage_degrades_to_magic_link(self, client, doctor):
        outage = OperationalError("SELECT", {}, Exception("database error granting user"))
        with patch.object(user_crud, "get_by_email", AsyncMock(side_effect=outage)), \
                patch.object(auth_service, "send_magic_link", AsyncMock(return_value=True)):
            response = await client.post(
                f"{API}/auth/login", data={"username": "doctor@zenscribe.it", "password": "password123"}
            )

        assert response.status_code == 503
        assert response.json()["magic_link_sent"] is True
        assert response.json()["attempts"] == 3

    @pytest.mark.asyncio
    async def test_magic_link_verify(self, client, doctor):
        token = token_service.create_token("doctor@zenscribe.it", MAGIC_LINK, timedelta(minutes=5))
        response = await client.post(f"{API}/auth/magic-link/verify", json={"token": token})
        assert response.status_code == 200
        assert "access_token" in response.json()

    @pytest.mark.asyncio
    async def test_refresh(self, client, doctor):
        tokens = token_service.create_token_pair(doctor)
        response = await client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200

        response = await client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert response.status_code == 401


class TestPatientsAndConsultations:
    @pytest.mark.asyncio
    async def test_create_and_list_patients(self, client, doctor_headers):
        response = await client.post(
            f"{API}/patients/",
            json={"first_name": " Luca ", "last_name": "Neri", "birth_date": "1990-01-20", "gender": "M",
                  "email": ""},
            headers=doctor_headers,
        )
        assert response.status_code == 201
        assert response.json()["first_name"] == "Luca"
        assert response.json()["email"] is None

        response = await client.get(f"{API}/patients/", headers=doctor_headers)
        assert [p["last_name"] for p in response.json()] == ["Neri"]

    @pytest.mark.asyncio
    async def test_other_clinician_cannot_read_patient(self, client, patient, other_doctor_headers):
        response = await client.get(f"{API}/patients/{patient.id}", headers=other_doctor_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_lists_every_clinicians_rows(self, client, patient, doctor_headers, admin_headers,
                                                     other_doctor_headers):
        created = await client.post(
            f"{API}/consultations/", json=consultation_payload(patient), headers=doctor_headers
        )
        assert created.status_code == 201

        patients = (await client.get(f"{API}/patients/", headers=admin_headers)).json()
        assert [p["id"] for p in patients] == [str(patient.id)]
        consultations = (await client.get(f"{API}/consultations/", headers=admin_headers)).json()
        assert [c["patient_id"] for c in consultations] == [str(patient.id)]

        assert (await client.get(f"{API}/patients/", headers=other_doctor_headers)).json() == []
        assert (await client.get(f"{API}/consultations/", headers=other_doctor_headers)).json() == []

    @pytest.mark.asyncio
    async def test_create_consultation_charges_minutes(self, client, doctor_headers, patient):
        response = await client.post(
            f"{API}/consultations/", json=consultation_payload(patient), headers=doctor_headers
        )
        assert response.status_code == 201
        data = response.json()
        assert data["minutes_charged"] == 5
        assert data["consultation"]["motivo_visita"] == "Controllo peso"
        assert data["consultation"]["storia_medica"] is None
        assert "Storia medica e familiare mancante" in data["warnings"]

        status = (await client.get(f"{API}/subscriptions/me", headers=doctor_headers)).json()
        assert status["minutes_used"] == 5
        assert status["minutes_remaining"] == 25

    @pytest.mark.asyncio
    async def test_consultation_over_quota_is_rejected(self, client, doctor_headers, patient):
        response = await client.post(
            f"{API}/consultations/",
            json=consultation_payload(patient, duration_seconds=31 * 60),
            headers=doctor_headers,
        )
        assert response.status_code == 402
        assert response.json()["code"] == "quota_exceeded"

        response = await client.get(f"{API}/patients/{patient.id}/consultations", headers=doctor_headers)
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_zero_duration_consultation_is_free(self, client, doctor_headers, patient):
        response = await client.post(
            f"{API}/consultations/",
            json=consultation_payload(patient, duration_seconds=0),
            headers=doctor_headers,
        )
        assert response.status_code == 201
        assert response.json()["minutes_charged"] == 0

    @pytest.mark.asyncio
    async def test_gdpr_consent_required(self, client, doctor_headers, patient):
        response = await client.post(
            f"{API}/consultations/",
            json=consultation_payload(patient, gdpr_consent=False),
            headers=doctor_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_edit_report_field(self, client, doctor_headers, patient):
        created = await client.post(
            f"{API}/consultations/", json=consultation_payload(patient), headers=doctor_headers
        )
        consultation_id = created.json()["consultation"]["id"]

        response = await client.patch(
            f"{API}/consultations/{consultation_id}/report",
            json={"field": "punti_critici", "value": "Spuntini serali"},
            headers=doctor_headers,
        )
        assert response.status_code == 200
        assert response.json()["punti_critici"] == "Spuntini serali"

        report = (await client.get(f"{API}/consultations/{consultation_id}/report", headers=doctor_headers)).json()
        assert report["punti_critici"] == "Spuntini serali"
        assert report["storia_medica"] == "N.A."

    @pytest.mark.asyncio
    async def test_longer_duration_charges_difference(self, client, doctor_headers, patient):
        created = await client.post(
            f"{API}/consultations/", json=consultation_payload(patient), headers=doctor_headers
        )
        consultation_id = created.json()["consultation"]["id"]

        response = await client.patch(
            f"{API}/consultations/{consultation_id}", json={"duration_seconds": 12 * 60}, headers=doctor_headers
        )
        assert response.status_code == 200

        status = (await client.get(f"{API}/subscriptions/me", headers=doctor_headers)).json()
        assert status["minutes_used"] == 12

    @pytest.mark.asyncio
    async def test_shortening_does_not_free_minutes(self, client, doctor_headers, patient):
        created = await client.post(
            f"{API}/consultations/",
            json=consultation_payload(patient, duration_seconds=30 * 60),
            headers=doctor_headers,
        )
        consultation_id = created.json()["consultation"]["id"]

        response = await client.patch(
            f"{API}/consultations/{consultation_id}", json={"duration_seconds": 1}, headers=doctor_headers
        )
        assert response.status_code == 200

        status = (await client.get(f"{API}/subscriptions/me", headers=doctor_headers)).json()
        assert status["minutes_used"] == 30

        response = await client.post(
            f"{API}/consultations/",
            json=consultation_payload(patient, duration_seconds=29 * 60),
            headers=doctor_headers,
        )
        assert response.status_code == 402

    @pytest.mark.asyncio
    async def test_report_fields(self, client):
        response = await client.get(f"{API}/consultations/report-fields")
        fields = response.json()
        assert len(fields) == 9
        assert fields[0] == {
            "field": "motivo_visita", "label": "Motivo della Visita", "heading": "1. Motivo della visita"
        }

    @pytest.mark.asyncio
    async def test_deleting_patient_removes_consultations(self, client, doctor_headers, patient):
        created = await client.post(
            f"{API}/consultations/", json=consultation_payload(patient), headers=doctor_headers
        )
        consultation_id = created.json()["consultation"]["id"]

        response = await client.delete(f"{API}/patients/{patient.id}", headers=doctor_headers)
        assert response.status_code == 204

        response = await client.get(f"{API}/consultations/{consultation_id}", headers=doctor_headers)
        assert response.status_code == 404


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_plans(self, client):
        plans = (await client.get(f"{API}/subscriptions/plans")).json()
        assert [(p["name"], p["monthly_minutes"]) for p in plans] == [
            ("free", 30), ("basic", 600), ("advanced", 1200), ("enterprise", None)
        ]

    @pytest.mark.asyncio
    async def test_check_minutes(self, client, doctor_headers):
        response = await client.post(
            f"{API}/subscriptions/check", json={"duration_seconds": 31 * 60}, headers=doctor_headers
        )
        assert response.json() == {
            "allowed": False, "minutes_required": 31, "minutes_remaining": 30, "state": "checked"
        }

    @pytest.mark.asyncio
    async def test_admin_changes_plan(self, client, admin_headers, doctor, doctor_headers):
        response = await client.put(
            f"{API}/subscriptions/users/{doctor.id}", json={"tier": "basic"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["monthly_minutes"] == 600

        response = await client.put(
            f"{API}/subscriptions/users/{doctor.id}", json={"tier": "basic"}, headers=doctor_headers
        )
        assert response.status_code == 403


class TestAdmin:
    @pytest.mark.asyncio
    async def test_list_users_with_usage(self, client, admin_headers, patient):
        response = await client.get(f"{API}/users/", headers=admin_headers)
        assert response.status_code == 200
        by_email = {u["email"]: u for u in response.json()}
        assert by_email["doctor@zenscribe.it"]["patient_count"] == 1
        assert by_email["doctor@zenscribe.it"]["monthly_minutes"] == 30

    @pytest.mark.asyncio
    async def test_doctor_cannot_list_users(self, client, doctor_headers):
        response = await client.get(f"{API}/users/", headers=doctor_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_deactivates_user(self, client, admin_headers, doctor, doctor_headers):
        response = await client.patch(
            f"{API}/users/{doctor.id}", json={"is_active": False}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        response = await client.get(f"{API}/users/me", headers=doctor_headers)
        assert response.status_code == 403
