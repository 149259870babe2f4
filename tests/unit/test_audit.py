from __future__ import annotations

import json
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from captable.core.security import BearerCredential, actor_from_credential, require_credential
from captable.domain.errors import NotAuthenticatedError
from captable.models import OwnershipAuditLog
from captable.obs import AuditMiddleware, MutationAuditRecord, MutationAuditRecorder


def test_recorder_persists_masked_payload(audit_session_factory, caplog: pytest.LogCaptureFixture) -> None:
    recorder = MutationAuditRecorder(audit_session_factory, logger=logging.getLogger("test.audit"))
    record = MutationAuditRecord(
        client_id="client-1",
        company_id="co-x",
        action="GrantRoles",
        outcome="applied",
        actor="analyst@example.com",
        resource_type="person",
        resource_id="p-bob",
        payload={"email": "bob@example.com", "note": "contact bob@example.com"},
    )

    with caplog.at_level(logging.INFO, logger="test.audit"):
        recorder.record(record)

    logged = json.loads(caplog.records[-1].getMessage())
    assert logged["payload"]["email"] == "***.com"
    session = audit_session_factory()
    try:
        stored = session.scalars(select(OwnershipAuditLog)).one()
    finally:
        session.close()
    assert stored.action == "GrantRoles"
    assert stored.payload["note"] == "c***@example.com"
    assert stored.created_at is not None


def test_recorder_survives_database_failure(caplog: pytest.LogCaptureFixture) -> None:
    class BrokenSession:
        rolled_back = False

        def add(self, _item: object) -> None:
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        def commit(self) -> None:  # pragma: no cover - never reached
            raise AssertionError

        def rollback(self) -> None:
            BrokenSession.rolled_back = True

        def close(self) -> None:
            return None

    recorder = MutationAuditRecorder(BrokenSession, logger=logging.getLogger("test.audit"))

    with caplog.at_level(logging.ERROR, logger="test.audit"):
        recorder.record(MutationAuditRecord(client_id="c", company_id="co", action="SetRoles", outcome="applied"))

    assert BrokenSession.rolled_back
    assert any(item.getMessage() == "failed to persist audit record" for item in caplog.records)


def test_request_middleware_masks_body_and_sets_request_id(caplog: pytest.LogCaptureFixture) -> None:
    app = FastAPI()
    app.add_middleware(AuditMiddleware, logger=logging.getLogger("test.request-audit"))

    @app.post("/echo")
    def echo(payload: dict) -> dict:
        return payload

    with caplog.at_level(logging.INFO, logger="test.request-audit"):
        response = TestClient(app).post(
            "/echo", json={"phoneNumber": "5550101999", "name": "Carol"}, headers={"X-Request-ID": "req-1"}
        )

    assert response.status_code == 200
    assert response.json()["name"] == "Carol"
    assert response.headers["X-Request-ID"] == "req-1"
    logged = json.loads(caplog.records[-1].getMessage())
    assert logged["body"] == {"phoneNumber": "***1999", "name": "Carol"}


def test_request_trail_names_the_cap_table(caplog: pytest.LogCaptureFixture) -> None:
    app = FastAPI()
    app.add_middleware(AuditMiddleware, logger=logging.getLogger("test.request-audit"))

    @app.get("/clients/{client_id}/companies/{company_id}")
    def read(client_id: str, company_id: str) -> dict:
        return {"client": client_id, "company": company_id}

    with caplog.at_level(logging.INFO, logger="test.request-audit"):
        response = TestClient(app).get("/clients/client-1/companies/co-x", params={"email": "a@b.io"})

    logged = json.loads(caplog.records[-1].getMessage())
    assert response.headers["X-Request-ID"] == logged["request_id"]
    assert (logged["client_id"], logged["company_id"]) == ("client-1", "co-x")
    assert logged["query"] == {"email": "***b.io"}
    assert logged["body"] is None


def test_actor_is_read_from_token_claims() -> None:
    token = jwt.encode({"sub": "user-7", "preferred_username": "ops"}, "secret", algorithm="HS256")

    assert actor_from_credential(BearerCredential(token=token)) == "ops"
    assert actor_from_credential(BearerCredential(token="opaque")) is None
    assert "opaque" not in repr(BearerCredential(token="opaque"))


def test_require_credential_rejects_blank_token() -> None:
    with pytest.raises(NotAuthenticatedError):
        require_credential("  ")
    assert require_credential(" abc ").token == "abc"
