from __future__ import annotations

import copy
import json
import os
from collections.abc import Callable, Iterator
from pathlib import Path
import sys
from typing import Any

os.environ.setdefault("CAPTABLE_ENABLE_TRACING", "false")

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from captable.core.config import Settings
from captable.core.security import BearerCredential
from captable.models import Base
from captable.services.persistence import PersistenceClient

CLIENT_ID = "client-1"
PERSISTENCE_URL = "http://persistence.test"
ACCESS_TOKEN = jwt.encode(
    {"sub": "analyst-1", "email": "analyst@example.com"}, "test-secret", algorithm="HS256"
)


class InMemoryPersistenceService:
    """Persistence service stand-in served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.companies: dict[str, dict[str, dict[str, Any]]] = {}
        self.persons: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.requests: list[tuple[str, str]] = []
        self.writes: list[tuple[str, dict[str, Any]]] = []
        self.fail_write_at: int | None = None
        self.fail_status = 500
        self.created: list[dict[str, Any]] = []

    def add_company(self, client_id: str, document: dict[str, Any]) -> None:
        self.companies.setdefault(client_id, {})[document["_id"]] = copy.deepcopy(document)

    def add_person(self, client_id: str, company_id: str, document: dict[str, Any]) -> None:
        self.persons.setdefault((client_id, company_id), []).append(copy.deepcopy(document))

    def company(self, client_id: str, company_id: str) -> dict[str, Any]:
        return self.companies[client_id][company_id]

    def _create(self, prefix: str, request: httpx.Request) -> dict[str, Any]:
        document = json.loads(request.content)
        document["_id"] = f"{prefix}-new-{len(self.created) + 1}"
        self.created.append(document)
        return document

    def count(self, method: str, suffix: str = "") -> int:
        return sum(1 for item in self.requests if item[0] == method and item[1].endswith(suffix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return httpx.Response(401, json={"message": "Unauthorized"})

        parts = request.url.path.strip("/").split("/")
        if parts[:2] != ["api", "client"] or len(parts) < 4 or parts[3] != "company":
            return httpx.Response(404, json={"message": "Unknown route"})
        client_id = parts[2]
        companies = self.companies.setdefault(client_id, {})

        if len(parts) == 4:
            if request.method == "GET":
                return httpx.Response(200, json={"data": list(companies.values())})
            if request.method == "POST":
                document = self._create("co", request)
                companies[document["_id"]] = document
                return httpx.Response(201, json={"data": document})
            return httpx.Response(405)

        company_id = parts[4]
        if len(parts) == 5:
            if company_id not in companies:
                return httpx.Response(404, json={"message": f"Company {company_id} not found"})
            if request.method == "GET":
                return httpx.Response(200, json={"data": companies[company_id]})
            if request.method == "PUT":
                if self.fail_write_at is not None and len(self.writes) == self.fail_write_at:
                    self.fail_write_at = None
                    return httpx.Response(self.fail_status, json={"message": "upstream unavailable"})
                document = json.loads(request.content)
                companies[company_id] = document
                self.writes.append((company_id, document))
                return httpx.Response(200, json={"data": document})
            if request.method == "DELETE":
                del companies[company_id]
                return httpx.Response(204)
            return httpx.Response(405)

        persons = self.persons.setdefault((client_id, company_id), [])
        if len(parts) == 6:
            if request.method == "POST":
                document = self._create("p", request)
                persons.append(document)
                return httpx.Response(201, json={"data": document})
            return httpx.Response(200, json={"data": persons})
        person_id = parts[6]
        if request.method == "DELETE":
            self.persons[(client_id, company_id)] = [item for item in persons if item["_id"] != person_id]
            return httpx.Response(204)
        return httpx.Response(405)


def seed_client(service: InMemoryPersistenceService) -> None:
    """Three companies sharing people, plus a legacy percentage company."""

    service.add_company(
        CLIENT_ID,
        {
            "_id": "co-x",
            "name": "Xenon Holdings",
            "registrationNumber": "X-001",
            "totalShares": [
                {"totalShares": 1000, "class": "A", "type": "Ordinary"},
                {"totalShares": 500, "class": "B", "type": "Ordinary"},
            ],
            "shareHolders": [
                {
                    "personId": {"_id": "p-alice", "name": "Alice Moreau"},
                    "sharesData": [{"totalShares": 400, "shareClass": "A", "shareType": "Ordinary"}],
                }
            ],
            "shareHoldingCompanies": [
                {
                    "companyId": "co-y",
                    "sharesData": [{"totalShares": 100, "shareClass": "B", "shareType": "Ordinary"}],
                }
            ],
            "representationalSchema": [
                {"personId": "p-alice", "role": ["Shareholder", "Director"]},
            ],
            "representationalCompany": [],
            "website": "https://xenon.example",
        },
    )
    service.add_company(
        CLIENT_ID,
        {
            "_id": "co-y",
            "name": "Yarrow Ventures",
            "totalShares": [{"totalShares": 100, "class": "General", "type": "Ordinary"}],
            "shareHolders": [
                {
                    "personId": {"_id": "p-dan", "name": "Dan Okafor"},
                    "sharesData": [{"totalShares": 50, "shareClass": "General", "shareType": "Ordinary"}],
                }
            ],
            "representationalSchema": [],
        },
    )
    service.add_company(
        CLIENT_ID,
        {
            "_id": "co-z",
            "name": "Zephyr Labs",
            "totalShares": [{"totalShares": 10, "class": "A", "type": "Ordinary"}],
            "shareHolders": [],
            "representationalSchema": [{"personId": "p-bob", "role": ["Director"]}],
        },
    )
    service.add_company(
        CLIENT_ID,
        {
            "_id": "co-legacy",
            "name": "Legacy Trading",
            "totalShares": 100000,
            "shareHolders": [{"personId": "p-erin", "sharePercentage": 60}],
        },
    )
    for person in (
        {"_id": "p-alice", "name": "Alice Moreau", "email": "alice@example.com", "nationality": "FR"},
        {"_id": "p-bob", "name": "Bob Lind", "email": "bob@example.com", "role": ["Director"]},
        {"_id": "p-carol", "name": "Carol Haines", "phoneNumber": "5550101999"},
    ):
        service.add_person(CLIENT_ID, "co-x", person)
    service.add_person(CLIENT_ID, "co-y", {"_id": "p-dan", "name": "Dan Okafor"})
    service.add_person(CLIENT_ID, "co-legacy", {"_id": "p-erin", "name": "Erin Vale"})
    service.add_person(CLIENT_ID, "co-legacy", {"_id": "p-frank", "name": "Frank Becker"})


@pytest.fixture()
def persistence() -> InMemoryPersistenceService:
    service = InMemoryPersistenceService()
    seed_client(service)
    return service


@pytest.fixture()
def persistence_client(persistence: InMemoryPersistenceService) -> PersistenceClient:
    transport = httpx.MockTransport(persistence.handler)
    return PersistenceClient(PERSISTENCE_URL, client=httpx.AsyncClient(transport=transport))


@pytest.fixture()
def credential() -> BearerCredential:
    return BearerCredential(token=ACCESS_TOKEN)


@pytest.fixture()
def audit_session_factory() -> Iterator[Callable[[], Session]]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture()
def app(persistence_client: PersistenceClient, audit_session_factory: Callable[[], Session]) -> FastAPI:
    from captable.main import create_application

    settings = Settings(enable_tracing=False, enable_metrics=True, enable_audit_log=True)
    return create_application(
        settings,
        persistence_client=persistence_client,
        audit_session_factory=audit_session_factory,
    )


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ACCESS_TOKEN}"}
