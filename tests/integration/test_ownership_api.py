from __future__ import annotations

from sqlalchemy import select

from captable.models import OwnershipAuditLog

BASE = "/api/clients/client-1/companies/co-x"


def _allocation(holder_id: str, **shares: int) -> dict:
    return {"holder": {"type": "person", "id": holder_id}, "mode": "class", **shares}


def test_shareholder_and_representative_views(client, auth_headers) -> None:
    response = client.get(f"{BASE}/shareholders", headers=auth_headers)

    assert response.status_code == 200
    shareholders = response.json()
    assert shareholders[0]["name"] == "Alice Moreau"
    assert shareholders[0]["percentage"] == "26.67"
    assert shareholders[0]["shares"] == {"A": 400}
    assert shareholders[0]["roles"] == ["Shareholder", "Director"]
    assert shareholders[0]["is_ubo"] is True

    representatives = client.get(f"{BASE}/representatives", headers=auth_headers).json()
    assert [item["holder"]["id"] for item in representatives] == ["p-alice"]
    assert representatives[0]["holds_shares"] is True


def test_ubo_ranking(client, auth_headers) -> None:
    body = client.get(f"{BASE}/ubo", headers=auth_headers).json()

    assert body["ubo"]["holder"] == {"type": "person", "id": "p-alice"}
    assert body["ubo"]["share_class"] == "A"
    assert [item["holder"]["id"] for item in body["ranking"]] == ["p-alice", "co-y"]


def test_missing_token_is_unauthorized(client) -> None:
    response = client.get(f"{BASE}/shareholders")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_unknown_company_is_not_found(client, auth_headers) -> None:
    response = client.get("/api/clients/client-1/companies/co-missing/shareholders", headers=auth_headers)

    assert response.status_code == 404


def test_bulk_allocation_over_limit_is_rejected(client, auth_headers, persistence) -> None:
    response = client.post(
        f"{BASE}/shareholders",
        json={"allocations": [_allocation("p-bob", class_a=400), _allocation("p-carol", class_a=300)]},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert response.json()["detail"]["errors"] == {
        "class_A": "Exceeds available Class A shares by 100. Available: 600"
    }
    assert persistence.writes == []


def test_bulk_allocation_applies_and_audits(client, auth_headers, audit_session_factory) -> None:
    response = client.post(
        f"{BASE}/shareholders",
        json={"allocations": [_allocation("p-bob", class_a=300), _allocation("p-carol", class_b=200)]},
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["command"] == "SetShareholdings"
    assert body["version"] == 1
    assert [holder["id"] for holder in body["holders"]] == ["p-bob", "p-carol"]
    names = [item["name"] for item in body["shareholders"]]
    assert names[:2] == ["Alice Moreau", "Bob Lind"]
    assert "Carol Haines" in names

    session = audit_session_factory()
    try:
        records = session.scalars(select(OwnershipAuditLog)).all()
    finally:
        session.close()
    assert [(record.action, record.outcome) for record in records] == [("SetShareholdings", "applied")]


def test_partial_bulk_failure_reports_succeeded_holders(client, auth_headers, persistence) -> None:
    persistence.fail_write_at = 1

    response = client.post(
        f"{BASE}/shareholders",
        json={"allocations": [_allocation("p-bob", class_a=10), _allocation("p-carol", class_a=10)]},
        headers=auth_headers,
    )

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["succeeded"] == [{"type": "person", "id": "p-bob"}]
    assert detail["failed"] == {"type": "person", "id": "p-carol"}
    assert detail["total"] == 2

    shareholders = client.get(f"{BASE}/shareholders", headers=auth_headers).json()
    assert {item["holder"]["id"] for item in shareholders} == {"p-alice", "co-y", "p-bob"}


def test_mixed_modes_for_one_holder_are_rejected(client, auth_headers) -> None:
    response = client.post(
        f"{BASE}/shareholders",
        json={"allocations": [_allocation("p-bob", class_a=10, ordinary=5)]},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert "holder:person:p-bob" in response.json()["detail"]["errors"]


def test_grant_and_revoke_roles(client, auth_headers, persistence) -> None:
    granted = client.post(
        f"{BASE}/representatives",
        json={"grants": [{"holder": {"type": "person", "id": "p-carol"}, "roles": ["Secretary"]}]},
        headers=auth_headers,
    )
    assert granted.status_code == 200
    carol = next(item for item in granted.json()["representatives"] if item["holder"]["id"] == "p-carol")
    assert carol["roles"] == ["Secretary"]

    revoked = client.delete(f"{BASE}/representatives/person/p-alice/roles/Director", headers=auth_headers)
    assert revoked.status_code == 200
    assert [item["holder"]["id"] for item in revoked.json()["representatives"]] == ["p-carol"]
    assert any(item["holder"]["id"] == "p-alice" for item in revoked.json()["shareholders"])

    rejected = client.delete(f"{BASE}/representatives/person/p-alice/roles/Shareholder", headers=auth_headers)
    assert rejected.status_code == 422


def test_set_roles_requires_a_governance_role(client, auth_headers) -> None:
    response = client.put(
        f"{BASE}/representatives/person/p-carol",
        json={"roles": ["Shareholder"]},
        headers=auth_headers,
    )

    assert response.status_code == 422


def test_remove_shareholding_keeps_governance_roles(client, auth_headers) -> None:
    response = client.delete(f"{BASE}/shareholders/person/p-alice", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert all(item["holder"]["id"] != "p-alice" for item in body["shareholders"])
    alice = next(item for item in body["representatives"] if item["holder"]["id"] == "p-alice")
    assert alice["roles"] == ["Director"]
    assert alice["holds_shares"] is False


def test_delete_record_in_use_is_conflict(client, auth_headers, persistence) -> None:
    blocked = client.delete(f"{BASE}/records/person/p-bob", headers=auth_headers)

    assert blocked.status_code == 409
    assert "Zephyr Labs" in blocked.json()["detail"]["message"]

    deleted = client.delete(f"{BASE}/records/person/p-carol", headers=auth_headers)
    assert deleted.status_code == 204
    assert all(item["_id"] != "p-carol" for item in persistence.persons[("client-1", "co-x")])


def test_candidate_listings(client, auth_headers) -> None:
    response = client.get(f"{BASE}/representative-candidates", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["complete"] is True
    dan = next(item for item in body["candidates"] if item["holder"]["id"] == "p-dan")
    assert dan["source"] == "subsidiary"
    assert dan["source_company_name"] == "Yarrow Ventures"
    assert dan["shareholder_in"] == [{"company_id": "co-y", "company_name": "Yarrow Ventures"}]
    assert all(item["holder"]["id"] not in {"p-alice", "p-bob", "co-x"} for item in body["candidates"])

    companies = client.get(f"{BASE}/shareholder-company-candidates", headers=auth_headers).json()
    assert [item["name"] for item in companies["candidates"]] == ["Legacy Trading", "Zephyr Labs"]


def test_legacy_company_uses_percentage_stakes(client, auth_headers) -> None:
    base = "/api/clients/client-1/companies/co-legacy"

    too_much = client.post(
        f"{base}/shareholders",
        json={"allocations": [{"holder": {"type": "person", "id": "p-frank"}, "mode": "percentage", "percentage": "45"}]},
        headers=auth_headers,
    )
    assert too_much.status_code == 422
    assert too_much.json()["detail"]["errors"] == {
        "percentage": "Total shares cannot exceed 100%. Maximum available: 40.00%"
    }

    accepted = client.post(
        f"{base}/shareholders",
        json={"allocations": [{"holder": {"type": "person", "id": "p-frank"}, "mode": "percentage", "percentage": "40"}]},
        headers=auth_headers,
    )
    assert accepted.status_code == 200
    assert {item["percentage"] for item in accepted.json()["shareholders"]} == {"60.00", "40.00"}


def test_refresh_refetches_company(client, auth_headers, persistence) -> None:
    client.get(f"{BASE}/shareholders", headers=auth_headers)
    client.get(f"{BASE}/shareholders", headers=auth_headers)
    assert persistence.count("GET", "/company/co-x") == 1

    assert client.post(f"{BASE}/refresh").status_code == 204
    client.get(f"{BASE}/shareholders", headers=auth_headers)
    assert persistence.count("GET", "/company/co-x") == 2


def test_health_and_metrics(client) -> None:
    assert client.get("/api/healthz").json()["status"] == "ok"
    ready = client.get("/api/readyz")
    assert ready.status_code == 200
    assert ready.json()["audit_store"] == "ok"

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "ownership_mutations_total" in metrics.text


def test_expired_token_mid_batch_reports_progress(client, auth_headers, persistence) -> None:
    persistence.fail_write_at = 1
    persistence.fail_status = 401

    response = client.post(
        f"{BASE}/shareholders",
        json={"allocations": [_allocation("p-bob", class_a=10), _allocation("p-carol", class_a=10)]},
        headers=auth_headers,
    )

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    detail = response.json()["detail"]
    assert detail["succeeded"] == [{"type": "person", "id": "p-bob"}]
    assert detail["failed"] == {"type": "person", "id": "p-carol"}
    assert detail["total"] == 2


def test_unknown_holders_cannot_be_linked(client, auth_headers, persistence) -> None:
    allocated = client.post(
        f"{BASE}/shareholders", json={"allocations": [_allocation("p-ghost", class_a=10)]}, headers=auth_headers
    )
    granted = client.post(
        f"{BASE}/representatives",
        json={"grants": [{"holder": {"type": "person", "id": "p-ghost"}, "roles": ["Director"]}]},
        headers=auth_headers,
    )

    for response in (allocated, granted):
        assert response.status_code == 422
        assert list(response.json()["detail"]["errors"]) == ["holder:person:p-ghost"]
    assert persistence.writes == []


def test_create_person_and_grant_roles(client, auth_headers, persistence) -> None:
    response = client.post(
        f"{BASE}/holders",
        json={
            "record": {"type": "person", "name": "Grace Hall", "email": "grace@example.com"},
            "roles": ["Secretary"],
        },
        headers=auth_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["holders"] == [{"type": "person", "id": "p-new-1"}]
    grace = next(item for item in body["representatives"] if item["holder"]["id"] == "p-new-1")
    assert (grace["name"], grace["roles"]) == ("Grace Hall", ["Secretary"])
    assert persistence.created == [{"name": "Grace Hall", "email": "grace@example.com", "_id": "p-new-1"}]


def test_create_company_and_allocate_shares(client, auth_headers, persistence) -> None:
    response = client.post(
        f"{BASE}/holders",
        json={
            "record": {"type": "company", "name": "Quartz Ltd", "authorized_shares": {"A": 1000}},
            "allocation": {"mode": "class", "class_b": 50},
        },
        headers=auth_headers,
    )

    assert response.status_code == 201
    quartz = next(item for item in response.json()["shareholders"] if item["holder"]["id"] == "co-new-1")
    assert quartz["shares"] == {"B": 50}
    assert persistence.created[0]["totalShares"] == [{"totalShares": 1000, "class": "A", "type": "Ordinary"}]
    stored = persistence.company("client-1", "co-x")
    assert [item["companyId"] for item in stored["shareHoldingCompanies"]] == ["co-y", "co-new-1"]


def test_create_holder_rejected_link_creates_nothing(client, auth_headers, persistence) -> None:
    over = client.post(
        f"{BASE}/holders",
        json={"record": {"type": "person", "name": "Hugo Park"}, "allocation": {"mode": "class", "class_a": 700}},
        headers=auth_headers,
    )
    unlinked = client.post(f"{BASE}/holders", json={"record": {"type": "person", "name": "Hugo Park"}}, headers=auth_headers)

    assert over.status_code == 422
    assert over.json()["detail"]["errors"] == {"class_A": "Exceeds available Class A shares by 100. Available: 600"}
    assert unlinked.status_code == 422
    assert persistence.created == []
