"""
HTTP API tests using FastAPI's TestClient.
"""
import pytest
from fastapi.testclient import TestClient

from quote_engine.api.main import app


@pytest.fixture(scope="module")
def client():
    return TestClient(app)


ANSWERS = {
    "monthlyTransactions": 250,
    "monthsBehind": 3,
    "bookkeeping": {"bankAccounts": 2},
    "hasRentals": "yes",
    "individualTax": {"scheduleCount": 3, "rentalProperties": 2, "additionalStates": 1},
}


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "online"


def test_quote(client):
    response = client.post("/quote", json={
        "answers": ANSWERS, "services": ["bookkeeping", "individual-tax"]
    })
    assert response.status_code == 200
    body = response.json()
    assert body["totalMonthlyFees"] == 475
    assert body["totalOneTimeFees"] == 1975
    assert body["totals"]["individualTaxTotal"] == 550
    assert body["hasPricing"] is True


def test_quote_uses_services_from_answers(client):
    answers = dict(ANSWERS, services=["individual-tax"])
    body = client.post("/quote", json={"answers": answers}).json()
    assert [s["serviceId"] for s in body["services"]] == ["individual-tax"]


def test_quote_rejects_malformed_body(client):
    response = client.post("/quote", json={"answers": "not a mapping"})
    assert response.status_code == 422


def test_evaluate_expression(client):
    body = client.post("/expressions/evaluate", json={
        "expression": "max({{income}} * 0.1, 20)", "answers": {"income": 150}
    }).json()
    assert body["valid"] is True
    assert body["value"] == 20
    assert body["placeholders"] == ["income"]
    assert body["values"] == {"income": 150}


def test_evaluate_invalid_expression(client):
    body = client.post("/expressions/evaluate", json={"expression": "{{x}} + os"}).json()
    assert body["valid"] is False
    assert body["value"] is None
    assert "error" in body
    assert body["warnings"]


def test_system_status(client):
    body = client.get("/system/status").json()
    assert body["rules_count"] > 0
    assert body["services_count"] > 0
    assert len(body["catalog_hash"]) == 12


class TestRulesRouter:

    def test_list_rules(self, client):
        rules = client.get("/api/rules").json()
        assert rules[0]["rule_id"] == "bookkeeping-transactions"

    def test_list_rules_by_service(self, client):
        rules = client.get("/api/rules", params={"service_id": "advisory"}).json()
        assert {r["service_id"] for r in rules} == {"advisory"}

    def test_get_rule(self, client):
        response = client.get("/api/rules/individual-tax-base")
        assert response.status_code == 200
        assert response.json()["base_price"] == 150

    def test_get_missing_rule(self, client):
        assert client.get("/api/rules/nope").status_code == 404

    def test_validate_rule(self, client):
        body = client.post("/api/rules/validate", json={
            "rule_id": "new-rule", "expression": "{{pricingRule.advisory-retainer}} * 0.1",
            "service_id": "advisory"
        }).json()
        assert body["valid"] is True
        assert body["placeholders"] == ["pricingRule.advisory-retainer"]

    def test_validate_bad_rule(self, client):
        body = client.post("/api/rules/validate", json={
            "rule_id": "bad", "expression": "1 +"
        }).json()
        assert body["valid"] is False
        assert body["errors"]

    def test_test_catalog_rule(self, client):
        body = client.post("/api/rules/test", json={
            "rule_id": "individual-tax-rentals", "answers": ANSWERS
        }).json()
        assert body["outcome"] == "evaluated"
        assert body["value"] == 200
        assert all(step["rule_id"] == "individual-tax-rentals" for step in body["trace"])

    def test_test_skipped_rule(self, client):
        body = client.post("/api/rules/test", json={
            "rule_id": "individual-tax-rentals", "answers": {"hasRentals": "no"}
        }).json()
        assert body["outcome"] == "skipped"
        assert body["value"] is None

    def test_test_adhoc_rule(self, client):
        body = client.post("/api/rules/test", json={
            "rule": {"rule_id": "scratch", "expression": "{{pricingRule.individual-tax-base}} * 2"},
            "answers": {}
        }).json()
        assert body["value"] == 300

    def test_test_invalid_adhoc_rule(self, client):
        response = client.post("/api/rules/test", json={
            "rule": {"rule_id": "scratch", "expression": "2 +* 2"}
        })
        assert response.status_code == 400

    def test_test_requires_rule(self, client):
        assert client.post("/api/rules/test", json={"answers": {}}).status_code == 400
        assert client.post("/api/rules/test", json={"rule_id": "nope"}).status_code == 404

    def test_reload(self, client):
        body = client.post("/api/rules/reload").json()
        assert body["success"] is True
        assert body["rules_count"] > 0
