"""
Tests — Metadata API.

Covers:
    - GET /api/metadata defaults
    - PUT /api/metadata validation and portfolio rescoring
    - POST /api/recalculate-scores
"""

QUICK_WIN_LEVERS = {
    "revenue_impact": 5, "cost_savings": 4, "risk_reduction": 4, "broker_partner_experience": 4,
    "strategic_fit": 5, "data_readiness": 2, "technical_complexity": 2, "change_impact": 2,
    "model_risk": 2, "adoption_readiness": 2,
}


class TestGetMetadata:

    def test_defaults_without_a_stored_row(self, client):
        res = client.get("/api/metadata")
        assert res.status_code == 200
        body = res.get_json()
        assert body["config_key"] == "default"
        assert body["scoring_model"]["quadrant_threshold"] == 3.0
        assert body["tom_config"]["enabled"] is True
        assert body["tom_config"]["active_preset"] == "coe_led"
        assert body["value_realization_config"]["kpi_library"]
        assert body["activities"] == {}


class TestUpdateMetadata:

    def test_threshold_change_rescores_portfolio(self, client, make_use_case, events):
        uc = make_use_case(**QUICK_WIN_LEVERS)
        assert uc["quadrant"] == "Quick Win"

        res = client.put("/api/metadata", json={"scoring_model": {"quadrant_threshold": 4.5}})
        assert res.status_code == 200
        body = res.get_json()
        assert body["rescored"]["rescored"] == 1
        assert body["rescored"]["quadrant_changed"] == 1
        assert body["scoring_model"]["quadrant_threshold"] == 4.5
        assert body["scoring_model"]["business_value"]

        stored = client.get(f"/api/use-cases/{uc['id']}").get_json()
        assert stored["quadrant"] == "Experimental"
        assert stored["impact_score"] == 4.4
        assert events.of_type("portfolio_rescored")[0]["rescored"] == 1

    def test_weight_change_moves_scores(self, client, make_use_case):
        uc = make_use_case(**QUICK_WIN_LEVERS)
        weights = {"revenue_impact": 100, "cost_savings": 0, "risk_reduction": 0,
                   "broker_partner_experience": 0, "strategic_fit": 0}
        client.put("/api/metadata", json={"scoring_model": {"business_value": weights}})
        assert client.get(f"/api/use-cases/{uc['id']}").get_json()["impact_score"] == 5.0

    def test_taxonomy_lists_are_stored(self, client):
        res = client.put("/api/metadata", json={"processes": ["Claims Management", "Underwriting"]})
        assert res.status_code == 200
        assert client.get("/api/metadata").get_json()["processes"] == ["Claims Management", "Underwriting"]

    def test_invalid_payload_returns_400(self, client):
        res = client.put("/api/metadata", json={
            "scoring_model": {"business_value": {"revenue_impact": -1}, "quadrant_threshold": 9},
            "processes": "Claims",
        })
        assert res.status_code == 400
        issues = res.get_json()["issues"]
        assert "scoring_model.business_value.revenue_impact must be a non-negative number" in issues
        assert "scoring_model.quadrant_threshold must be between 0 and 5" in issues
        assert "processes must be a list" in issues

    def test_unknown_preset_returns_400(self, client):
        res = client.put("/api/metadata", json={"tom_config": {"active_preset": "waterfall"}})
        assert res.status_code == 400

    def test_empty_body_returns_400(self, client):
        res = client.put("/api/metadata", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


class TestRecalculateScores:

    def test_nothing_to_do(self, client, make_use_case):
        make_use_case(**QUICK_WIN_LEVERS)
        body = client.post("/api/recalculate-scores").get_json()
        assert body == {"rescored": 0, "quadrant_changed": 0, "total": 1, "errors": []}

    def test_empty_portfolio(self, client):
        res = client.post("/api/recalculate-scores")
        assert res.status_code == 200
        assert res.get_json()["total"] == 0
