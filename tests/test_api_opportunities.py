"""
Risk Ledger
Tests — Opportunity register API.
"""

from riskledger.models.versioning import EntityVersion


class TestOpportunityLevels:
    def test_classified_on_create(self, make_opportunity):
        opp = make_opportunity()
        assert opp["level"] == "moderate"
        assert opp["level_rank"] == 15
        assert opp["status"] == "pursue_now"
        assert opp["original_likelihood"] == 2
        assert opp["original_impact"] == 4

    def test_impact_change_needs_reason(self, client, make_opportunity):
        opp = make_opportunity()
        res = client.patch(f"/api/v1/opportunities/{opp['id']}", json={"impact": 5})
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"impact_change_reason"}

        res = client.patch(f"/api/v1/opportunities/{opp['id']}", json={
            "impact": 5, "impact_change_reason": "second programme interested",
        })
        assert res.status_code == 200
        assert res.get_json()["level"] == "high"


class TestOpportunityStatus:
    def test_defer_needs_rationale(self, client, make_opportunity):
        opp = make_opportunity()
        res = client.patch(f"/api/v1/opportunities/{opp['id']}", json={"status": "defer"})
        assert res.status_code == 422
        assert EntityVersion.query.filter_by(owner_id=opp["id"]).count() == 1

    def test_rationale_recorded_in_version_and_audit(self, client, make_opportunity):
        opp = make_opportunity()
        res = client.patch(f"/api/v1/opportunities/{opp['id']}", json={
            "status": "defer", "status_change_rationale": "rig booked until 2027",
        })
        assert res.status_code == 200
        assert res.get_json()["status_change_rationale"] == "rig booked until 2027"

        history = client.get(f"/api/v1/opportunities/{opp['id']}/history").get_json()
        assert history[-1]["status_change_rationale"] == "rig booked until 2027"
        assert history[-1]["snapshot"]["status"] == "defer"

        entry = client.get(f"/api/v1/opportunities/{opp['id']}/audit-log").get_json()["items"][0]
        assert entry["details"]["status_change_rationale"] == "rig booked until 2027"
        assert entry["details"]["changes"]["status"] == {"from": "pursue_now", "to": "defer"}

    def test_returning_to_pursue_is_free(self, client, make_opportunity):
        opp = make_opportunity(status="reject")
        res = client.patch(f"/api/v1/opportunities/{opp['id']}", json={"status": "pursue_now"})
        assert res.status_code == 200
        assert res.get_json()["status_change_rationale"] is None


class TestActionPlanSteps:
    def test_planned_action_and_expected_scores_required(self, client, make_opportunity):
        opp = make_opportunity()
        res = client.post(f"/api/v1/opportunities/{opp['id']}/steps", json={})
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {
            "planned_action", "expected_likelihood", "expected_impact",
        }

    def test_step_created(self, client, make_opportunity):
        opp = make_opportunity()
        res = client.post(f"/api/v1/opportunities/{opp['id']}/steps", json={
            "planned_action": "Book rig", "expected_likelihood": 4, "expected_impact": 4,
        })
        assert res.status_code == 201
        assert res.get_json()["expected_rank"] == 22
