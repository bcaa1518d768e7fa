"""
Risk Ledger
Tests — step ordering, completion and audit (exercised through mitigation steps).
"""

from riskledger.models.versioning import StepVersion


def _add_step(client, risk_id, name, **kw):
    payload = {
        "mitigation_actions": name,
        "closure_criteria": f"{name} done",
        "expected_likelihood": 2,
        "expected_consequence": 2,
    }
    payload.update(kw)
    res = client.post(f"/api/v1/risks/{risk_id}/steps", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _order(client, risk_id):
    items = client.get(f"/api/v1/risks/{risk_id}/steps").get_json()["items"]
    return [(s["mitigation_actions"], s["sequence_order"]) for s in items]


class TestCreateStep:
    def test_append(self, client, make_risk):
        risk = make_risk()
        s1 = _add_step(client, risk["id"], "A")
        s2 = _add_step(client, risk["id"], "B")
        assert (s1["sequence_order"], s2["sequence_order"]) == (0, 1)
        assert s2["step_number"] == 2
        assert s1["expected_rank"] == 4

    def test_insert_shifts_later_steps(self, client, make_risk):
        risk = make_risk()
        _add_step(client, risk["id"], "A")
        _add_step(client, risk["id"], "B")
        _add_step(client, risk["id"], "C", sequence_order=1)
        assert _order(client, risk["id"]) == [("A", 0), ("C", 1), ("B", 2)]

    def test_position_clamped(self, client, make_risk):
        risk = make_risk()
        _add_step(client, risk["id"], "A")
        assert _add_step(client, risk["id"], "B", sequence_order=50)["sequence_order"] == 1

    def test_required_text(self, client, make_risk):
        risk = make_risk()
        res = client.post(f"/api/v1/risks/{risk['id']}/steps", json={
            "expected_likelihood": 1, "expected_consequence": 1,
        })
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"mitigation_actions", "closure_criteria"}

    def test_unknown_risk(self, client):
        res = client.post("/api/v1/risks/nope/steps", json={"mitigation_actions": "x"})
        assert res.status_code == 404

    def test_created_entry_carries_step_number(self, client, make_risk):
        risk = make_risk()
        _add_step(client, risk["id"], "A")
        step = _add_step(client, risk["id"], "B")
        entry = client.get(f"/api/v1/risks/{risk['id']}/audit-log").get_json()["items"][0]
        assert entry["entity_type"] == "step"
        assert entry["entity_id"] == step["id"]
        assert entry["details"] == {"step_number": 2}


class TestUpdateStep:
    def test_move_within_parent(self, client, make_risk):
        risk = make_risk()
        a = _add_step(client, risk["id"], "A")
        _add_step(client, risk["id"], "B")
        _add_step(client, risk["id"], "C")
        res = client.patch(f"/api/v1/risks/{risk['id']}/steps/{a['id']}", json={"sequence_order": 2})
        assert res.status_code == 200
        assert _order(client, risk["id"]) == [("B", 0), ("C", 1), ("A", 2)]

    def test_actual_scores_absent_keep_null_clears(self, client, make_risk):
        risk = make_risk()
        step = _add_step(client, risk["id"], "A")
        url = f"/api/v1/risks/{risk['id']}/steps/{step['id']}"

        body = client.patch(url, json={"actual_likelihood": 1, "actual_consequence": 2}).get_json()
        assert body["actual_rank"] == 3

        body = client.patch(url, json={"closure_criteria": "Signed off"}).get_json()
        assert body["actual_likelihood"] == 1
        assert body["actual_rank"] == 3

        body = client.patch(url, json={"actual_likelihood": None}).get_json()
        assert body["actual_likelihood"] is None
        assert body["actual_rank"] is None

    def test_step_versions_and_history(self, client, make_risk):
        risk = make_risk()
        step = _add_step(client, risk["id"], "A")
        client.patch(f"/api/v1/risks/{risk['id']}/steps/{step['id']}", json={"expected_likelihood": 1})

        assert [v.version for v in StepVersion.query.filter_by(step_id=step["id"])
                .order_by(StepVersion.version)] == [1, 2]
        history = client.get(f"/api/v1/risks/{risk['id']}/history").get_json()
        step_entries = [h for h in history if h["type"] == "step"]
        assert [h["version"] for h in step_entries] == [1, 2]
        assert all(h["step_number"] == 1 for h in step_entries)
        assert step_entries[-1]["snapshot"]["expected_likelihood"] == 1

    def test_bad_date(self, client, make_risk):
        risk = make_risk()
        step = _add_step(client, risk["id"], "A")
        res = client.patch(f"/api/v1/risks/{risk['id']}/steps/{step['id']}",
                           json={"estimated_end_date": "next tuesday"})
        assert res.status_code == 422
        assert "estimated_end_date" in res.get_json()["details"]

    def test_step_of_other_risk(self, client, make_risk):
        r1, r2 = make_risk(), make_risk(risk_name="Other")
        step = _add_step(client, r1["id"], "A")
        res = client.patch(f"/api/v1/risks/{r2['id']}/steps/{step['id']}", json={"expected_likelihood": 1})
        assert res.status_code == 404


class TestDeleteStep:
    def test_delete_closes_gap(self, client, make_risk):
        risk = make_risk()
        _add_step(client, risk["id"], "A")
        b = _add_step(client, risk["id"], "B")
        _add_step(client, risk["id"], "C")

        res = client.delete(f"/api/v1/risks/{risk['id']}/steps/{b['id']}")
        assert res.status_code == 200
        assert _order(client, risk["id"]) == [("A", 0), ("C", 1)]
        assert StepVersion.query.filter_by(step_id=b["id"]).count() == 0

        entry = client.get(f"/api/v1/risks/{risk['id']}/audit-log").get_json()["items"][0]
        assert entry["action"] == "deleted"
        assert entry["details"] == {"step_number": 2}


class TestReorder:
    def test_reorder_and_audit(self, client, make_risk):
        risk = make_risk()
        s1 = _add_step(client, risk["id"], "A")
        s2 = _add_step(client, risk["id"], "B")
        s3 = _add_step(client, risk["id"], "C")

        res = client.patch(f"/api/v1/risks/{risk['id']}/steps/reorder",
                           json={"step_ids": [s3["id"], s1["id"], s2["id"]]})
        assert res.status_code == 200
        assert [s["id"] for s in res.get_json()["items"]] == [s3["id"], s1["id"], s2["id"]]
        assert _order(client, risk["id"]) == [("C", 0), ("A", 1), ("B", 2)]

        entry = client.get(f"/api/v1/risks/{risk['id']}/audit-log").get_json()["items"][0]
        assert entry["entity_type"] == "entity"
        assert entry["details"]["changes"] == {
            "steps_reordered": {"from": "1, 2, 3", "to": "3, 1, 2"},
        }

    def test_foreign_and_missing_ids(self, client, make_risk):
        risk, other = make_risk(), make_risk(risk_name="Other")
        s1 = _add_step(client, risk["id"], "A")
        s2 = _add_step(client, risk["id"], "B")
        foreign = _add_step(client, other["id"], "X")

        res = client.patch(f"/api/v1/risks/{risk['id']}/steps/reorder",
                           json={"step_ids": [foreign["id"], s2["id"]]})
        assert res.status_code == 200
        assert _order(client, risk["id"]) == [("B", 0), ("A", 1)]
        assert _order(client, other["id"]) == [("X", 0)]
        assert s1["id"] in [s["id"] for s in res.get_json()["items"]]

    def test_same_order_writes_no_entry(self, client, make_risk):
        risk = make_risk()
        s1 = _add_step(client, risk["id"], "A")
        s2 = _add_step(client, risk["id"], "B")
        before = client.get(f"/api/v1/risks/{risk['id']}/audit-log").get_json()["total"]
        client.patch(f"/api/v1/risks/{risk['id']}/steps/reorder", json={"step_ids": [s1["id"], s2["id"]]})
        assert client.get(f"/api/v1/risks/{risk['id']}/audit-log").get_json()["total"] == before

    def test_empty_list_rejected(self, client, make_risk):
        risk = make_risk()
        res = client.patch(f"/api/v1/risks/{risk['id']}/steps/reorder", json={"step_ids": []})
        assert res.status_code == 422
        res = client.patch(f"/api/v1/risks/{risk['id']}/steps/reorder", json={})
        assert res.status_code == 422

    def test_non_string_ids_rejected(self, client, make_risk):
        risk = make_risk()
        _add_step(client, risk["id"], "A")
        res = client.patch(f"/api/v1/risks/{risk['id']}/steps/reorder",
                           json={"step_ids": [{"id": "x"}]})
        assert res.status_code == 422
        assert "step_ids" in res.get_json()["details"]
        assert _order(client, risk["id"]) == [("A", 0)]
