"""
Risk Ledger
Tests — version store (append, originals, backfill-on-read).
"""

from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from riskledger.models import db as _db
from riskledger.models.register import Risk
from riskledger.models.versioning import EntityVersion
from riskledger.services import register_service, version_store
from riskledger.services.register_kinds import OPPORTUNITY, RISK

RISK_PAYLOAD = {
    "risk_name": "Supplier insolvency",
    "risk_condition": "Single-source supplier for the avionics harness",
    "risk_if": "the supplier enters administration",
    "risk_then": "integration slips by a quarter",
    "likelihood": 3,
    "consequence": 3,
}

OPPORTUNITY_PAYLOAD = {
    "opportunity_name": "Shared test rig",
    "opportunity_condition": "Programme B owns an idle environmental rig",
    "opportunity_if": "we book it for Q3",
    "opportunity_then": "qualification costs drop",
}


def _legacy_risk(**kw):
    """A risk row written without going through the service (no versions)."""
    fields = {k: v for k, v in RISK_PAYLOAD.items()}
    fields.update(level="moderate", status="open",
                  created_at=datetime(2024, 2, 14, 9, 0, tzinfo=timezone.utc))
    fields.update(kw)
    risk = Risk(**fields)
    _db.session.add(risk)
    _db.session.commit()
    return risk


class TestAppend:
    def test_versions_are_gap_free_from_one(self):
        risk = register_service.create_entity(RISK, dict(RISK_PAYLOAD))
        register_service.update_entity(RISK, risk.id, {"owner": "Dana"})
        register_service.update_entity(RISK, risk.id, {"mitigation_plan": "Dual-source"})
        _db.session.commit()

        versions = version_store.list_entity_versions(RISK, risk.id)
        assert [v.version for v in versions] == [1, 2, 3]
        stamps = [v.created_at for v in versions]
        assert stamps == sorted(stamps)

    def test_snapshot_copies_fields(self):
        risk = register_service.create_entity(RISK, dict(RISK_PAYLOAD))
        _db.session.commit()
        snap = version_store.list_entity_versions(RISK, risk.id)[0].snapshot
        assert snap["risk_name"] == RISK_PAYLOAD["risk_name"]
        assert snap["likelihood"] == 3
        assert snap["level"] == "moderate"

    def test_streams_are_per_kind(self):
        risk = register_service.create_entity(RISK, dict(RISK_PAYLOAD))
        opp = register_service.create_entity(OPPORTUNITY, dict(OPPORTUNITY_PAYLOAD))
        _db.session.commit()
        assert len(version_store.list_entity_versions(RISK, risk.id)) == 1
        assert version_store.list_entity_versions(RISK, opp.id) == []

    def test_reasons_stored_on_version(self):
        risk = register_service.create_entity(RISK, dict(RISK_PAYLOAD))
        register_service.update_entity(RISK, risk.id, {
            "likelihood": 4, "likelihood_change_reason": "new intel",
        })
        _db.session.commit()
        latest = version_store.list_entity_versions(RISK, risk.id)[-1]
        assert latest.likelihood_change_reason == "new intel"
        assert latest.reasons == {"likelihood_change_reason": "new intel"}


class TestOriginals:
    def test_originals_come_from_version_one(self):
        risk = register_service.create_entity(RISK, dict(RISK_PAYLOAD, likelihood=2, consequence=4))
        register_service.update_entity(RISK, risk.id, {
            "likelihood": 5, "likelihood_change_reason": "r",
            "consequence": 1, "consequence_change_reason": "r",
        })
        _db.session.commit()
        assert version_store.original_scores(RISK, risk.id) == {
            "original_likelihood": 2, "original_consequence": 4,
        }

    def test_batch_fills_missing_with_none(self):
        risk = register_service.create_entity(RISK, dict(RISK_PAYLOAD))
        legacy = _legacy_risk()
        _db.session.commit()
        out = version_store.original_scores_for(RISK, [risk.id, legacy.id])
        assert out[risk.id] == {"original_likelihood": 3, "original_consequence": 3}
        assert out[legacy.id] == {"original_likelihood": None, "original_consequence": None}

    def test_latest_status_rationale(self):
        risk = register_service.create_entity(RISK, dict(RISK_PAYLOAD))
        register_service.update_entity(RISK, risk.id, {
            "status": "accepted", "status_change_rationale": "within appetite",
        })
        register_service.update_entity(RISK, risk.id, {"status": "open"})
        register_service.update_entity(RISK, risk.id, {
            "status": "closed", "status_change_rationale": "supplier replaced",
        })
        _db.session.commit()
        assert version_store.latest_status_rationale(RISK, risk.id) == "supplier replaced"


class TestBackfill:
    def test_backfills_version_one_from_current_state(self):
        legacy = _legacy_risk(likelihood=4)
        versions = version_store.ensure_entity_versions(RISK, legacy)
        assert [v.version for v in versions] == [1]
        assert versions[0].id is not None
        assert versions[0].snapshot["likelihood"] == 4
        assert EntityVersion.query.filter_by(owner_id=legacy.id).count() == 1

    def test_backfill_is_idempotent(self):
        legacy = _legacy_risk()
        version_store.ensure_entity_versions(RISK, legacy)
        version_store.ensure_entity_versions(RISK, legacy)
        assert EntityVersion.query.filter_by(owner_id=legacy.id).count() == 1

    def test_backfill_keeps_creation_time(self):
        legacy = _legacy_risk()
        version = version_store.ensure_entity_versions(RISK, legacy)[0]
        assert version.created_at.replace(tzinfo=timezone.utc) == datetime(2024, 2, 14, 9, 0, tzinfo=timezone.utc)

    def test_store_failure_degrades_to_synthetic_version(self, monkeypatch, caplog):
        legacy = _legacy_risk()

        def _boom(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(version_store, "append_entity_version", _boom)
        versions = version_store.ensure_entity_versions(RISK, legacy)

        assert len(versions) == 1
        assert versions[0].version == 1
        assert versions[0].id is None
        assert versions[0].snapshot["risk_name"] == RISK_PAYLOAD["risk_name"]
        assert EntityVersion.query.filter_by(owner_id=legacy.id).count() == 0
        assert any("backfill failed" in r.getMessage() for r in caplog.records)

    def test_lost_backfill_race_rereads_winner(self, monkeypatch, caplog):
        legacy = _legacy_risk(likelihood=2)

        def _racing_append(descriptor, entity, reasons=None, created_at=None):
            # Another reader commits version 1 after our empty read.
            _db.session.add(EntityVersion(
                entity_kind=descriptor.kind, owner_id=entity.id, version=1,
                snapshot_json='{"likelihood": 5}', created_at=created_at,
            ))
            _db.session.commit()
            _db.session.add(EntityVersion(
                entity_kind=descriptor.kind, owner_id=entity.id, version=1,
                snapshot_json='{"likelihood": 2}', created_at=created_at,
            ))
            _db.session.flush()

        monkeypatch.setattr(version_store, "append_entity_version", _racing_append)
        versions = version_store.ensure_entity_versions(RISK, legacy)

        assert [v.version for v in versions] == [1]
        assert versions[0].id is not None
        assert versions[0].snapshot["likelihood"] == 5
        assert EntityVersion.query.filter_by(owner_id=legacy.id, version=1).count() == 1
        assert not any("backfill failed" in r.getMessage() for r in caplog.records)

    def test_backfill_endpoint_counts_created(self, client):
        _legacy_risk()
        _legacy_risk(risk_name="Another legacy risk")
        res = client.post("/api/v1/risks/backfill-versions")
        assert res.status_code == 200
        assert res.get_json()["created"] == 2

        res = client.post("/api/v1/risks/backfill-versions")
        assert res.get_json()["created"] == 0


class TestPurge:
    def test_delete_removes_streams(self, client, make_risk):
        risk = make_risk()
        client.post(f"/api/v1/risks/{risk['id']}/steps", json={
            "mitigation_actions": "Qualify second supplier",
            "closure_criteria": "PO placed",
            "expected_likelihood": 2, "expected_consequence": 3,
        })
        res = client.delete(f"/api/v1/risks/{risk['id']}")
        assert res.status_code == 200
        assert EntityVersion.query.filter_by(owner_id=risk["id"]).count() == 0
        assert version_store.list_step_versions(RISK, risk["id"]) == []
