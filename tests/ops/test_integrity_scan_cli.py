import json
import uuid

from app.branchstock.db.models import Store, Tenant, Transfer
from app.ops.integrity_scan import main, run_scan


def test_integrity_scan_no_findings(db_session, capsys):
    tenant = Tenant(id=uuid.uuid4(), name="Tenant Scan")
    store = Store(id=uuid.uuid4(), tenant_id=tenant.id, name="Store Scan")
    db_session.add_all([tenant, store])
    db_session.commit()

    database_url = db_session.get_bind().url.render_as_string(hide_password=False)
    exit_code = run_scan(str(tenant.id), "json", True, database_url=database_url)
    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["summary"] == {"total": 0, "critical": 0, "warn": 0}


def test_integrity_scan_critical_exit(db_session, capsys):
    tenant = Tenant(id=uuid.uuid4(), name="Tenant Scan")
    store = Store(id=uuid.uuid4(), tenant_id=tenant.id, name="Store Scan")
    db_session.add_all([tenant, store])
    db_session.commit()
    db_session.add(
        Transfer(
            id=uuid.uuid4(),
            tenant_id=tenant.id,
            code="LOOP-1",
            origin_store_id=store.id,
            destination_store_id=store.id,
            status="DRAFT",
        )
    )
    db_session.commit()

    database_url = db_session.get_bind().url.render_as_string(hide_password=False)
    assert run_scan("all", "json", False, database_url=database_url) == 0
    capsys.readouterr()

    exit_code = run_scan(str(tenant.id), "text", True, database_url=database_url)
    output = capsys.readouterr().out
    assert exit_code == 1
    assert "critical=1" in output
    assert "transfer_same_origin_destination" in output


def test_integrity_scan_rejects_bad_tenant(capsys):
    assert main(["--tenant", "not-a-uuid", "--format", "json"]) == 2
    assert "invalid tenant id" in capsys.readouterr().err
