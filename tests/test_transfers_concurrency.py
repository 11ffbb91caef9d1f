import threading
from decimal import Decimal

from app.branchstock.core.error_catalog import InsufficientStockError, InvalidStateError
from app.branchstock.db.models import StockMovement
from app.branchstock.services.ledger import MOVEMENT_ADJUSTMENT, REFERENCE_ADJUSTMENT, StockLedger
from app.branchstock.services.transfers import TransferLineInput, TransferService
from tests.transfer_helpers import create_product, create_tenant_user, scope_for, set_stock


def _race(calls):
    """Run each call in its own thread and session, released together."""
    from app.branchstock.db.session import SessionLocal

    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def _worker(index, call):
        db = SessionLocal()
        try:
            barrier.wait()
            call(db)
            outcomes[index] = "ok"
        except (InvalidStateError, InsufficientStockError) as exc:
            outcomes[index] = exc.__class__.__name__
        finally:
            db.close()

    threads = [threading.Thread(target=_worker, args=(index, call)) for index, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def _draft(db_session, tenant, user, origin, destination, lines):
    service = TransferService(db_session)
    return service.create(
        scope_for(tenant, user),
        origin.id,
        destination.id,
        [TransferLineInput(str(product.id), Decimal(qty)) for product, qty in lines],
    )


def test_concurrent_dispatch_of_one_transfer_applies_once(db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="race-dispatch")
    product = create_product(db_session, tenant, sku="SKU-1")
    set_stock(db_session, tenant, origin, product, 10)
    transfer = _draft(db_session, tenant, user, origin, destination, [(product, 3)])
    scope = scope_for(tenant, user)
    transfer_id = str(transfer.id)

    outcomes = _race([lambda db: TransferService(db).dispatch(scope, transfer_id)] * 2)

    assert sorted(outcomes) == ["InvalidStateError", "ok"]
    db_session.expire_all()
    assert StockLedger(db_session).get_balance(scope, origin.id, product.id) == Decimal("7")
    assert db_session.query(StockMovement).filter(StockMovement.action == "DISPATCH").count() == 1


def test_concurrent_dispatches_never_oversell(db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="race-stock")
    product = create_product(db_session, tenant, sku="SKU-1")
    set_stock(db_session, tenant, origin, product, 5)
    first = _draft(db_session, tenant, user, origin, destination, [(product, 4)])
    second = _draft(db_session, tenant, user, origin, destination, [(product, 4)])
    scope = scope_for(tenant, user)
    ids = [str(first.id), str(second.id)]

    outcomes = _race([lambda db, transfer_id=transfer_id: TransferService(db).dispatch(scope, transfer_id) for transfer_id in ids])

    assert sorted(outcomes) == ["InsufficientStockError", "ok"]
    db_session.expire_all()
    assert StockLedger(db_session).get_balance(scope, origin.id, product.id) == Decimal("1")
    statuses = sorted(TransferService(db_session).get(scope, transfer_id).status for transfer_id in ids)
    assert statuses == ["DISPATCHED", "DRAFT"]


def test_concurrent_receive_and_cancel_pick_one_winner(db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="race-final")
    product = create_product(db_session, tenant, sku="SKU-1")
    set_stock(db_session, tenant, origin, product, 6)
    transfer = _draft(db_session, tenant, user, origin, destination, [(product, 6)])
    scope = scope_for(tenant, user)
    transfer_id = str(transfer.id)
    TransferService(db_session).dispatch(scope, transfer_id)

    outcomes = _race(
        [
            lambda db: TransferService(db).receive(scope, transfer_id),
            lambda db: TransferService(db).cancel(scope, transfer_id),
        ]
    )

    assert sorted(outcomes) == ["InvalidStateError", "ok"]
    db_session.expire_all()
    ledger = StockLedger(db_session)
    final = TransferService(db_session).get(scope, transfer_id).status
    origin_qty = ledger.get_balance(scope, origin.id, product.id)
    destination_qty = ledger.get_balance(scope, destination.id, product.id)
    if final == "RECEIVED":
        assert (origin_qty, destination_qty) == (Decimal("0"), Decimal("6"))
    else:
        assert final == "CANCELLED"
        assert (origin_qty, destination_qty) == (Decimal("6"), Decimal("0"))


def test_concurrent_ledger_debits_stop_at_zero(db_session):
    tenant, origin, _destination, user = create_tenant_user(db_session, suffix="race-ledger")
    product = create_product(db_session, tenant, sku="SKU-1")
    set_stock(db_session, tenant, origin, product, 3)
    scope = scope_for(tenant, user)
    store_id, product_id = str(origin.id), str(product.id)

    def _debit(db):
        ledger = StockLedger(db)
        try:
            ledger.apply_delta(
                scope,
                store_id,
                product_id,
                "-1",
                action=MOVEMENT_ADJUSTMENT,
                reference_type=REFERENCE_ADJUSTMENT,
            )
            db.commit()
        except InsufficientStockError:
            db.rollback()
            raise

    outcomes = _race([_debit] * 5)

    assert outcomes.count("ok") == 3
    assert outcomes.count("InsufficientStockError") == 2
    db_session.expire_all()
    assert StockLedger(db_session).get_balance(scope, origin.id, product.id) == Decimal("0")
