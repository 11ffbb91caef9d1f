from sqlalchemy import select

from app.branchstock.core.config import settings
from app.branchstock.core.security import get_password_hash
from app.branchstock.db.models import Store, Tenant, User


def _first_or_add(db, model, criteria: dict, **defaults):
    instance = db.execute(select(model).filter_by(**criteria)).scalars().first()
    if instance is None:
        instance = model(**criteria, **defaults)
        db.add(instance)
        db.flush()
    return instance


def run_seed(db) -> User:
    """Create the bootstrap tenant, its first branch and the superadmin.

    Safe to run repeatedly; existing rows are matched by name/username and
    left untouched.
    """
    tenant = _first_or_add(db, Tenant, {"name": settings.DEFAULT_TENANT_NAME})
    store = _first_or_add(db, Store, {"tenant_id": tenant.id, "name": settings.DEFAULT_STORE_NAME})
    superadmin = _first_or_add(
        db,
        User,
        {"username": settings.SUPERADMIN_USERNAME},
        tenant_id=tenant.id,
        store_id=store.id,
        email=settings.SUPERADMIN_EMAIL,
        hashed_password=get_password_hash(settings.SUPERADMIN_PASSWORD),
        role="SUPERADMIN",
        status="active",
        is_active=True,
        must_change_password=False,
    )
    db.commit()
    return superadmin
