from sqlalchemy import select

from app.branchstock.core.context import TenantScope, require_tenant_scope
from app.branchstock.db.models import Product, Store, coerce_uuid


class StoreRepository:
    def __init__(self, db):
        self.db = db

    def get_in_tenant(self, scope: TenantScope, store_id) -> Store | None:
        require_tenant_scope(scope)
        store_uuid = coerce_uuid(store_id)
        if store_uuid is None:
            return None
        stmt = select(Store).where(Store.id == store_uuid, Store.tenant_id == scope.tenant_id)
        return self.db.execute(stmt).scalars().first()


class ProductRepository:
    def __init__(self, db):
        self.db = db

    def get_in_tenant(self, scope: TenantScope, product_id) -> Product | None:
        require_tenant_scope(scope)
        product_uuid = coerce_uuid(product_id)
        if product_uuid is None:
            return None
        stmt = select(Product).where(Product.id == product_uuid, Product.tenant_id == scope.tenant_id)
        return self.db.execute(stmt).scalars().first()

    def get_many_in_tenant(self, scope: TenantScope, product_ids) -> dict[str, Product]:
        require_tenant_scope(scope)
        uuids = [value for value in (coerce_uuid(item) for item in product_ids) if value is not None]
        if not uuids:
            return {}
        stmt = select(Product).where(Product.id.in_(uuids), Product.tenant_id == scope.tenant_id)
        return {str(product.id): product for product in self.db.execute(stmt).scalars().all()}
