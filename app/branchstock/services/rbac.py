TRANSFER_VIEW = "TRANSFER_VIEW"
TRANSFER_MANAGE = "TRANSFER_MANAGE"
STOCK_VIEW = "STOCK_VIEW"
STOCK_ADJUST = "STOCK_ADJUST"

ROLE_PERMISSIONS = {
    "SUPERADMIN": {TRANSFER_VIEW, TRANSFER_MANAGE, STOCK_VIEW, STOCK_ADJUST},
    "PLATFORM_ADMIN": {TRANSFER_VIEW, TRANSFER_MANAGE, STOCK_VIEW, STOCK_ADJUST},
    "ADMIN": {TRANSFER_VIEW, TRANSFER_MANAGE, STOCK_VIEW, STOCK_ADJUST},
    "MANAGER": {TRANSFER_VIEW, TRANSFER_MANAGE, STOCK_VIEW, STOCK_ADJUST},
    "USER": {TRANSFER_VIEW, STOCK_VIEW},
}


class RBACService:
    def get_permissions_for_role(self, role_name: str | None) -> set[str]:
        return ROLE_PERMISSIONS.get((role_name or "").upper(), set())

    def is_allowed(self, role_name: str | None, permission_key: str) -> bool:
        return permission_key in self.get_permissions_for_role(role_name)
