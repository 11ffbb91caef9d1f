from app.branchstock.core.error_catalog import AppError, ErrorCatalog
from app.branchstock.core.security import create_user_access_token, verify_password
from app.branchstock.repos.users import UserRepository


class AuthService:
    def __init__(self, db):
        self.repo = UserRepository(db)

    def login(self, identifier: str, password: str):
        inactive_match = None
        for user in self.repo.find_login_candidates(identifier):
            if not verify_password(password, user.hashed_password):
                continue
            if not self._is_active(user):
                inactive_match = user
                continue
            return user, create_user_access_token(user)

        if inactive_match is not None:
            raise AppError(ErrorCatalog.USER_INACTIVE)
        raise AppError(ErrorCatalog.INVALID_CREDENTIALS)

    @staticmethod
    def _is_active(user) -> bool:
        return user.is_active and user.status == "active"
