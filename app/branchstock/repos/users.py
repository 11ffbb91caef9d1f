from sqlalchemy import or_, select

from app.branchstock.db.models import User, coerce_uuid


class UserRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, user_id) -> User | None:
        user_uuid = coerce_uuid(user_id)
        if user_uuid is None:
            return None
        return self.db.get(User, user_uuid)

    def find_login_candidates(self, identifier: str) -> list[User]:
        # may match one user's username and another user's email
        identifier = identifier.strip()
        stmt = select(User).where(or_(User.username == identifier, User.email == identifier)).order_by(User.created_at)
        return list(self.db.execute(stmt).scalars())
