from dataclasses import asdict, dataclass

from sqlalchemy import select

from app.branchstock.db.models import IdempotencyRecord


@dataclass(frozen=True)
class IdempotencyKey:
    tenant_id: str
    endpoint: str
    method: str
    idempotency_key: str


class IdempotencyRepository:
    def __init__(self, db):
        self.db = db

    def find(self, key: IdempotencyKey) -> IdempotencyRecord | None:
        stmt = select(IdempotencyRecord).filter_by(**asdict(key))
        return self.db.execute(stmt).scalars().first()

    def save(self, record: IdempotencyRecord) -> IdempotencyRecord:
        self.db.add(record)
        self.db.commit()
        return record
