from app.branchstock.db.models import AuditEvent


class AuditRepository:
    def __init__(self, db):
        self.db = db

    def append(self, event: AuditEvent) -> AuditEvent:
        # audit rows commit on their own, after the audited unit of work
        self.db.add(event)
        self.db.commit()
        return event
