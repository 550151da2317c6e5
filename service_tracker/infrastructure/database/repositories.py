"""Infrastructure layer - Repository implementations.

Repositories only stage changes on the session; the calling service owns the
transaction and decides when to commit.
"""

from collections.abc import Sequence

from sqlmodel import Session, col, select

from ...domain.entities import ServiceDay
from .models import (
    AccessBlockByEmail,
    AccessBlockByUid,
    AccessRequestRecord,
    ScrapedDay,
    ServiceActivityRecord,
    ServiceReadyRecord,
    ServiceStatusRecord,
    ServiceTimeOverrideRecord,
    StaffAllowlistEntry,
    UserSettings,
    item_doc_id,
)


class AccessRepository:
    """Repository for allowlist, access request and block records."""

    def __init__(self, session: Session):
        self.session = session

    def find_allowlist_entry(self, uid: str) -> StaffAllowlistEntry | None:
        return self.session.get(StaffAllowlistEntry, uid)

    def is_active_staff(self, uid: str) -> bool:
        entry = self.find_allowlist_entry(uid)
        return entry is not None and entry.active is True

    def find_request(self, uid: str) -> AccessRequestRecord | None:
        return self.session.get(AccessRequestRecord, uid)

    def find_request_for_update(self, uid: str) -> AccessRequestRecord | None:
        """Load a request row locked for the rest of the transaction."""
        statement = (
            select(AccessRequestRecord)
            .where(AccessRequestRecord.uid == uid)
            .with_for_update()
        )
        return self.session.exec(statement).first()

    def list_requests(self, status: str | None = None) -> Sequence[AccessRequestRecord]:
        statement = select(AccessRequestRecord)
        if status:
            statement = statement.where(AccessRequestRecord.status == status)
        statement = statement.order_by(col(AccessRequestRecord.updated_at).desc())
        return self.session.exec(statement).all()

    def find_uid_block(self, uid: str) -> AccessBlockByUid | None:
        return self.session.get(AccessBlockByUid, uid)

    def find_email_block(self, email_normalized: str) -> AccessBlockByEmail | None:
        if not email_normalized:
            return None
        return self.session.get(AccessBlockByEmail, email_normalized)

    def is_blocked(self, uid: str, email_normalized: str) -> bool:
        """A block on either index is a standing veto."""
        return (
            self.find_uid_block(uid) is not None
            or self.find_email_block(email_normalized) is not None
        )

    def save(
        self,
        record: StaffAllowlistEntry
        | AccessRequestRecord
        | AccessBlockByUid
        | AccessBlockByEmail,
    ) -> None:
        self.session.add(record)

    def delete_blocks(self, uid: str, email_normalized: str) -> int:
        removed = 0
        blocks = (self.find_uid_block(uid), self.find_email_block(email_normalized))
        for block in blocks:
            if block is not None:
                self.session.delete(block)
                removed += 1
        return removed


class ServiceDayRepository:
    """Repository for the per-date service collections."""

    def __init__(self, session: Session):
        self.session = session

    def find_scraped_day(self, date: str) -> ScrapedDay | None:
        return self.session.get(ScrapedDay, date)

    def find_day(self, date: str) -> ServiceDay | None:
        scraped = self.find_scraped_day(date)
        return scraped.to_domain() if scraped else None

    def save_scraped_day(self, scraped: ScrapedDay) -> None:
        self.session.add(scraped)

    def find_status(self, date: str, item_id: str) -> ServiceStatusRecord | None:
        return self.session.get(ServiceStatusRecord, item_doc_id(date, item_id))

    def find_time_override(
        self, date: str, item_id: str
    ) -> ServiceTimeOverrideRecord | None:
        return self.session.get(ServiceTimeOverrideRecord, item_doc_id(date, item_id))

    def find_ready(self, date: str, item_id: str) -> ServiceReadyRecord | None:
        return self.session.get(ServiceReadyRecord, item_doc_id(date, item_id))

    def list_status(self, date: str) -> Sequence[ServiceStatusRecord]:
        return self.session.exec(
            select(ServiceStatusRecord).where(ServiceStatusRecord.date == date)
        ).all()

    def list_time_overrides(self, date: str) -> Sequence[ServiceTimeOverrideRecord]:
        return self.session.exec(
            select(ServiceTimeOverrideRecord).where(
                ServiceTimeOverrideRecord.date == date
            )
        ).all()

    def list_ready(self, date: str) -> Sequence[ServiceReadyRecord]:
        return self.session.exec(
            select(ServiceReadyRecord).where(ServiceReadyRecord.date == date)
        ).all()

    def list_activity(self, date: str, limit: int) -> Sequence[ServiceActivityRecord]:
        """Newest first; ties on created_at fall back to insertion order."""
        statement = (
            select(ServiceActivityRecord)
            .where(ServiceActivityRecord.date == date)
            .order_by(
                col(ServiceActivityRecord.created_at).desc(),
                col(ServiceActivityRecord.id).desc(),
            )
            .limit(limit)
        )
        return self.session.exec(statement).all()

    def save(
        self,
        record: ServiceStatusRecord
        | ServiceTimeOverrideRecord
        | ServiceReadyRecord
        | ServiceActivityRecord,
    ) -> None:
        self.session.add(record)


class UserSettingsRepository:
    def __init__(self, session: Session):
        self.session = session

    def find(self, uid: str) -> UserSettings | None:
        return self.session.get(UserSettings, uid)

    def save(self, user_settings: UserSettings) -> None:
        self.session.add(user_settings)
