"""
SQLAlchemy-backed store.

Implements every repository protocol from ``slotbook.storage.base`` on a
relational database, so submissions, OTP state and slot switches survive
restarts and are shared by every process pointing at the same
``DATABASE_URL``.

Submissions keep their document (step snapshots, survey, attribution) as
JSON next to the columns the scheduler and the admin reports filter on.
Notification flags live only in columns: claiming, marking and releasing
them are single conditional ``UPDATE`` statements, and a document update
never rewrites them unless the change names a flag.

Usage:
    store = SqlStore.from_url(settings.storage.database_url)
    app = SlotbookApp(settings, store, gateway)
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    create_engine,
    delete,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from slotbook.schemas.otp_schema import OtpIssue, OtpRecord, VerifiedPhone
from slotbook.schemas.slot_schema import SlotConfig, SlotDateOverride
from slotbook.schemas.submission_schema import NotificationKind, Submission
from slotbook.storage.base import DuplicateKeyError
from slotbook.utils import mask_phone

logger = logging.getLogger(__name__)

Base = declarative_base()

_FLAG_FIELDS = {kind.value for kind in NotificationKind}


class UtcDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class SubmissionRow(Base):
    __tablename__ = "submissions"

    phone = Column(String(10), primary_key=True)
    document = Column(JSON, nullable=False)
    selected_slot = Column(String(32), nullable=True, index=True)
    slot_date = Column(UtcDateTime, nullable=True, index=True)
    is_registered = Column(Boolean, default=False, nullable=False, index=True)

    reminder_4h_sent = Column(Boolean, default=False, nullable=False)
    reminder_4h_sent_at = Column(UtcDateTime, nullable=True)
    reminder_4h_claimed_at = Column(UtcDateTime, nullable=True)
    meet_link_1h_sent = Column(Boolean, default=False, nullable=False)
    meet_link_1h_sent_at = Column(UtcDateTime, nullable=True)
    meet_link_1h_claimed_at = Column(UtcDateTime, nullable=True)
    reminder_30m_sent = Column(Boolean, default=False, nullable=False)
    reminder_30m_sent_at = Column(UtcDateTime, nullable=True)
    reminder_30m_claimed_at = Column(UtcDateTime, nullable=True)


class OtpRecordRow(Base):
    __tablename__ = "otp_records"

    phone = Column(String(10), primary_key=True)
    otp_hash = Column(String(64), nullable=False)
    expires_at = Column(UtcDateTime, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(UtcDateTime, nullable=False)


class OtpIssueRow(Base):
    __tablename__ = "otp_issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(10), nullable=False, index=True)
    issued_at = Column(UtcDateTime, nullable=False, index=True)


class OtpIssueLockRow(Base):
    """One row per phone, locked while an issuance is reserved."""

    __tablename__ = "otp_issue_locks"

    phone = Column(String(10), primary_key=True)


class VerifiedPhoneRow(Base):
    __tablename__ = "verified_phones"

    phone = Column(String(10), primary_key=True)
    verified_at = Column(UtcDateTime, nullable=False)
    expires_at = Column(UtcDateTime, nullable=False, index=True)


class SlotConfigRow(Base):
    __tablename__ = "slot_configs"

    slot_id = Column(String(32), primary_key=True)
    enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(UtcDateTime, nullable=False)


class SlotDateOverrideRow(Base):
    __tablename__ = "slot_date_overrides"

    date = Column(Date, primary_key=True)
    slot_id = Column(String(32), primary_key=True)
    enabled = Column(Boolean, nullable=False)
    updated_at = Column(UtcDateTime, nullable=False)


def _flag_column(kind: NotificationKind, field: str):
    return getattr(SubmissionRow, f"{kind.value}_{field}")


def _to_submission(row: SubmissionRow) -> Submission:
    data = dict(row.document)
    for kind in NotificationKind:
        data[kind.value] = {
            "sent": getattr(row, f"{kind.value}_sent"),
            "sent_at": getattr(row, f"{kind.value}_sent_at"),
            "claimed_at": getattr(row, f"{kind.value}_claimed_at"),
        }
    return Submission.model_validate(data)


def _write_submission(row: SubmissionRow, doc: Submission, flags: bool) -> None:
    row.document = doc.model_dump(mode="json", exclude=_FLAG_FIELDS)
    row.selected_slot = doc.selected_slot
    row.slot_date = doc.slot_date
    row.is_registered = doc.is_registered
    if flags:
        for kind in NotificationKind:
            flag = doc.flag(kind)
            setattr(row, f"{kind.value}_sent", flag.sent)
            setattr(row, f"{kind.value}_sent_at", flag.sent_at)
            setattr(row, f"{kind.value}_claimed_at", flag.claimed_at)


class SqlStore:
    """Database store for submissions, OTP state and slot configuration."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(engine)
        logger.info("SQL store ready on %s", engine.url.render_as_string(hide_password=True))

    @classmethod
    def from_url(cls, url: str, pool_size: int = 5, pool_recycle: int = 300) -> "SqlStore":
        options: dict[str, Any] = {"pool_pre_ping": True}
        if not url.startswith("sqlite"):
            options.update(pool_size=pool_size, pool_recycle=pool_recycle)
        return cls(create_engine(url, **options))

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------ #
    # Submissions
    # ------------------------------------------------------------------ #

    def get(self, phone: str) -> Optional[Submission]:
        with self._sessions() as db:
            row = db.get(SubmissionRow, phone)
            return _to_submission(row) if row else None

    def insert(self, submission: Submission) -> Submission:
        try:
            with self._sessions.begin() as db:
                if db.get(SubmissionRow, submission.phone) is not None:
                    raise DuplicateKeyError(f"duplicate phone {mask_phone(submission.phone)}")
                row = SubmissionRow(phone=submission.phone)
                _write_submission(row, submission, flags=True)
                db.add(row)
        except IntegrityError:
            raise DuplicateKeyError(f"duplicate phone {mask_phone(submission.phone)}") from None
        return submission.model_copy(deep=True)

    def upsert(self, phone: str, changes: dict[str, Any]) -> Submission:
        with self._sessions.begin() as db:
            row = self._locked_submission(db, phone)
            if row is None:
                doc = Submission(phone=phone, **changes)
                row = SubmissionRow(phone=phone)
                _write_submission(row, doc, flags=True)
                db.add(row)
            else:
                doc = _to_submission(row).model_copy(update=changes, deep=True)
                _write_submission(row, doc, flags=bool(_FLAG_FIELDS & changes.keys()))
            return doc

    def update(self, phone: str, changes: dict[str, Any]) -> Optional[Submission]:
        with self._sessions.begin() as db:
            row = self._locked_submission(db, phone)
            if row is None:
                return None
            doc = _to_submission(row).model_copy(update=changes, deep=True)
            _write_submission(row, doc, flags=bool(_FLAG_FIELDS & changes.keys()))
            return doc

    def find_due(
        self, kind: NotificationKind, start: datetime, end: datetime,
        now: datetime, lease: timedelta,
    ) -> list[Submission]:
        claimed_at = _flag_column(kind, "claimed_at")
        query = select(SubmissionRow).where(
            SubmissionRow.is_registered.is_(True),
            SubmissionRow.slot_date.is_not(None),
            SubmissionRow.slot_date >= start,
            SubmissionRow.slot_date <= end,
            _flag_column(kind, "sent").is_(False),
            or_(claimed_at.is_(None), claimed_at <= now - lease),
        )
        with self._sessions() as db:
            return [_to_submission(row) for row in db.execute(query).scalars()]

    def claim_flag(
        self, phone: str, kind: NotificationKind, now: datetime, lease: timedelta,
    ) -> bool:
        claimed_at = _flag_column(kind, "claimed_at")
        statement = (
            update(SubmissionRow)
            .where(
                SubmissionRow.phone == phone,
                _flag_column(kind, "sent").is_(False),
                or_(claimed_at.is_(None), claimed_at <= now - lease),
            )
            .values({f"{kind.value}_claimed_at": now})
            .execution_options(synchronize_session=False)
        )
        with self._sessions.begin() as db:
            return db.execute(statement).rowcount == 1

    def mark_flags_sent(
        self, phones: Iterable[str], kind: NotificationKind, sent_at: datetime,
    ) -> int:
        phones = list(phones)
        if not phones:
            return 0
        statement = (
            update(SubmissionRow)
            .where(SubmissionRow.phone.in_(phones), _flag_column(kind, "sent").is_(False))
            .values({
                f"{kind.value}_sent": True,
                f"{kind.value}_sent_at": sent_at,
                f"{kind.value}_claimed_at": None,
            })
            .execution_options(synchronize_session=False)
        )
        with self._sessions.begin() as db:
            return db.execute(statement).rowcount

    def release_flags(self, phones: Iterable[str], kind: NotificationKind) -> None:
        phones = list(phones)
        if not phones:
            return
        statement = (
            update(SubmissionRow)
            .where(SubmissionRow.phone.in_(phones), _flag_column(kind, "sent").is_(False))
            .values({f"{kind.value}_claimed_at": None})
            .execution_options(synchronize_session=False)
        )
        with self._sessions.begin() as db:
            db.execute(statement)

    def reset_flags(self, phone: str, kinds: Iterable[NotificationKind]) -> bool:
        values: dict[str, Any] = {}
        for kind in kinds:
            values[f"{kind.value}_sent"] = False
            values[f"{kind.value}_sent_at"] = None
            values[f"{kind.value}_claimed_at"] = None
        if not values:
            return self.get(phone) is not None
        statement = (
            update(SubmissionRow)
            .where(SubmissionRow.phone == phone)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        with self._sessions.begin() as db:
            return db.execute(statement).rowcount == 1

    def list_booked(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None,
    ) -> list[Submission]:
        query = select(SubmissionRow).where(
            SubmissionRow.selected_slot.is_not(None),
            SubmissionRow.slot_date.is_not(None),
        )
        if start is not None:
            query = query.where(SubmissionRow.slot_date >= start)
        if end is not None:
            query = query.where(SubmissionRow.slot_date < end)
        with self._sessions() as db:
            return [_to_submission(row) for row in db.execute(query).scalars()]

    @staticmethod
    def _locked_submission(db, phone: str) -> Optional[SubmissionRow]:
        query = select(SubmissionRow).where(SubmissionRow.phone == phone).with_for_update()
        return db.execute(query).scalar_one_or_none()

    # ------------------------------------------------------------------ #
    # OTP records and issuance log
    # ------------------------------------------------------------------ #

    def latest(self, phone: str) -> Optional[OtpRecord]:
        with self._sessions() as db:
            row = db.get(OtpRecordRow, phone)
            if row is None:
                return None
            return OtpRecord(
                phone=row.phone,
                otp_hash=row.otp_hash,
                expires_at=row.expires_at,
                attempts=row.attempts,
                created_at=row.created_at,
            )

    def replace(self, record: OtpRecord) -> None:
        with self._sessions.begin() as db:
            db.merge(OtpRecordRow(
                phone=record.phone,
                otp_hash=record.otp_hash,
                expires_at=record.expires_at,
                attempts=record.attempts,
                created_at=record.created_at,
            ))

    def delete(self, phone: str) -> None:
        with self._sessions.begin() as db:
            db.execute(delete(OtpRecordRow).where(OtpRecordRow.phone == phone))

    def increment_attempts(self, phone: str) -> Optional[int]:
        statement = (
            update(OtpRecordRow)
            .where(OtpRecordRow.phone == phone)
            .values(attempts=OtpRecordRow.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        with self._sessions.begin() as db:
            if db.execute(statement).rowcount == 0:
                return None
            return db.execute(
                select(OtpRecordRow.attempts).where(OtpRecordRow.phone == phone)
            ).scalar_one()

    def reserve_issue(
        self, issue: OtpIssue, since: datetime, cooldown: timedelta, limit: int,
    ) -> bool:
        self._ensure_issue_lock(issue.phone)
        with self._sessions.begin() as db:
            db.execute(
                select(OtpIssueLockRow).where(OtpIssueLockRow.phone == issue.phone).with_for_update()
            )
            issued = self._issued_since(db, issue.phone, since)
            if issued and issued[-1] + cooldown > issue.issued_at:
                return False
            if len(issued) >= limit:
                return False
            db.add(OtpIssueRow(phone=issue.phone, issued_at=issue.issued_at))
            return True

    def cancel_issue(self, issue: OtpIssue) -> None:
        with self._sessions.begin() as db:
            db.execute(delete(OtpIssueRow).where(
                OtpIssueRow.phone == issue.phone,
                OtpIssueRow.issued_at == issue.issued_at,
            ))

    def issues_since(self, phone: str, since: datetime) -> list[datetime]:
        with self._sessions() as db:
            return self._issued_since(db, phone, since)

    def purge_expired(self, now: datetime, issue_window: timedelta) -> None:
        with self._sessions.begin() as db:
            db.execute(delete(OtpRecordRow).where(OtpRecordRow.expires_at < now))
            db.execute(delete(OtpIssueRow).where(OtpIssueRow.issued_at <= now - issue_window))
            db.execute(delete(VerifiedPhoneRow).where(VerifiedPhoneRow.expires_at <= now))

    @staticmethod
    def _issued_since(db, phone: str, since: datetime) -> list[datetime]:
        query = (
            select(OtpIssueRow.issued_at)
            .where(OtpIssueRow.phone == phone, OtpIssueRow.issued_at >= since)
            .order_by(OtpIssueRow.issued_at)
        )
        return list(db.execute(query).scalars())

    def _ensure_issue_lock(self, phone: str) -> None:
        with self._sessions() as db:
            if db.get(OtpIssueLockRow, phone) is not None:
                return
        try:
            with self._sessions.begin() as db:
                db.add(OtpIssueLockRow(phone=phone))
        except IntegrityError:
            logger.debug("Issue lock row for %s created concurrently", mask_phone(phone))

    # ------------------------------------------------------------------ #
    # Verified-phone grace markers
    # ------------------------------------------------------------------ #

    def mark_verified(self, marker: VerifiedPhone) -> None:
        with self._sessions.begin() as db:
            db.merge(VerifiedPhoneRow(
                phone=marker.phone,
                verified_at=marker.verified_at,
                expires_at=marker.expires_at,
            ))

    def is_verified(self, phone: str, now: datetime) -> bool:
        with self._sessions.begin() as db:
            row = db.get(VerifiedPhoneRow, phone)
            if row is None:
                return False
            if row.expires_at <= now:
                db.delete(row)
                return False
            return True

    def clear_verified(self, phone: str) -> None:
        with self._sessions.begin() as db:
            db.execute(delete(VerifiedPhoneRow).where(VerifiedPhoneRow.phone == phone))

    # ------------------------------------------------------------------ #
    # Slot configuration
    # ------------------------------------------------------------------ #

    def get_config(self, slot_id: str) -> Optional[SlotConfig]:
        with self._sessions() as db:
            row = db.get(SlotConfigRow, slot_id)
            if row is None:
                return None
            return SlotConfig(slot_id=row.slot_id, enabled=row.enabled, updated_at=row.updated_at)

    def configs_for(self, slot_ids: Iterable[str]) -> dict[str, bool]:
        slot_ids = list(slot_ids)
        if not slot_ids:
            return {}
        query = select(SlotConfigRow).where(SlotConfigRow.slot_id.in_(slot_ids))
        with self._sessions() as db:
            return {row.slot_id: row.enabled for row in db.execute(query).scalars()}

    def set_config(self, slot_id: str, enabled: bool, now: datetime) -> SlotConfig:
        with self._sessions.begin() as db:
            db.merge(SlotConfigRow(slot_id=slot_id, enabled=enabled, updated_at=now))
        return SlotConfig(slot_id=slot_id, enabled=enabled, updated_at=now)

    def ensure_config(self, slot_id: str, now: datetime) -> SlotConfig:
        existing = self.get_config(slot_id)
        if existing is not None:
            return existing
        try:
            with self._sessions.begin() as db:
                db.add(SlotConfigRow(slot_id=slot_id, enabled=True, updated_at=now))
            logger.debug("Created default slot config for %s", slot_id)
        except IntegrityError:
            logger.debug("Slot config for %s created concurrently", slot_id)
        return self.get_config(slot_id)

    def overrides_for(
        self, pairs: Iterable[tuple[date, str]],
    ) -> dict[tuple[date, str], bool]:
        wanted = set(pairs)
        if not wanted:
            return {}
        query = select(SlotDateOverrideRow).where(
            SlotDateOverrideRow.date.in_(sorted({day for day, _ in wanted})),
            SlotDateOverrideRow.slot_id.in_(sorted({slot_id for _, slot_id in wanted})),
        )
        with self._sessions() as db:
            return {
                (row.date, row.slot_id): row.enabled
                for row in db.execute(query).scalars()
                if (row.date, row.slot_id) in wanted
            }

    def set_override(
        self, day: date, slot_id: str, enabled: bool, now: datetime,
    ) -> SlotDateOverride:
        with self._sessions.begin() as db:
            db.merge(SlotDateOverrideRow(date=day, slot_id=slot_id, enabled=enabled, updated_at=now))
        return SlotDateOverride(date=day, slot_id=slot_id, enabled=enabled, updated_at=now)
