"""
Database access for the BHSS backend.

A single SQLAlchemy-backed client serves every feature. Production points it
at Postgres; tests and local runs use an in-memory SQLite database.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import String, cast, create_engine, delete, event, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bhss.errors import DuplicateKeyError
from bhss.tables import (
    AnnouncementRow,
    AttendanceRow,
    Base,
    DeliveryRow,
    DistributionBatchRow,
    DistributionRowRow,
    EventRow,
    FileSubmissionRow,
    PushSubscriptionRow,
    SchoolBeneficiaryRow,
    SchoolDetailsRow,
    UserRow,
)

logger = logging.getLogger(__name__)

IN_MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _like(search: str) -> str:
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _matches(columns: Iterable[Any], search: Optional[str]):
    pattern = _like(search or "")
    return or_(*(column.ilike(pattern, escape="\\") for column in columns))


class DbClient:
    """
    SQLAlchemy-backed data access. Accepts any SQLAlchemy URL (Postgres in
    production, SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for DbClient")
        is_sqlite = database_url.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url:
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def reset(self) -> None:
        """Drop and recreate every table (useful in tests)."""
        Base.metadata.drop_all(self.engine)
        Base.metadata.create_all(self.engine)

    def _commit(self, session: Session, conflict_message: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateKeyError(conflict_message) from exc

    def _update(self, model, row_id: str, changes: dict, after=None):
        with self.Session() as session:
            row = session.get(model, row_id)
            if not row:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            if after:
                after(row)
            self._commit(session, "Update conflicts with an existing record")
            session.refresh(row)
            return row

    def _delete(self, model, row_id: str) -> bool:
        with self.Session() as session:
            row = session.get(model, row_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    # Users

    def create_user(self, **fields: Any) -> UserRow:
        with self.Session() as session:
            row = UserRow(**fields)
            session.add(row)
            self._commit(session, "Username or email already exists")
            session.refresh(row)
            return row

    def get_user(self, user_id: str) -> Optional[UserRow]:
        with self.Session() as session:
            return session.get(UserRow, user_id)

    def find_user_by_username(self, username: str) -> Optional[UserRow]:
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.username == username).limit(1)
            return session.execute(stmt).scalar_one_or_none()

    def find_user_by_username_or_email(
        self, username: str, email: Optional[str]
    ) -> Optional[UserRow]:
        conditions = [UserRow.username == username]
        if email:
            conditions.append(UserRow.email == email)
        with self.Session() as session:
            stmt = select(UserRow).where(or_(*conditions)).limit(1)
            return session.execute(stmt).scalars().first()

    def list_users(self) -> list[UserRow]:
        with self.Session() as session:
            stmt = select(UserRow).order_by(UserRow.created_at.desc())
            return list(session.execute(stmt).scalars())

    def update_user(self, user_id: str, changes: dict) -> Optional[UserRow]:
        return self._update(UserRow, user_id, changes)

    def delete_user(self, user_id: str) -> bool:
        return self._delete(UserRow, user_id)

    def list_user_ids(self, *, school: str, hla_role_type: str) -> list[str]:
        with self.Session() as session:
            stmt = select(UserRow.id).where(
                UserRow.school == school, UserRow.hla_role_type == hla_role_type
            )
            return list(session.execute(stmt).scalars())

    # Attendance

    def _upsert_attendance(
        self, session: Session, user_id: str, date_key: str, entry: dict
    ) -> AttendanceRow:
        stmt = select(AttendanceRow).where(
            AttendanceRow.user_id == user_id,
            AttendanceRow.date_key == date_key,
            AttendanceRow.grade == entry["grade"],
        )
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = AttendanceRow(
                user_id=user_id, date_key=date_key, grade=entry["grade"]
            )
            session.add(row)
        row.present = entry["present"]
        row.absent = entry["absent"]
        row.notes = entry.get("notes") or ""
        return row

    def save_attendance_record(
        self,
        *,
        user_id: str,
        date_key: str,
        grade: str,
        present: int,
        absent: int,
        notes: str = "",
    ) -> AttendanceRow:
        """Insert or replace the record keyed by (user, date, grade)."""
        with self.Session() as session:
            row = self._upsert_attendance(
                session,
                user_id,
                date_key,
                {"grade": grade, "present": present, "absent": absent, "notes": notes},
            )
            self._commit(session, "Attendance for this date and grade already exists")
            session.refresh(row)
            return row

    def save_attendance_records(
        self, *, user_id: str, date_key: str, entries: Sequence[dict]
    ) -> list[AttendanceRow]:
        with self.Session() as session:
            rows = [
                self._upsert_attendance(session, user_id, date_key, entry)
                for entry in entries
            ]
            self._commit(session, "Attendance for this date and grade already exists")
            for row in rows:
                session.refresh(row)
            return rows

    def get_attendance_record(
        self, user_id: str, date_key: str, grade: Optional[str] = None
    ) -> Optional[AttendanceRow]:
        with self.Session() as session:
            stmt = select(AttendanceRow).where(
                AttendanceRow.user_id == user_id, AttendanceRow.date_key == date_key
            )
            if grade:
                stmt = stmt.where(AttendanceRow.grade == grade)
            return session.execute(stmt.limit(1)).scalars().first()

    def list_attendance_for_date(
        self, user_id: str, date_key: str
    ) -> list[AttendanceRow]:
        with self.Session() as session:
            stmt = (
                select(AttendanceRow)
                .where(
                    AttendanceRow.user_id == user_id,
                    AttendanceRow.date_key == date_key,
                )
                .order_by(AttendanceRow.grade.asc())
            )
            return list(session.execute(stmt).scalars())

    def list_attendance_history(
        self,
        *,
        user_id: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        search: Optional[str] = None,
        oldest_first: bool = False,
        limit: int = 1000,
    ) -> list[tuple[AttendanceRow, Optional[UserRow]]]:
        stmt = select(AttendanceRow, UserRow).outerjoin(
            UserRow, UserRow.id == AttendanceRow.user_id
        )
        if user_id:
            stmt = stmt.where(AttendanceRow.user_id == user_id)
        if date_from:
            stmt = stmt.where(AttendanceRow.date_key >= date_from)
        if date_to:
            stmt = stmt.where(AttendanceRow.date_key <= date_to)
        if search:
            columns = [AttendanceRow.notes, AttendanceRow.date_key, AttendanceRow.grade]
            if not user_id:
                columns += [
                    UserRow.school,
                    UserRow.municipality,
                    UserRow.name,
                    UserRow.username,
                ]
            stmt = stmt.where(_matches(columns, search))
        if oldest_first:
            stmt = stmt.order_by(
                AttendanceRow.date_key.asc(), AttendanceRow.updated_at.asc()
            )
        else:
            stmt = stmt.order_by(
                AttendanceRow.date_key.desc(), AttendanceRow.updated_at.desc()
            )
        with self.Session() as session:
            return [(r[0], r[1]) for r in session.execute(stmt.limit(limit)).all()]

    # Delivery

    def get_delivery_record(
        self, user_id: str, date_key: str, category_key: str
    ) -> Optional[DeliveryRow]:
        with self.Session() as session:
            stmt = select(DeliveryRow).where(
                DeliveryRow.user_id == user_id,
                DeliveryRow.date_key == date_key,
                DeliveryRow.category_key == category_key,
            )
            return session.execute(stmt).scalar_one_or_none()

    def save_delivery_record(
        self,
        *,
        user_id: str,
        date_key: str,
        category_key: str,
        fields: dict,
        new_images: list[dict],
        replace_images: bool = False,
    ) -> DeliveryRow:
        """
        Insert or update the record keyed by (user, date, category).

        New images are appended to the stored list unless ``replace_images``
        is set, in which case they become the whole list.
        """
        with self.Session() as session:
            stmt = select(DeliveryRow).where(
                DeliveryRow.user_id == user_id,
                DeliveryRow.date_key == date_key,
                DeliveryRow.category_key == category_key,
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                row = DeliveryRow(
                    user_id=user_id,
                    date_key=date_key,
                    category_key=category_key,
                    images=[],
                )
                session.add(row)
            for key, value in fields.items():
                setattr(row, key, value)
            existing = [] if replace_images else list(row.images or [])
            # JSON columns only persist on reassignment.
            row.images = existing + list(new_images)
            self._commit(session, "Delivery for this date and category already exists")
            session.refresh(row)
            return row

    def list_delivery_for_date(self, user_id: str, date_key: str) -> list[DeliveryRow]:
        with self.Session() as session:
            stmt = (
                select(DeliveryRow)
                .where(DeliveryRow.user_id == user_id, DeliveryRow.date_key == date_key)
                .order_by(DeliveryRow.category_label.asc())
            )
            return list(session.execute(stmt).scalars())

    def list_delivery_history(
        self,
        *,
        user_ids: Optional[Sequence[str]] = None,
        date_key: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        search: Optional[str] = None,
        oldest_first: bool = False,
        limit: int = 1000,
    ) -> list[tuple[DeliveryRow, Optional[UserRow]]]:
        stmt = select(DeliveryRow, UserRow).outerjoin(
            UserRow, UserRow.id == DeliveryRow.user_id
        )
        if user_ids is not None:
            stmt = stmt.where(DeliveryRow.user_id.in_(list(user_ids)))
        if date_key:
            stmt = stmt.where(DeliveryRow.date_key == date_key)
        else:
            if date_from:
                stmt = stmt.where(DeliveryRow.date_key >= date_from)
            if date_to:
                stmt = stmt.where(DeliveryRow.date_key <= date_to)
        if search:
            columns = [
                DeliveryRow.category_label,
                DeliveryRow.category_key,
                DeliveryRow.remarks,
                DeliveryRow.date_key,
                DeliveryRow.status,
                DeliveryRow.status_reason,
                cast(DeliveryRow.concerns, String),
            ]
            if user_ids is None:
                columns += [
                    UserRow.school,
                    UserRow.municipality,
                    UserRow.school_address,
                    UserRow.username,
                ]
            stmt = stmt.where(_matches(columns, search))
        if oldest_first:
            stmt = stmt.order_by(
                DeliveryRow.uploaded_at.asc(), DeliveryRow.updated_at.asc()
            )
        else:
            stmt = stmt.order_by(
                DeliveryRow.uploaded_at.desc(), DeliveryRow.updated_at.desc()
            )
        with self.Session() as session:
            return [(r[0], r[1]) for r in session.execute(stmt.limit(limit)).all()]

    def delete_delivery_record(
        self, user_id: str, date_key: str, category_key: str
    ) -> Optional[DeliveryRow]:
        """Remove the record and return it so callers can clean up images."""
        with self.Session() as session:
            stmt = select(DeliveryRow).where(
                DeliveryRow.user_id == user_id,
                DeliveryRow.date_key == date_key,
                DeliveryRow.category_key == category_key,
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            session.delete(row)
            session.commit()
            return row

    # Push subscriptions

    def save_push_subscription(
        self, *, user_id: str, endpoint: str, p256dh: str, auth: str
    ) -> PushSubscriptionRow:
        with self.Session() as session:
            stmt = select(PushSubscriptionRow).where(
                PushSubscriptionRow.endpoint == endpoint
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                row = PushSubscriptionRow(endpoint=endpoint)
                session.add(row)
            row.user_id = user_id
            row.p256dh = p256dh
            row.auth = auth
            self._commit(session, "Subscription endpoint already registered")
            session.refresh(row)
            return row

    def delete_push_subscription(self, endpoint: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                delete(PushSubscriptionRow).where(
                    PushSubscriptionRow.endpoint == endpoint
                )
            )
            session.commit()
            return bool(result.rowcount)

    def list_push_subscriptions(self) -> list[PushSubscriptionRow]:
        with self.Session() as session:
            stmt = select(PushSubscriptionRow).order_by(
                PushSubscriptionRow.created_at.asc()
            )
            return list(session.execute(stmt).scalars())

    # Announcements

    def create_announcement(self, **fields: Any) -> AnnouncementRow:
        with self.Session() as session:
            row = AnnouncementRow(**fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def list_announcements(self, limit: int = 200) -> list[AnnouncementRow]:
        with self.Session() as session:
            stmt = (
                select(AnnouncementRow)
                .order_by(AnnouncementRow.created_at.desc())
                .limit(limit)
            )
            return list(session.execute(stmt).scalars())

    def get_announcement(self, announcement_id: str) -> Optional[AnnouncementRow]:
        with self.Session() as session:
            return session.get(AnnouncementRow, announcement_id)

    # Events

    def create_event(self, **fields: Any) -> EventRow:
        with self.Session() as session:
            row = EventRow(**fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def get_event(self, event_id: str) -> Optional[EventRow]:
        with self.Session() as session:
            return session.get(EventRow, event_id)

    def list_events(
        self,
        *,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        limit: int = 200,
    ) -> list[EventRow]:
        stmt = select(EventRow)
        if date_from:
            stmt = stmt.where(EventRow.date_key >= date_from)
        if date_to:
            stmt = stmt.where(EventRow.date_key <= date_to)
        stmt = stmt.order_by(EventRow.date_key.asc(), EventRow.start_time.asc())
        with self.Session() as session:
            return list(session.execute(stmt.limit(limit)).scalars())

    def update_event(self, event_id: str, changes: dict) -> Optional[EventRow]:
        return self._update(EventRow, event_id, changes)

    # File submissions

    def create_file_submissions(self, rows: Sequence[dict]) -> list[FileSubmissionRow]:
        with self.Session() as session:
            created = [FileSubmissionRow(**fields) for fields in rows]
            session.add_all(created)
            session.commit()
            for row in created:
                session.refresh(row)
            return created

    def get_file_submission(
        self, file_id: str, user_id: Optional[str] = None
    ) -> Optional[FileSubmissionRow]:
        with self.Session() as session:
            row = session.get(FileSubmissionRow, file_id)
            if row is None or (user_id and row.user_id != user_id):
                return None
            return row

    def delete_file_submission(self, file_id: str) -> bool:
        return self._delete(FileSubmissionRow, file_id)

    def list_file_submissions(
        self,
        user_id: str,
        *,
        folders: Optional[Sequence[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[FileSubmissionRow]:
        stmt = select(FileSubmissionRow).where(FileSubmissionRow.user_id == user_id)
        if folders:
            stmt = stmt.where(FileSubmissionRow.folder.in_(list(folders)))
        if start:
            stmt = stmt.where(FileSubmissionRow.upload_date >= start)
        if end:
            stmt = stmt.where(FileSubmissionRow.upload_date < end)
        stmt = stmt.order_by(FileSubmissionRow.upload_date.desc())
        with self.Session() as session:
            return list(session.execute(stmt).scalars())

    def count_file_submissions_by_folder(
        self,
        user_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, int]:
        stmt = (
            select(FileSubmissionRow.folder, func.count(FileSubmissionRow.id))
            .where(FileSubmissionRow.user_id == user_id)
            .group_by(FileSubmissionRow.folder)
        )
        if start:
            stmt = stmt.where(FileSubmissionRow.upload_date >= start)
        if end:
            stmt = stmt.where(FileSubmissionRow.upload_date < end)
        with self.Session() as session:
            return {folder: count for folder, count in session.execute(stmt).all()}

    def list_file_submission_history(
        self,
        *,
        hla_role_type: str,
        folder: Optional[str] = None,
        user_id: Optional[str] = None,
        municipality: Optional[str] = None,
        school: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        search: Optional[str] = None,
        limit: int = 5000,
    ) -> list[tuple[FileSubmissionRow, UserRow]]:
        stmt = (
            select(FileSubmissionRow, UserRow)
            .join(UserRow, UserRow.id == FileSubmissionRow.user_id)
            .where(UserRow.hla_role_type == hla_role_type)
        )
        if folder:
            stmt = stmt.where(FileSubmissionRow.folder == folder)
        if user_id:
            stmt = stmt.where(FileSubmissionRow.user_id == user_id)
        if municipality:
            stmt = stmt.where(UserRow.municipality == municipality)
        if school:
            stmt = stmt.where(UserRow.school == school)
        if start:
            stmt = stmt.where(FileSubmissionRow.upload_date >= start)
        if end:
            stmt = stmt.where(FileSubmissionRow.upload_date < end)
        if search:
            stmt = stmt.where(
                _matches(
                    [
                        FileSubmissionRow.original_name,
                        FileSubmissionRow.file_name,
                        FileSubmissionRow.description,
                        FileSubmissionRow.folder,
                        FileSubmissionRow.status,
                        FileSubmissionRow.mime_type,
                        UserRow.name,
                        UserRow.username,
                        UserRow.school,
                        UserRow.municipality,
                    ],
                    search,
                )
            )
        stmt = stmt.order_by(FileSubmissionRow.upload_date.desc()).limit(limit)
        with self.Session() as session:
            return [(r[0], r[1]) for r in session.execute(stmt).all()]

    # Distribution batches

    def find_batch_by_hash(self, content_hash: str) -> Optional[DistributionBatchRow]:
        with self.Session() as session:
            stmt = select(DistributionBatchRow).where(
                DistributionBatchRow.content_hash == content_hash
            )
            return session.execute(stmt).scalar_one_or_none()

    def create_batch(
        self, batch_fields: dict, rows: Sequence[dict]
    ) -> DistributionBatchRow:
        """Insert a batch and all of its rows in one transaction."""
        with self.Session() as session:
            try:
                batch = DistributionBatchRow(**batch_fields)
                session.add(batch)
                session.flush()
                session.add_all(
                    [DistributionRowRow(batch_id=batch.id, **fields) for fields in rows]
                )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateKeyError(
                    "A batch with identical content was uploaded concurrently"
                ) from exc
            session.refresh(batch)
            logger.info(
                "Created %s batch %s with %d rows",
                batch.kind,
                batch.id,
                len(rows),
            )
            return batch

    def list_batches(self, kind: str, limit: int = 200) -> list[DistributionBatchRow]:
        with self.Session() as session:
            stmt = (
                select(DistributionBatchRow)
                .where(DistributionBatchRow.kind == kind)
                .order_by(DistributionBatchRow.created_at.desc())
                .limit(limit)
            )
            return list(session.execute(stmt).scalars())

    def get_latest_batch(self, kind: str) -> Optional[DistributionBatchRow]:
        batches = self.list_batches(kind, limit=1)
        return batches[0] if batches else None

    def get_batch(self, kind: str, batch_id: str) -> Optional[DistributionBatchRow]:
        with self.Session() as session:
            row = session.get(DistributionBatchRow, batch_id)
            if row is None or row.kind != kind:
                return None
            return row

    def list_batch_rows(self, batch_id: str) -> list[DistributionRowRow]:
        with self.Session() as session:
            stmt = (
                select(DistributionRowRow)
                .where(DistributionRowRow.batch_id == batch_id)
                .order_by(
                    DistributionRowRow.municipality.asc(),
                    DistributionRowRow.school_name.asc(),
                )
            )
            return list(session.execute(stmt).scalars())

    def delete_batch(self, kind: str, batch_id: str) -> bool:
        with self.Session() as session:
            batch = session.get(DistributionBatchRow, batch_id)
            if batch is None or batch.kind != kind:
                return False
            session.execute(
                delete(DistributionRowRow).where(DistributionRowRow.batch_id == batch_id)
            )
            session.delete(batch)
            session.commit()
            return True

    def update_row_metric(
        self, kind: str, row_id: str, field: str, value: Any
    ) -> Optional[DistributionRowRow]:
        with self.Session() as session:
            row = session.get(DistributionRowRow, row_id)
            if row is None or row.kind != kind:
                return None
            row.metrics = {**(row.metrics or {}), field: value}
            session.commit()
            session.refresh(row)
            return row

    # School directory

    def list_beneficiaries(
        self, municipality: str, school_year: str
    ) -> list[SchoolBeneficiaryRow]:
        with self.Session() as session:
            stmt = (
                select(SchoolBeneficiaryRow)
                .where(
                    SchoolBeneficiaryRow.municipality == municipality,
                    SchoolBeneficiaryRow.school_year == school_year,
                )
                .order_by(
                    SchoolBeneficiaryRow.bhss_kitchen_name.asc(),
                    SchoolBeneficiaryRow.school_name.asc(),
                )
            )
            return list(session.execute(stmt).scalars())

    def create_beneficiaries(self, rows: Sequence[dict]) -> list[SchoolBeneficiaryRow]:
        with self.Session() as session:
            created = []
            for fields in rows:
                row = SchoolBeneficiaryRow(**fields)
                row.recompute_total()
                created.append(row)
            session.add_all(created)
            session.commit()
            for row in created:
                session.refresh(row)
            return created

    def update_beneficiary(
        self, row_id: str, changes: dict
    ) -> Optional[SchoolBeneficiaryRow]:
        return self._update(
            SchoolBeneficiaryRow, row_id, changes, after=SchoolBeneficiaryRow.recompute_total
        )

    def delete_beneficiary(self, row_id: str) -> bool:
        return self._delete(SchoolBeneficiaryRow, row_id)

    def list_school_details(
        self, municipality: str, school_year: str
    ) -> list[SchoolDetailsRow]:
        with self.Session() as session:
            stmt = (
                select(SchoolDetailsRow)
                .where(
                    SchoolDetailsRow.municipality == municipality,
                    SchoolDetailsRow.school_year == school_year,
                )
                .order_by(SchoolDetailsRow.complete_name.asc())
            )
            return list(session.execute(stmt).scalars())

    def create_school_details(self, **fields: Any) -> SchoolDetailsRow:
        with self.Session() as session:
            row = SchoolDetailsRow(**fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def update_school_details(
        self, row_id: str, changes: dict
    ) -> Optional[SchoolDetailsRow]:
        return self._update(SchoolDetailsRow, row_id, changes)

    def delete_school_details(self, row_id: str) -> bool:
        return self._delete(SchoolDetailsRow, row_id)
