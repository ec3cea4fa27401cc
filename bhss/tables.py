"""
SQLAlchemy table definitions.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


Base = declarative_base()


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class UserRow(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    username = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=True, unique=True)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="user")
    school = Column(String, nullable=False, default="")
    contact_number = Column(String, nullable=False, default="")
    school_address = Column(String, nullable=False, default="")
    hla_manager_name = Column(String, nullable=False, default="")
    hla_role_type = Column(String, nullable=False, default="")
    avatar_url = Column(String, nullable=False, default="")
    municipality = Column(String, nullable=False, default="")
    province = Column(String, nullable=False, default="Bataan")
    is_active = Column(Boolean, nullable=False, default=True)


class AttendanceRow(TimestampMixin, Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("user_id", "date_key", "grade", name="uq_attendance_key"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), nullable=False, index=True)
    date_key = Column(String, nullable=False, index=True)
    grade = Column(String, nullable=False, default="")
    present = Column(Integer, nullable=False, default=0)
    absent = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=False, default="")


class DeliveryRow(TimestampMixin, Base):
    __tablename__ = "delivery_records"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "date_key", "category_key", name="uq_delivery_key"
        ),
        Index("ix_delivery_user_date_uploaded", "user_id", "date_key", "uploaded_at"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), nullable=False, index=True)
    date_key = Column(String, nullable=False, index=True)
    category_key = Column(String, nullable=False, index=True)
    category_label = Column(String, nullable=False)
    status = Column(String, nullable=False, default="Pending")
    status_reason = Column(Text, nullable=False, default="")
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=True)
    concerns = Column(JSON, nullable=False, default=list)
    remarks = Column(Text, nullable=False, default="")
    images = Column(JSON, nullable=False, default=list)


class PushSubscriptionRow(TimestampMixin, Base):
    __tablename__ = "push_subscriptions"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), nullable=False, index=True)
    endpoint = Column(String, nullable=False, unique=True)
    p256dh = Column(String, nullable=False)
    auth = Column(String, nullable=False)

    def subscription_info(self) -> dict:
        """Shape expected by web-push libraries."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class AnnouncementRow(TimestampMixin, Base):
    __tablename__ = "announcements"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(160), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String, nullable=False, default="Normal", index=True)
    audience = Column(String, nullable=False, default="All", index=True)
    attachments = Column(JSON, nullable=False, default=list)
    created_by = Column(String(32), nullable=False, index=True)


class EventRow(TimestampMixin, Base):
    __tablename__ = "events"
    __table_args__ = (Index("ix_events_date_start", "date_key", "start_time"),)

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(120), nullable=False)
    description = Column(Text, nullable=False, default="")
    date_key = Column(String, nullable=False, index=True)
    start_time = Column(String, nullable=False)
    end_time = Column(String, nullable=False)
    status = Column(String, nullable=False, default="Scheduled", index=True)
    cancel_reason = Column(String(500), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(32), nullable=True)
    attachment = Column(JSON, nullable=True)
    created_by = Column(String(32), nullable=False, index=True)


class FileSubmissionRow(TimestampMixin, Base):
    __tablename__ = "file_submissions"
    __table_args__ = (Index("ix_file_submissions_user_folder", "user_id", "folder"),)

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), nullable=False)
    folder = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False)
    storage_key = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    upload_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String, nullable=False, default="uploaded")


class DistributionBatchRow(TimestampMixin, Base):
    __tablename__ = "distribution_batches"
    __table_args__ = (
        Index("ix_batches_kind_created", "kind", "created_at"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    kind = Column(String(16), nullable=False)
    municipality = Column(String, nullable=False, default="ALL")
    bhss_kitchen_name = Column(String, nullable=False)
    content_hash = Column(String(64), nullable=False, unique=True)
    sheet_name = Column(String, nullable=False, default="")
    source_file_name = Column(String, nullable=False, default="")
    uploaded_by_user_id = Column(String, nullable=False, default="")


class DistributionRowRow(TimestampMixin, Base):
    __tablename__ = "distribution_rows"
    __table_args__ = (
        Index(
            "ix_distribution_rows_school",
            "municipality",
            "bhss_kitchen_name",
            "school_name",
        ),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    batch_id = Column(
        String(32),
        ForeignKey("distribution_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String(16), nullable=False)
    municipality = Column(String, nullable=False)
    bhss_kitchen_name = Column(String, nullable=False)
    school_name = Column(String, nullable=False)
    metrics = Column(JSON, nullable=False, default=dict)


class SchoolBeneficiaryRow(TimestampMixin, Base):
    __tablename__ = "school_beneficiaries"
    __table_args__ = (
        Index("ix_beneficiaries_municipality_year", "municipality", "school_year"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    municipality = Column(String, nullable=False)
    school_year = Column(String, nullable=False)
    bhss_kitchen_name = Column(String, nullable=False)
    school_name = Column(String, nullable=False)
    grade2 = Column(Float, nullable=False, default=0)
    grade3 = Column(Float, nullable=False, default=0)
    grade4 = Column(Float, nullable=False, default=0)
    total = Column(Float, nullable=False, default=0)

    def recompute_total(self) -> None:
        self.total = (self.grade2 or 0) + (self.grade3 or 0) + (self.grade4 or 0)


SCHOOL_CONTACT_FIELDS = (
    "principal_name",
    "principal_contact",
    "hla_coordinator_name",
    "hla_coordinator_contact",
    "hla_coordinator_facebook",
    "hla_manager_name",
    "hla_manager_contact",
    "hla_manager_facebook",
    "chief_cook_name",
    "chief_cook_contact",
    "chief_cook_facebook",
    "assistant_cook_name",
    "assistant_cook_contact",
    "assistant_cook_facebook",
    "nurse_name",
    "nurse_contact",
    "nurse_facebook",
)


class SchoolDetailsRow(TimestampMixin, Base):
    __tablename__ = "school_details"
    __table_args__ = (
        Index("ix_school_details_municipality_year", "municipality", "school_year"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    municipality = Column(String, nullable=False)
    school_year = Column(String, nullable=False)
    complete_name = Column(String, nullable=False)
    principal_name = Column(String, nullable=False, default="")
    principal_contact = Column(String, nullable=False, default="")
    hla_coordinator_name = Column(String, nullable=False, default="")
    hla_coordinator_contact = Column(String, nullable=False, default="")
    hla_coordinator_facebook = Column(String, nullable=False, default="")
    hla_manager_name = Column(String, nullable=False, default="")
    hla_manager_contact = Column(String, nullable=False, default="")
    hla_manager_facebook = Column(String, nullable=False, default="")
    chief_cook_name = Column(String, nullable=False, default="")
    chief_cook_contact = Column(String, nullable=False, default="")
    chief_cook_facebook = Column(String, nullable=False, default="")
    assistant_cook_name = Column(String, nullable=False, default="")
    assistant_cook_contact = Column(String, nullable=False, default="")
    assistant_cook_facebook = Column(String, nullable=False, default="")
    nurse_name = Column(String, nullable=False, default="")
    nurse_contact = Column(String, nullable=False, default="")
    nurse_facebook = Column(String, nullable=False, default="")
