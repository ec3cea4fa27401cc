"""
Pydantic schemas for the BHSS API. JSON keys are camelCase on the wire.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, StrictBool, field_validator, model_validator
from pydantic.alias_generators import to_camel

from bhss.distribution import normalize_number, normalize_string


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def _count(value: Any) -> Optional[int]:
    """Floor a non-negative finite number; ``None`` for anything else."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return math.floor(number)


class MessageResponse(ApiModel):
    message: str


class SuccessResponse(ApiModel):
    success: bool = True


# Auth and users


class RegisterRequest(ApiModel):
    username: str = ""
    email: str = ""
    password: str = ""
    name: str = ""
    role: Optional[str] = None


class LoginRequest(ApiModel):
    username: str = ""
    password: str = ""


class UserOut(ApiModel):
    id: str
    username: str
    email: Optional[str] = None
    name: str
    role: str
    school: str = ""
    contact_number: str = ""
    school_address: str = ""
    hla_manager_name: str = ""
    hla_role_type: str = ""
    avatar_url: str = ""
    municipality: str = ""
    province: str = ""
    is_active: bool = True
    created_at: Optional[datetime] = None


class LoginResponse(ApiModel):
    token: str
    user: UserOut


class UserResponse(ApiModel):
    user: UserOut


class UsersResponse(ApiModel):
    users: list[UserOut]


class UserCreateRequest(ApiModel):
    username: str = ""
    password: str = ""
    school: str = ""
    municipality: str = ""
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    contact_number: Optional[str] = None
    school_address: Optional[str] = None
    hla_manager_name: Optional[str] = None
    hla_role_type: Optional[str] = None
    province: Optional[str] = None


class UserUpdateRequest(ApiModel):
    email: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None
    contact_number: Optional[str] = None
    school_address: Optional[str] = None
    hla_manager_name: Optional[str] = None
    hla_role_type: Optional[str] = None
    avatar_url: Optional[str] = None
    # Admin only
    role: Optional[str] = None
    school: Optional[str] = None
    municipality: Optional[str] = None
    province: Optional[str] = None
    is_active: Optional[bool] = None


class UserActiveRequest(ApiModel):
    is_active: Optional[StrictBool] = None


class PasswordChangeRequest(ApiModel):
    password: Optional[str] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = None


# Attendance


class AttendanceSaveRequest(ApiModel):
    date_key: str = ""
    grade: Any = None
    present: Any = None
    absent: Any = None
    notes: Any = None

    @model_validator(mode="after")
    def check_fields(self) -> "AttendanceSaveRequest":
        self.date_key = self.date_key.strip()
        if not self.date_key:
            raise ValueError("dateKey is required")
        present, absent = _count(self.present), _count(self.absent)
        if present is None or absent is None:
            raise ValueError("present and absent must be non-negative numbers")
        self.present, self.absent = present, absent
        self.grade = str(self.grade).strip() if self.grade else ""
        if not self.grade:
            raise ValueError("grade is required")
        self.notes = str(self.notes) if self.notes else ""
        return self


class AttendanceBulkEntry(ApiModel):
    grade: str = ""
    present: int = 0
    absent: int = 0
    notes: str = ""

    @field_validator("grade", mode="before")
    @classmethod
    def _grade(cls, value: Any) -> str:
        return str(value).strip() if value else ""

    @field_validator("present", "absent", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0
        return max(0, math.floor(number)) if math.isfinite(number) else 0

    @field_validator("notes", mode="before")
    @classmethod
    def _notes(cls, value: Any) -> str:
        return str(value) if value else ""

    def has_content(self) -> bool:
        return bool(self.grade) and (
            self.present + self.absent > 0 or bool(self.notes.strip())
        )


class AttendanceBulkRequest(ApiModel):
    date_key: str = ""
    entries: Optional[list[AttendanceBulkEntry]] = None


class AttendanceRecordOut(ApiModel):
    id: str
    user_id: str
    date_key: str
    grade: str
    present: int
    absent: int
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AttendanceHistoryItem(AttendanceRecordOut):
    municipality: str = ""
    school: str = ""
    user_name: str = ""


class AttendanceRecordResponse(ApiModel):
    record: Optional[AttendanceRecordOut] = None


class AttendanceRecordsResponse(ApiModel):
    records: list[AttendanceRecordOut]


class AttendanceHistoryResponse(ApiModel):
    records: list[AttendanceHistoryItem]


# Stored uploads


class StoredFileOut(ApiModel):
    filename: str
    original_name: str = ""
    mime_type: str = ""
    size: int = 0
    url: str


# Delivery


class DeliveryRecordOut(ApiModel):
    id: str
    user_id: str
    date_key: str
    category_key: str
    category_label: str
    status: str
    status_reason: str = ""
    status_updated_at: Optional[datetime] = None
    uploaded_at: Optional[datetime] = None
    concerns: list[str] = []
    remarks: str = ""
    images: list[StoredFileOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeliveryHistoryItem(DeliveryRecordOut):
    municipality: str = ""
    school: str = ""
    hla_manager_name: str = ""


class DeliveryRecordResponse(ApiModel):
    record: DeliveryRecordOut


class DeliveryRecordsResponse(ApiModel):
    records: list[DeliveryRecordOut]


class DeliveryHistoryResponse(ApiModel):
    records: list[DeliveryHistoryItem]


class DeliveryDeleteRequest(ApiModel):
    date_key: str = ""
    category_key: str = ""


# Push


class PushKeys(ApiModel):
    p256dh: str = ""
    auth: str = ""


class PushSubscribeRequest(ApiModel):
    endpoint: str = ""
    keys: Optional[PushKeys] = None


class PushUnsubscribeRequest(ApiModel):
    endpoint: str = ""


class PushSubscriptionOut(ApiModel):
    id: str
    user_id: str
    endpoint: str
    keys: PushKeys


class PushSubscriptionResponse(ApiModel):
    subscription: PushSubscriptionOut


class VapidKeyResponse(ApiModel):
    public_key: str


class OkResponse(ApiModel):
    ok: bool = True


# Announcements and events


class AnnouncementOut(ApiModel):
    id: str
    title: str
    message: str
    priority: str
    audience: str
    attachments: list[StoredFileOut] = []
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnnouncementResponse(ApiModel):
    announcement: AnnouncementOut


class AnnouncementsResponse(ApiModel):
    announcements: list[AnnouncementOut]


class EventOut(ApiModel):
    id: str
    title: str
    description: str = ""
    date_key: str
    start_time: str
    end_time: str
    status: str
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    attachment: Optional[StoredFileOut] = None
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EventResponse(ApiModel):
    event: EventOut


class EventsResponse(ApiModel):
    events: list[EventOut]


class EventCancelRequest(ApiModel):
    reason: str = ""


# File submissions


class FileSubmissionOut(ApiModel):
    id: str
    name: str
    size: int
    type: str
    description: str = ""
    uploaded_at: Optional[datetime] = None
    status: str
    folder: str
    url: str


class CoordinatorOut(ApiModel):
    id: str = ""
    name: str = ""
    username: str = ""
    municipality: str = ""
    school: str = ""
    hla_role_type: str = ""


class FileSubmissionHistoryItem(FileSubmissionOut):
    coordinator: CoordinatorOut


class FileSubmissionsResponse(ApiModel):
    files: list[FileSubmissionOut]


class FileUploadResponse(ApiModel):
    message: str
    files: list[FileSubmissionOut]


class FolderCountsResponse(ApiModel):
    folder_counts: dict[str, int]


class FileSubmissionHistoryResponse(ApiModel):
    records: list[FileSubmissionHistoryItem]


# Distribution


class BatchUploadRequest(ApiModel):
    bhss_kitchen_name: Optional[str] = None
    sheet_name: Optional[str] = None
    source_file_name: Optional[str] = None
    items: Optional[list[Any]] = None


class DistributionBatchOut(ApiModel):
    id: str
    kind: str
    municipality: str
    bhss_kitchen_name: str
    content_hash: str
    sheet_name: str = ""
    source_file_name: str = ""
    uploaded_by_user_id: str = ""
    created_at: Optional[datetime] = None


class DistributionRowOut(ApiModel):
    """Metric fields for the batch kind are carried as extra keys."""

    model_config = ConfigDict(extra="allow")

    id: str
    batch_id: str
    municipality: str
    bhss_kitchen_name: str
    school_name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BatchSubmissionResponse(ApiModel):
    unchanged: bool
    batch: DistributionBatchOut


class BatchListResponse(ApiModel):
    batches: list[DistributionBatchOut]


class BatchDetailResponse(ApiModel):
    batch: Optional[DistributionBatchOut] = None
    rows: list[DistributionRowOut] = []


class RowPatchRequest(ApiModel):
    field: str = ""
    value: Any = None


class DistributionRowResponse(ApiModel):
    row: DistributionRowOut


# School directory


class BeneficiaryItem(ApiModel):
    bhss_kitchen_name: str = ""
    school_name: str = ""
    grade2: float = 0
    grade3: float = 0
    grade4: float = 0

    @field_validator("bhss_kitchen_name", "school_name", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return normalize_string(value)

    @field_validator("grade2", "grade3", "grade4", mode="before")
    @classmethod
    def _number(cls, value: Any) -> float:
        return normalize_number(value)


class BeneficiaryBulkRequest(ApiModel):
    municipality: str = ""
    school_year: str = ""
    items: list[BeneficiaryItem] = []


class BeneficiaryUpdateRequest(ApiModel):
    bhss_kitchen_name: Optional[str] = None
    school_name: Optional[str] = None
    grade2: Optional[float] = None
    grade3: Optional[float] = None
    grade4: Optional[float] = None

    @field_validator("bhss_kitchen_name", "school_name", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Optional[str]:
        return None if value is None else normalize_string(value)

    @field_validator("grade2", "grade3", "grade4", mode="before")
    @classmethod
    def _number(cls, value: Any) -> Optional[float]:
        return None if value is None else normalize_number(value)


class SchoolBeneficiaryOut(ApiModel):
    id: str
    municipality: str
    school_year: str
    bhss_kitchen_name: str
    school_name: str
    grade2: float
    grade3: float
    grade4: float
    total: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BeneficiaryRowsResponse(ApiModel):
    rows: list[SchoolBeneficiaryOut]


class BeneficiaryRowResponse(ApiModel):
    row: SchoolBeneficiaryOut


class SchoolContacts(ApiModel):
    principal_name: str = ""
    principal_contact: str = ""
    hla_coordinator_name: str = ""
    hla_coordinator_contact: str = ""
    hla_coordinator_facebook: str = ""
    hla_manager_name: str = ""
    hla_manager_contact: str = ""
    hla_manager_facebook: str = ""
    chief_cook_name: str = ""
    chief_cook_contact: str = ""
    chief_cook_facebook: str = ""
    assistant_cook_name: str = ""
    assistant_cook_contact: str = ""
    assistant_cook_facebook: str = ""
    nurse_name: str = ""
    nurse_contact: str = ""
    nurse_facebook: str = ""


class SchoolDetailsCreateRequest(SchoolContacts):
    municipality: str = ""
    school_year: str = ""
    complete_name: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return normalize_string(value)


class SchoolDetailsUpdateRequest(ApiModel):
    complete_name: Optional[str] = None
    principal_name: Optional[str] = None
    principal_contact: Optional[str] = None
    hla_coordinator_name: Optional[str] = None
    hla_coordinator_contact: Optional[str] = None
    hla_coordinator_facebook: Optional[str] = None
    hla_manager_name: Optional[str] = None
    hla_manager_contact: Optional[str] = None
    hla_manager_facebook: Optional[str] = None
    chief_cook_name: Optional[str] = None
    chief_cook_contact: Optional[str] = None
    chief_cook_facebook: Optional[str] = None
    assistant_cook_name: Optional[str] = None
    assistant_cook_contact: Optional[str] = None
    assistant_cook_facebook: Optional[str] = None
    nurse_name: Optional[str] = None
    nurse_contact: Optional[str] = None
    nurse_facebook: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Optional[str]:
        return None if value is None else normalize_string(value)


class SchoolDetailsOut(SchoolContacts):
    id: str
    municipality: str
    school_year: str
    complete_name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SchoolDetailsRowsResponse(ApiModel):
    rows: list[SchoolDetailsOut]


class SchoolDetailsRowResponse(ApiModel):
    row: SchoolDetailsOut
