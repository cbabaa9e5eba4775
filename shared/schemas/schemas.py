"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import (
    TIME_SLOTS,
    ApartmentType,
    NotificationStatus,
    OrderStatus,
    ProfileStatus,
    UserRole,
)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


def _check_slot(value: str) -> str:
    if value not in TIME_SLOTS:
        raise ValueError(f"Time slot must be one of {', '.join(TIME_SLOTS)}")
    return value


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: Literal["cleaner", "manager"]


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str


class RefreshRequest(BaseSchema):
    refresh_token: Optional[str] = None


class ForgotPasswordRequest(BaseSchema):
    email: EmailStr


class ResetPasswordRequest(BaseSchema):
    token: str
    new_password: str = Field(..., min_length=6, max_length=128)


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: "ProfileResponse"


# ── Profiles ──────────────────────────────────────────────────

class PricesPayload(BaseSchema):
    price_studio: Optional[int] = Field(None, ge=0)
    price_one_plus_one: Optional[int] = Field(None, ge=0)
    price_two_plus_one: Optional[int] = Field(None, ge=0)


class ProfileResponse(PricesPayload):
    id: uuid.UUID
    email: EmailStr
    name: Optional[str]
    phone: Optional[str]
    avatar_url: Optional[str]
    role: UserRole
    status: ProfileStatus
    rating: Optional[float]
    completed_orders_count: int
    telegram_enabled: bool
    is_active: bool
    created_at: datetime


class ProfileUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{7,15}$")
    avatar_url: Optional[str] = None


class TelegramSettingsRequest(BaseSchema):
    telegram_chat_id: Optional[str] = Field(None, max_length=64)
    telegram_enabled: bool


class CleanerCardResponse(PricesPayload):
    id: uuid.UUID
    name: Optional[str]
    email: EmailStr
    avatar_url: Optional[str]
    rating: Optional[float]
    completed_orders_count: int


# ── Residential complexes & objects ───────────────────────────

class ComplexCreateRequest(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    manager_id: Optional[uuid.UUID] = None


class ComplexUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    manager_id: Optional[uuid.UUID] = None


class ComplexResponse(BaseSchema):
    id: uuid.UUID
    name: str
    city: Optional[str]
    manager_id: Optional[uuid.UUID]
    objects_count: int = 0


class ObjectCreateRequest(BaseSchema):
    complex_name: str = Field(..., min_length=1, max_length=255)
    apartment_number: str = Field(..., min_length=1, max_length=50)
    apartment_type: ApartmentType
    residential_complex_id: Optional[uuid.UUID] = None
    # Admins create objects on behalf of a manager
    user_id: Optional[uuid.UUID] = None


class ObjectUpdateRequest(BaseSchema):
    complex_name: Optional[str] = Field(None, min_length=1, max_length=255)
    apartment_number: Optional[str] = Field(None, min_length=1, max_length=50)
    apartment_type: Optional[ApartmentType] = None
    residential_complex_id: Optional[uuid.UUID] = None


class ObjectResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    complex_name: str
    apartment_number: str
    apartment_type: ApartmentType
    residential_complex_id: Optional[uuid.UUID]
    is_archived: bool
    created_at: datetime
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None


class ObjectComplexRequest(BaseSchema):
    residential_complex_id: Optional[uuid.UUID] = None


# ── Orders ────────────────────────────────────────────────────

class OrderCreateRequest(BaseSchema):
    object_id: uuid.UUID
    cleaner_id: Optional[uuid.UUID] = None
    scheduled_date: date
    scheduled_time: str

    @field_validator("scheduled_time")
    @classmethod
    def valid_slot(cls, v: str) -> str:
        return _check_slot(v)


class OrderRescheduleRequest(BaseSchema):
    scheduled_date: date
    scheduled_time: str
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("scheduled_time")
    @classmethod
    def valid_slot(cls, v: str) -> str:
        return _check_slot(v)


class OrderAssignRequest(BaseSchema):
    cleaner_id: Optional[uuid.UUID] = None  # None unassigns
    reason: Optional[str] = Field(None, max_length=500)


class OrderRatingRequest(BaseSchema):
    rating: int = Field(..., ge=1, le=5)


class OrderResponse(BaseSchema):
    id: uuid.UUID
    manager_id: uuid.UUID
    cleaner_id: Optional[uuid.UUID]
    object_id: uuid.UUID
    scheduled_date: date
    scheduled_time: str
    status: OrderStatus
    cleaner_rating: Optional[int]
    created_at: datetime
    updated_at: datetime


# ── Availability ──────────────────────────────────────────────

class SlotAvailability(BaseSchema):
    time: str
    available: bool


class AvailabilityResponse(BaseSchema):
    cleaner_id: uuid.UUID
    date: date
    unavailable: bool
    slots: List[SlotAvailability]


class UnavailabilityCreateRequest(BaseSchema):
    date: date
    end_date: Optional[date] = None  # Inclusive range end
    reason: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def order_range(self):
        if self.end_date and self.end_date < self.date:
            self.date, self.end_date = self.end_date, self.date
        return self


class UnavailabilityResponse(BaseSchema):
    id: uuid.UUID
    cleaner_id: uuid.UUID
    date: date
    reason: Optional[str]


class UnavailabilityAddedResponse(BaseSchema):
    added: int
    items: List[UnavailabilityResponse]


# ── Pricing ───────────────────────────────────────────────────

class ComplexPricingResponse(PricesPayload):
    complex_id: uuid.UUID


class PricingOverviewResponse(BaseSchema):
    global_prices: PricesPayload
    complexes: List[ComplexPricingResponse]


class PriceQuoteResponse(BaseSchema):
    cleaner_id: uuid.UUID
    object_id: uuid.UUID
    apartment_type: ApartmentType
    price: Optional[int]
    source: Optional[Literal["complex", "global"]]


# ── Reports ───────────────────────────────────────────────────

class ReportFileResponse(BaseSchema):
    id: uuid.UUID
    file_type: str
    file_path: str
    url: Optional[str] = None


class ReportResponse(BaseSchema):
    id: uuid.UUID
    order_id: uuid.UUID
    description: Optional[str]
    created_at: datetime
    files: List[ReportFileResponse] = []


# ── Chat ──────────────────────────────────────────────────────

class DialogCreateRequest(BaseSchema):
    counterpart_id: uuid.UUID


class DialogResponse(BaseSchema):
    id: uuid.UUID
    manager_id: uuid.UUID
    cleaner_id: uuid.UUID
    counterpart_name: Optional[str] = None
    unread_count: int = 0
    last_message_at: Optional[datetime] = None


class ChatFileResponse(BaseSchema):
    id: uuid.UUID
    file_type: str
    file_url: str
    url: Optional[str] = None


class ChatMessageResponse(BaseSchema):
    id: uuid.UUID
    dialog_id: uuid.UUID
    sender_id: uuid.UUID
    sender_role: str
    text: Optional[str]
    created_at: datetime
    files: List[ChatFileResponse] = []


# ── Telegram notifications ────────────────────────────────────

TelegramEvent = Literal["new_order", "order_status_changed", "new_message", "order_completed"]


class TelegramNotifyRequest(BaseSchema):
    user_id: uuid.UUID
    event_type: TelegramEvent
    data: Dict[str, Any] = Field(default_factory=dict)


class TelegramNotifyResponse(BaseSchema):
    success: bool = True
    sent: bool
    reason: Optional[str] = None


# ── Admin ─────────────────────────────────────────────────────

class AdminRoleUpdateRequest(BaseSchema):
    role: UserRole


class AdminStatusUpdateRequest(BaseSchema):
    status: ProfileStatus


class AdminOrdersCountRequest(BaseSchema):
    completed_orders_count: int = Field(..., ge=0)


class NotificationResolveRequest(BaseSchema):
    action: Literal["approved", "rejected"]


class AdminNotificationResponse(BaseSchema):
    id: uuid.UUID
    notification_type: str
    status: NotificationStatus
    user_id: uuid.UUID
    user_email: str
    user_role: str
    read_at: Optional[datetime]
    resolved_at: Optional[datetime]
    resolved_by: Optional[uuid.UUID]
    created_at: datetime
    is_overdue: bool = False


class AdminDashboardResponse(BaseSchema):
    total_users: int
    pending_users: int
    approved_users: int
    total_cleaners: int
    total_objects: int
    active_objects: int
    cleaners_active_today: int
    overdue_notifications: int


class RiskItemResponse(BaseSchema):
    order_id: uuid.UUID
    manager_id: uuid.UUID
    cleaner_id: Optional[uuid.UUID]
    object_id: uuid.UUID
    scheduled_date: date
    scheduled_time: str
    status: OrderStatus
    manager_name: Optional[str]
    manager_email: Optional[str]
    cleaner_name: Optional[str]
    cleaner_email: Optional[str]
    object_name: str
    risk_type: str
    risk_description: str
    risk_severity: str
    hours_overdue: Optional[int]


class RiskCountersResponse(BaseSchema):
    total: int = 0
    no_cleaner: int = 0
    unconfirmed: int = 0
    no_report: int = 0
    report_no_photos: int = 0
    delayed: int = 0


class RiskListResponse(BaseSchema):
    generated_at: datetime
    counters: RiskCountersResponse
    items: List[RiskItemResponse]


class AssignmentEntry(BaseSchema):
    id: uuid.UUID
    cleaner_id: Optional[str]
    assigned_at: datetime
    assigned_by: uuid.UUID
    action_type: Literal["assigned", "unassigned"]


class ScheduleEntry(BaseSchema):
    id: uuid.UUID
    old_date: Optional[str]
    old_time: Optional[str]
    new_date: str
    new_time: str
    changed_at: datetime
    changed_by: uuid.UUID
    reason: Optional[str]


class ReportHistoryEntry(BaseSchema):
    report_id: uuid.UUID
    submitted_at: datetime
    description: Optional[str]
    files_count: int


class AccountabilityTrailResponse(BaseSchema):
    order_id: uuid.UUID
    assignment_history: List[AssignmentEntry]
    schedule_history: List[ScheduleEntry]
    report_history: Optional[ReportHistoryEntry]


class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    admin_id: uuid.UUID
    action_type: str
    entity_type: str
    entity_id: str
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_")
    ip_address: Optional[str]
    created_at: datetime


AuthResponse.model_rebuild()
