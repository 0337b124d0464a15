import uuid as uuid_pkg
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlalchemy.types import JSON
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# create common models for the timestamp and uuid
class UUIDModel(SQLModel):
    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )


class TimestampModel(SQLModel):
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"nullable": False},
        sa_type=DateTime(timezone=True),
    )

    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"nullable": False, "onupdate": utc_now},
        sa_type=DateTime(timezone=True),
    )


class User(UUIDModel, TimestampModel, table=True):
    __tablename__ = "users"

    name: Optional[str] = Field(default=None, nullable=True)
    email: str = Field(nullable=False, index=True, unique=True)
    stripe_customer_id: Optional[str] = Field(default=None, nullable=True, unique=True)
    plan_slug: str = Field(default="free", nullable=False)
    credits_remaining: int = Field(default=10, nullable=False)
    credits_reset_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    organization_id: Optional[uuid_pkg.UUID] = Field(default=None, nullable=True)
    is_active: bool = Field(default=True)


class Plan(UUIDModel, TimestampModel, table=True):
    __tablename__ = "plans"

    slug: str = Field(nullable=False, unique=True, index=True)
    name: str = Field(nullable=False)
    credits_per_month: int = Field(nullable=False)
    max_team_members: int = Field(default=1)
    stripe_price_id: Optional[str] = Field(default=None, nullable=True, index=True)
    is_active: bool = Field(default=True)
    sort_order: int = Field(default=0)


class StagingJobStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PREPROCESSING = "preprocessing"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = (StagingJobStatus.COMPLETED, StagingJobStatus.FAILED)


class StagingJob(UUIDModel, TimestampModel, table=True):
    __tablename__ = "staging_jobs"

    user_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    property_id: Optional[uuid_pkg.UUID] = Field(default=None, nullable=True)
    parent_job_id: Optional[uuid_pkg.UUID] = Field(default=None, nullable=True)
    version_group_id: Optional[uuid_pkg.UUID] = Field(
        default=None, nullable=True, index=True
    )
    room_type: str = Field(nullable=False)
    style: str = Field(nullable=False)
    original_image_url: str = Field(nullable=False)
    mask_image_url: Optional[str] = Field(default=None, nullable=True)
    staged_image_url: Optional[str] = Field(default=None, nullable=True)
    status: StagingJobStatus = Field(
        default=StagingJobStatus.PENDING, nullable=False, index=True
    )
    provider: str = Field(nullable=False)
    prediction_id: Optional[str] = Field(default=None, nullable=True, index=True)
    error_message: Optional[str] = Field(default=None, nullable=True)
    processing_time_ms: Optional[int] = Field(default=None, nullable=True)
    credits_cost: int = Field(default=1, nullable=False)
    is_primary_version: bool = Field(default=True)
    storage_degraded: bool = Field(default=False)
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    generation_params: Dict = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=True)
    )


class VersionGroup(UUIDModel, TimestampModel, table=True):
    __tablename__ = "version_groups"
    __table_args__ = (
        UniqueConstraint("user_id", "original_image_hash", name="uq_version_group_image"),
    )

    user_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    original_image_hash: str = Field(nullable=False)
    original_image_url: str = Field(nullable=False)
    free_remixes_used: int = Field(default=0, nullable=False)


class TransactionType(str, Enum):
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    TOPUP_PURCHASE = "topup_purchase"
    STAGING_DEDUCTION = "staging_deduction"
    ALLOCATION_TO_MEMBER = "allocation_to_member"
    ALLOCATION_FROM_OWNER = "allocation_from_owner"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class CreditTransaction(UUIDModel, TimestampModel, table=True):
    __tablename__ = "credit_transactions"

    user_id: Optional[uuid_pkg.UUID] = Field(default=None, nullable=True, index=True)
    organization_id: Optional[uuid_pkg.UUID] = Field(
        default=None, nullable=True, index=True
    )
    transaction_type: TransactionType = Field(nullable=False)
    # magnitude only, the transaction type gives the direction
    amount: int = Field(nullable=False)
    balance_after: int = Field(nullable=False)
    reference_id: Optional[str] = Field(default=None, nullable=True, index=True)
    description: Optional[str] = Field(default=None, nullable=True)

    credit_metadata: Dict = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=True)
    )


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    TRIALING = "trialing"
    PAUSED = "paused"


class Subscription(UUIDModel, TimestampModel, table=True):
    __tablename__ = "subscriptions"

    user_id: uuid_pkg.UUID = Field(nullable=False, unique=True, index=True)
    plan_id: Optional[uuid_pkg.UUID] = Field(default=None, nullable=True)
    stripe_subscription_id: str = Field(nullable=False, unique=True, index=True)
    stripe_customer_id: Optional[str] = Field(default=None, nullable=True)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE, nullable=False)
    current_period_start: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    current_period_end: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class Organization(UUIDModel, TimestampModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False)
    owner_id: uuid_pkg.UUID = Field(nullable=False, unique=True, index=True)
    total_credits: int = Field(default=0, nullable=False)
    unallocated_credits: int = Field(default=0, nullable=False)


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class OrganizationMember(UUIDModel, TimestampModel, table=True):
    __tablename__ = "organization_members"

    organization_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    user_id: uuid_pkg.UUID = Field(nullable=False, unique=True, index=True)
    role: MemberRole = Field(default=MemberRole.MEMBER, nullable=False)
    allocated_credits: int = Field(default=0, nullable=False)
    credits_used_this_period: int = Field(default=0, nullable=False)
    joined_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class CreditTopup(UUIDModel, TimestampModel, table=True):
    __tablename__ = "credit_topups"

    user_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    stripe_checkout_session_id: str = Field(nullable=False, unique=True, index=True)
    credits_purchased: int = Field(nullable=False)
    amount_cents: int = Field(default=0, nullable=False)
    status: str = Field(default="completed", nullable=False)
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class ProcessedWebhookEvent(UUIDModel, TimestampModel, table=True):
    __tablename__ = "processed_webhook_events"

    stripe_event_id: str = Field(nullable=False, unique=True, index=True)
    event_type: str = Field(nullable=False, index=True)


metadata = SQLModel.metadata
