"""
ORM entities.

Users form the referral tree through parent_partner_id; PartnerHierarchy
is a rebuildable index of that tree. A CommissionPayment owns one
PaymentSplit per beneficiary.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..models import (
    ACTIVE_PAYMENT_STATUSES,
    ApprovalStatus,
    DealStage,
    JourneyStatus,
    PaymentStatus,
    SplitStatus,
)
from .base import Base, MoneyType, PercentType, new_id, status_column_type, utcnow

_ACTIVE_STATUS_SQL = "payment_status IN ({})".format(
    ", ".join(f"'{status.value}'" for status in ACTIVE_PAYMENT_STATUSES)
)


class User(Base):
    """A partner (or admin) in the referral hierarchy."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))

    # Partner tracking and MLM structure
    partner_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    referral_code: Mapped[str | None] = mapped_column(String(64), unique=True)
    parent_partner_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    partner_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Banking details for payouts
    bank_account_name: Mapped[str | None] = mapped_column(String(255))
    bank_sort_code: Mapped[str | None] = mapped_column(String(16))
    bank_account_number: Mapped[str | None] = mapped_column(String(32))
    banking_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class PartnerHierarchy(Base):
    """One row per (descendant, ancestor) pair; level 1 is the direct parent."""

    __tablename__ = "partner_hierarchy"
    __table_args__ = (
        UniqueConstraint("child_id", "level", name="uq_partner_hierarchy_child_level"),
        Index("idx_partner_hierarchy_parent", "parent_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    child_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Deal(Base):
    """A merchant lead submitted by a partner."""

    __tablename__ = "deals"
    __table_args__ = (
        Index("idx_deals_referrer", "referrer_id"),
        Index("idx_deals_stage", "deal_stage"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deal_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    referrer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_referrer_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"))

    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_email: Mapped[str] = mapped_column(String(255), nullable=False)
    business_phone: Mapped[str | None] = mapped_column(String(64))
    business_address: Mapped[str | None] = mapped_column(Text)
    product_type: Mapped[str] = mapped_column(String(32), nullable=False, default="card_payments")

    deal_stage: Mapped[DealStage] = mapped_column(
        status_column_type(DealStage), nullable=False, default=DealStage.QUOTE_REQUEST_RECEIVED
    )
    customer_journey_status: Mapped[JourneyStatus] = mapped_column(
        status_column_type(JourneyStatus), nullable=False, default=JourneyStatus.REVIEW_QUOTE
    )

    estimated_commission: Mapped[Decimal | None] = mapped_column(MoneyType)
    actual_commission: Mapped[Decimal | None] = mapped_column(MoneyType)
    admin_notes: Mapped[str | None] = mapped_column(Text)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    referrer: Mapped[User] = relationship(foreign_keys=[referrer_id])


class CommissionPayment(Base):
    """
    One commission event for a deal.

    The row also carries the level-0 share (recipient_id/amount/percentage)
    for the partner-facing views; the per-beneficiary ledger lives in
    PaymentSplit. The partial unique index allows a single payment per deal
    in a non-terminal status.
    """

    __tablename__ = "commission_payments"
    __table_args__ = (
        Index("idx_commission_payments_deal", "deal_id"),
        Index("idx_commission_payments_recipient", "recipient_id"),
        Index("idx_commission_payments_status", "approval_status", "payment_status"),
        Index(
            "uq_commission_payments_active_deal",
            "deal_id",
            unique=True,
            sqlite_where=text(_ACTIVE_STATUS_SQL),
            postgresql_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deal_id: Mapped[str] = mapped_column(String(36), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    percentage: Mapped[Decimal] = mapped_column(PercentType, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    total_commission: Mapped[Decimal | None] = mapped_column(MoneyType)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")
    business_name: Mapped[str | None] = mapped_column(String(255))
    deal_stage: Mapped[str | None] = mapped_column(String(32))

    approval_status: Mapped[ApprovalStatus] = mapped_column(
        status_column_type(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        status_column_type(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    query_notes: Mapped[str | None] = mapped_column(Text)
    failure_reason: Mapped[str | None] = mapped_column(Text)

    evidence_url: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    transfer_reference: Mapped[str | None] = mapped_column(String(128))
    payment_method: Mapped[str | None] = mapped_column(String(64))

    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    approved_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    paid_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Optimistic concurrency: every UPDATE checks and bumps this
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    splits: Mapped[list["PaymentSplit"]] = relationship(
        back_populates="payment",
        order_by="PaymentSplit.level",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}


class PaymentSplit(Base):
    """Fixed ledger entry for one beneficiary's share of a payment."""

    __tablename__ = "payment_splits"
    __table_args__ = (
        UniqueConstraint("payment_id", "level", name="uq_payment_splits_payment_level"),
        Index("idx_payment_splits_beneficiary", "beneficiary_user_id"),
        Index("idx_payment_splits_deal", "deal_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    payment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("commission_payments.id", ondelete="CASCADE"), nullable=False
    )
    deal_id: Mapped[str] = mapped_column(String(36), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False)
    beneficiary_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(PercentType, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[SplitStatus] = mapped_column(
        status_column_type(SplitStatus), nullable=False, default=SplitStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    payment: Mapped[CommissionPayment] = relationship(back_populates="splits")


class AdminAuditLog(Base):
    """Who did what to which entity."""

    __tablename__ = "admin_audit_logs"
    __table_args__ = (Index("idx_admin_audit_logs_entity", "entity_type", "entity_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    actor_id: Mapped[str | None] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
