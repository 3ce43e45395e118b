"""
Repositories.

Thin data-access classes over a Session. They flush but never commit;
the caller's session_scope() owns the transaction.
"""

import random
import time
import uuid
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..models import ACTIVE_PAYMENT_STATUSES, PaymentStatus
from .base import Base
from .entities import AdminAuditLog, CommissionPayment, Deal, PartnerHierarchy, User

ModelType = TypeVar("ModelType", bound=Base)


def generate_deal_code() -> str:
    """DEAL- plus the last 5 digits of the epoch-ms clock and 3 random digits."""
    return f"DEAL-{int(time.time() * 1000) % 100000:05d}{random.randint(0, 999):03d}"


class BaseRepository(Generic[ModelType]):
    """
    Generic CRUD operations for one model.

    Example:
        class UserRepository(BaseRepository[User]):
            def __init__(self, session: Session):
                super().__init__(User, session)
    """

    def __init__(self, model: type[ModelType], session: Session) -> None:
        self.model = model
        self.session = session

    def get_by_id(self, id: str) -> ModelType | None:
        return self.session.get(self.model, id)

    def find_by(self, **filters: Any) -> list[ModelType]:
        stmt = select(self.model).filter_by(**filters)
        return list(self.session.execute(stmt).scalars().all())

    def create(self, **data: Any) -> ModelType:
        entity = self.model(**data)
        self.session.add(entity)
        self.session.flush()
        return entity

    def count(self, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.model)
        if filters:
            stmt = stmt.filter_by(**filters)
        return self.session.execute(stmt).scalar() or 0


class UserRepository(BaseRepository[User]):
    def __init__(self, session: Session) -> None:
        super().__init__(User, session)

    def children_of(self, user_id: str) -> list[User]:
        return self.find_by(parent_partner_id=user_id)

    def all_users(self) -> list[User]:
        return list(self.session.execute(select(User)).scalars().all())


class DealRepository(BaseRepository[Deal]):
    def __init__(self, session: Session) -> None:
        super().__init__(Deal, session)

    def get_for_update(self, deal_id: str) -> Deal | None:
        """Load a deal with a row lock (no-op on SQLite)."""
        stmt = select(Deal).where(Deal.id == deal_id).with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def code_exists(self, deal_code: str) -> bool:
        stmt = select(Deal.id).where(Deal.deal_code == deal_code).limit(1)
        return self.session.execute(stmt).first() is not None

    def next_deal_code(self, attempts: int = 5) -> str:
        """
        Unused DEAL-<epoch ms tail><random> code. Falls back to a uuid
        suffix if every candidate is taken. The unique constraint on
        deal_code still has the final say under concurrent inserts.
        """
        for _ in range(attempts):
            code = generate_deal_code()
            if not self.code_exists(code):
                return code
        return f"DEAL-{uuid.uuid4().hex[:12].upper()}"


class HierarchyRepository(BaseRepository[PartnerHierarchy]):
    def __init__(self, session: Session) -> None:
        super().__init__(PartnerHierarchy, session)

    def ancestors_of(self, child_id: str) -> list[PartnerHierarchy]:
        stmt = (
            select(PartnerHierarchy)
            .where(PartnerHierarchy.child_id == child_id)
            .order_by(PartnerHierarchy.level)
        )
        return list(self.session.execute(stmt).scalars().all())

    def delete_for_children(self, child_ids: list[str]) -> int:
        if not child_ids:
            return 0
        stmt = delete(PartnerHierarchy).where(PartnerHierarchy.child_id.in_(child_ids))
        return self.session.execute(stmt).rowcount

    def delete_all(self) -> int:
        return self.session.execute(delete(PartnerHierarchy)).rowcount


class CommissionPaymentRepository(BaseRepository[CommissionPayment]):
    def __init__(self, session: Session) -> None:
        super().__init__(CommissionPayment, session)

    def by_deal(self, deal_id: str) -> list[CommissionPayment]:
        """All payments for a deal, newest first."""
        stmt = (
            select(CommissionPayment)
            .where(CommissionPayment.deal_id == deal_id)
            .order_by(CommissionPayment.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def active_for_deal(self, deal_id: str) -> CommissionPayment | None:
        stmt = select(CommissionPayment).where(
            CommissionPayment.deal_id == deal_id,
            CommissionPayment.payment_status.in_(ACTIVE_PAYMENT_STATUSES),
        )
        return self.session.execute(stmt).scalars().first()

    def search(
        self,
        payment_status: PaymentStatus | None = None,
        recipient_id: str | None = None,
    ) -> list[CommissionPayment]:
        stmt = select(CommissionPayment)
        if payment_status is not None:
            stmt = stmt.where(CommissionPayment.payment_status == payment_status)
        if recipient_id is not None:
            stmt = stmt.where(CommissionPayment.recipient_id == recipient_id)
        stmt = stmt.order_by(CommissionPayment.created_at.desc())
        return list(self.session.execute(stmt).scalars().all())


class AuditLogRepository(BaseRepository[AdminAuditLog]):
    def __init__(self, session: Session) -> None:
        super().__init__(AdminAuditLog, session)

    def record(self, actor_id: str | None, action: str, entity_type: str, entity_id: str, **details: Any) -> AdminAuditLog:
        return self.create(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details or None,
        )

    def for_entity(self, entity_type: str, entity_id: str) -> list[AdminAuditLog]:
        stmt = (
            select(AdminAuditLog)
            .where(AdminAuditLog.entity_type == entity_type, AdminAuditLog.entity_id == entity_id)
            .order_by(AdminAuditLog.created_at)
        )
        return list(self.session.execute(stmt).scalars().all())
