"""Load model with settlement backref."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.models.base import Base, TimestampMixin, new_id

# Load statuses that make a load eligible for settlement
ELIGIBLE_LOAD_STATUSES = frozenset({"delivered", "completed"})


class Load(Base, TimestampMixin):
    """A completed (or in-progress) load as seen by settlement."""

    __tablename__ = "load"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    load_number: Mapped[str | None] = mapped_column(String, nullable=True)
    driver_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("driver.id"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="available")

    # Raw date strings as imported; parsed when filtering by period
    pickup_date: Mapped[str | None] = mapped_column(String, nullable=True)
    delivery_date: Mapped[str | None] = mapped_column(String, nullable=True)

    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    miles: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Precomputed driver pay (bypasses pay policy when driver_base_pay is set)
    driver_base_pay: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    driver_detention_pay: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    driver_layover_pay: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    tonu_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # Accessorials used on the policy path
    detention_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    layover_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # Backref to the settlement that paid this load (no FK: reconciled by LinkAuditor)
    settlement_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    __table_args__ = (
        Index("ix_load_driver_status", "driver_id", "status"),
        Index("ix_load_settlement_id", "settlement_id"),
    )

    @property
    def effective_date_raw(self) -> str | None:
        """Delivery date if present, else pickup date."""
        return self.delivery_date or self.pickup_date

    @property
    def is_completed(self) -> bool:
        return (self.status or "").lower() in ELIGIBLE_LOAD_STATUSES
