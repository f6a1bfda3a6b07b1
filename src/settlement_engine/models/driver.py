"""Driver model (read-only reference owned by the driver registry)."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.models.base import Base, TimestampMixin, new_id


class Driver(Base, TimestampMixin):
    """Driver with compensation profile."""

    __tablename__ = "driver"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    driver_type: Mapped[str] = mapped_column(String, nullable=False, default="Company")

    # Compensation profile
    pay_type: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_percentage: Mapped[Decimal | None] = mapped_column(Numeric(8, 4), nullable=True)
    rate_or_split: Mapped[Decimal | None] = mapped_column(Numeric(8, 4), nullable=True)
    per_mile_rate: Mapped[Decimal | None] = mapped_column(Numeric(8, 4), nullable=True)
    flat_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "driver_type IN ('Company', 'OwnerOperator')",
            name="driver_type_check",
        ),
        CheckConstraint(
            "pay_type IS NULL OR pay_type IN ('percentage', 'per_mile', 'flat_rate')",
            name="driver_pay_type_check",
        ),
    )

    @property
    def display_name(self) -> str:
        """Get full name."""
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_owner_operator(self) -> bool:
        return self.driver_type == "OwnerOperator"
