"""Driver pay policy and per-load pay resolution.

Two paths, in priority order:
1) Precomputed pay on the load (``driver_base_pay`` set) is used as-is
   together with the load's driver detention/layover pay and TONU fee.
2) Otherwise the pay policy computes base pay from the load and driver, and
   the load's detention/layover amounts and TONU fee are added on top.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from settlement_engine.calculators.types import ZERO, LoadPayEntry, round_to_cents, to_decimal

if TYPE_CHECKING:
    from settlement_engine.models import Driver, Load

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@runtime_checkable
class PayPolicy(Protocol):
    """Maps a completed load and a driver to the driver's base pay for it."""

    def compute_pay(self, load: Load, driver: Driver) -> Decimal:
        ...


def normalize_split(value: Decimal | None) -> Decimal:
    """Percent splits above 1 are whole percentages (88 -> 0.88)."""
    split = to_decimal(value)
    if split > 1:
        return split / HUNDRED
    return split


class ProfilePayPolicy:
    """Default policy driven by the driver's compensation profile.

    - OwnerOperator: load rate x split (pay_percentage, else rate_or_split)
    - Company: by pay_type (percentage, per_mile, flat_rate)
    - Fallback: rate_or_split / pay_percentage as a split, else zero
    """

    def compute_pay(self, load: Load, driver: Driver) -> Decimal:
        rate = to_decimal(load.rate)
        miles = to_decimal(load.miles)

        if driver.driver_type == "OwnerOperator":
            split = normalize_split(driver.pay_percentage or driver.rate_or_split)
            if split == 0:
                logger.warning(
                    "Owner operator %s has no pay percentage configured; pay = 0",
                    driver.id,
                )
            return rate * split

        if driver.pay_type == "percentage":
            return rate * normalize_split(driver.pay_percentage or driver.rate_or_split)
        if driver.pay_type == "per_mile":
            return miles * to_decimal(driver.per_mile_rate)
        if driver.pay_type == "flat_rate":
            return to_decimal(driver.flat_rate)

        if driver.rate_or_split or driver.pay_percentage:
            return rate * normalize_split(driver.rate_or_split or driver.pay_percentage)

        logger.warning("Driver %s has no payment configuration; pay = 0", driver.id)
        return ZERO


def resolve_load_pay(load: Load, driver: Driver, policy: PayPolicy) -> LoadPayEntry:
    """Build the pay snapshot for one load."""
    if load.driver_base_pay is not None:
        base_pay = to_decimal(load.driver_base_pay)
        detention = to_decimal(load.driver_detention_pay)
        layover = to_decimal(load.driver_layover_pay)
    else:
        base_pay = to_decimal(policy.compute_pay(load, driver))
        detention = to_decimal(load.detention_amount)
        layover = to_decimal(load.layover_amount)

    return LoadPayEntry(
        load_id=load.id,
        load_number=load.load_number,
        base_pay=round_to_cents(base_pay),
        detention=round_to_cents(detention),
        layover=round_to_cents(layover),
        tonu=round_to_cents(to_decimal(load.tonu_fee)),
        miles=to_decimal(load.miles),
    )
