"""Settlement calculation helpers."""

from settlement_engine.calculators.builder import SettlementBuilder, SettlementDraft
from settlement_engine.calculators.pay_policy import PayPolicy, ProfilePayPolicy, resolve_load_pay
from settlement_engine.calculators.types import (
    AdditionalPayItem,
    DeductionItem,
    LoadPayEntry,
    SettlementPeriod,
    SettlementTotals,
)

__all__ = [
    "SettlementBuilder",
    "SettlementDraft",
    "PayPolicy",
    "ProfilePayPolicy",
    "resolve_load_pay",
    "AdditionalPayItem",
    "DeductionItem",
    "LoadPayEntry",
    "SettlementPeriod",
    "SettlementTotals",
]
