"""Ledger aggregation over approved records."""

from teamledger.ledger.aggregator import LedgerAggregator, snapshot_of
from teamledger.models.ledger import fund_totals

__all__ = ["LedgerAggregator", "fund_totals", "snapshot_of"]
