"""
HELPER SETTLEMENT & PAYOUT ENGINE
Per-order settlements, deduction lifecycle and monthly statements.
"""

from .closing import parse_closing_report
from .ledger import DeductionLedger
from .models import (
    Deduction,
    DeductionTarget,
    MonthlyStatement,
    RateConfig,
    Settlement,
    SettlementContext,
    WorkRecord,
)
from .processor import SettlementProcessor, build_monthly_statement, compute_settlement
from .settlement_book import SettlementBook
from .statements import MonthlyStatementBuilder

__all__ = [
    'SettlementProcessor',
    'DeductionLedger',
    'MonthlyStatementBuilder',
    'SettlementBook',
    'compute_settlement',
    'build_monthly_statement',
    'parse_closing_report',
    'WorkRecord',
    'RateConfig',
    'Deduction',
    'DeductionTarget',
    'SettlementContext',
    'Settlement',
    'MonthlyStatement',
]
