"""Validators package."""
from luxgate.services.validators.accounting_equation import BalanceSheetValidator

__all__ = ["BalanceSheetValidator"]
