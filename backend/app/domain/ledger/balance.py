"""
Balance impact projection.

Called explicitly at every write of a ledger row.
"""

from decimal import Decimal

from backend.app.models.ledger_enums import TransactionType

TWO_PLACES = Decimal("0.01")


def compute_balance_impact(type_: TransactionType, amount) -> Decimal:
    """+amount for income, -amount for expense, 0 for transfers."""
    amount = Decimal(str(amount)).quantize(TWO_PLACES)
    type_ = TransactionType(type_)
    if type_ == TransactionType.INCOME:
        return amount
    if type_ == TransactionType.EXPENSE:
        return -amount
    return Decimal("0.00")
