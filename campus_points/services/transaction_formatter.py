"""
Transaction formatter — shapes ledger rows into their response views.

Pure and stateless: it reads the row and its already-loaded relationships
(owner, creator, processor, promotion links) and never touches the
session. Each transaction kind maps to its own view:

  purchase    earned = amount (the accrual, even while suspicious)
  adjustment  relatedId = the corrected transaction
  transfer    relatedId = the counter-party user; sent or received
  redemption  redeemed = |amount|, processedBy
  event       relatedId = the event; awarded = amount
"""

from campus_points.models.transaction import (
    Transaction,
    PurchaseTransaction,
    AdjustmentTransaction,
    TransferTransaction,
    RedemptionTransaction,
    EventTransaction,
)
from campus_points.schemas.transaction import (
    PurchaseView,
    AdjustmentView,
    TransferView,
    RedemptionView,
    EventAwardView,
)


def _base_fields(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "utorid": txn.user.utorid if txn.user is not None else None,
        "amount": txn.amount,
        "suspicious": txn.suspicious,
        "remark": txn.remark or "",
        "created_by": txn.created_by.utorid if txn.created_by is not None else None,
        "promotion_ids": txn.promotion_ids,
    }


def _purchase(txn: PurchaseTransaction) -> PurchaseView:
    return PurchaseView(
        **_base_fields(txn),
        spent=float(txn.spent) if txn.spent is not None else None,
        earned=txn.amount,
    )


def _adjustment(txn: AdjustmentTransaction) -> AdjustmentView:
    return AdjustmentView(**_base_fields(txn), related_id=txn.related_transaction_id)


def _transfer(txn: TransferTransaction) -> TransferView:
    if txn.amount < 0:
        return TransferView(**_base_fields(txn), related_id=txn.related_user_id, sent=-txn.amount)
    return TransferView(**_base_fields(txn), related_id=txn.related_user_id, received=txn.amount)


def _redemption(txn: RedemptionTransaction) -> RedemptionView:
    return RedemptionView(
        **_base_fields(txn),
        redeemed=abs(txn.amount),
        processed_by=txn.processed_by.utorid if txn.processed_by is not None else None,
    )


def _event(txn: EventTransaction) -> EventAwardView:
    return EventAwardView(**_base_fields(txn), related_id=txn.event_id, awarded=txn.amount)


_FORMATTERS = {
    PurchaseTransaction: _purchase,
    AdjustmentTransaction: _adjustment,
    TransferTransaction: _transfer,
    RedemptionTransaction: _redemption,
    EventTransaction: _event,
}


def format_transaction(txn: Transaction):
    """Return the type-specific view for a transaction row."""
    try:
        formatter = _FORMATTERS[type(txn)]
    except KeyError:
        raise TypeError(f"No view for transaction class {type(txn).__name__}")
    return formatter(txn)
