"""
Tests for the transaction formatter.

Each transaction kind maps to its own view with the fields that kind
carries; the shared fields are the same everywhere.
"""

import pytest

from campus_points.models.transaction import Transaction
from campus_points.schemas.transaction import (
    AdjustmentView,
    EventAwardView,
    PurchaseView,
    RedemptionView,
    TransferView,
)
from campus_points.services.transaction_formatter import format_transaction
from campus_points.services.transaction_service import (
    award_event_points,
    create_adjustment,
    create_purchase,
    create_redemption,
    create_transfer,
    mark_processed,
)


class TestViews:

    async def test_purchase(self, db_session, users, make_promotion):
        promo = await make_promotion(points=2)
        txn = await create_purchase(
            db_session, users.cashier, "regular1", "10.50", promotion_ids=[promo.id]
        )

        view = format_transaction(txn)

        assert isinstance(view, PurchaseView)
        assert view.type == "purchase"
        assert view.utorid == "regular1"
        assert view.spent == 10.5
        assert view.earned == 44
        assert view.created_by == "cashier1"
        assert view.promotion_ids == [promo.id]
        assert view.remark == ""

    async def test_adjustment(self, db_session, users):
        purchase = await create_purchase(db_session, users.cashier, "regular1", 1)
        txn = await create_adjustment(db_session, users.manager, 3, purchase.id)

        view = format_transaction(txn)

        assert isinstance(view, AdjustmentView)
        assert view.related_id == purchase.id
        assert view.amount == 3

    async def test_transfer_legs(self, db_session, users):
        sent, received = await create_transfer(db_session, users.regular, users.other.id, 7)

        sent_view = format_transaction(sent)
        received_view = format_transaction(received)

        assert isinstance(sent_view, TransferView)
        assert sent_view.sent == 7
        assert sent_view.received is None
        assert sent_view.related_id == users.other.id
        assert received_view.received == 7
        assert received_view.sent is None
        assert received_view.related_id == users.regular.id

    async def test_redemption(self, db_session, users):
        txn = await create_redemption(db_session, users.regular, 12)
        assert format_transaction(txn).processed_by is None

        await mark_processed(db_session, users.cashier, txn.id)
        view = format_transaction(txn)

        assert isinstance(view, RedemptionView)
        assert view.redeemed == 12
        assert view.amount == -12
        assert view.processed_by == "cashier1"

    async def test_event(self, db_session, users, make_event):
        event = await make_event(confirmed=[users.regular])
        [txn] = await award_event_points(db_session, users.manager, event.id, 9)

        view = format_transaction(txn)

        assert isinstance(view, EventAwardView)
        assert view.awarded == 9
        assert view.related_id == event.id

    async def test_camel_case_dump(self, db_session, users):
        txn = await create_purchase(db_session, users.cashier, "regular1", 1)
        dumped = format_transaction(txn).model_dump(by_alias=True)
        assert {"createdBy", "promotionIds", "spent", "earned"} <= dumped.keys()

    def test_unknown_class(self):
        with pytest.raises(TypeError):
            format_transaction(Transaction(amount=0))
