"""
Tests for manager adjustments.

Verifies:
  - An adjustment moves the related transaction owner's balance by amount
  - A utorid that doesn't own the related transaction is rejected
  - Promotions add their flat bonus; minimum-spend promotions are refused
  - Adjustments may take a balance below zero
  - Only managers (and above) may adjust
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from campus_points.exceptions import (
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from campus_points.services.transaction_service import create_adjustment, create_purchase


@pytest_asyncio.fixture
async def purchase(db_session, users):
    """A 10.00 purchase by regular1 (balance becomes 140)."""
    txn = await create_purchase(db_session, users.cashier, "regular1", "10.00")
    await db_session.commit()
    return txn


class TestAdjustment:
    """Balance corrections against a prior transaction."""

    async def test_negative_adjustment(self, db_session, users, purchase):
        txn = await create_adjustment(
            db_session, users.manager, -10, purchase.id, utorid="regular1"
        )

        assert txn.amount == -10
        assert txn.related_transaction_id == purchase.id
        assert txn.created_by_id == users.manager.id
        assert users.regular.points == 130

    async def test_hundred_point_user_drops_to_ninety(self, db_session, users):
        # Withheld purchase keeps the balance at 100 but gives a valid relatedId
        prior = await create_purchase(
            db_session, users.suspicious_cashier, "regular1", "10.00"
        )
        assert users.regular.points == 100

        await create_adjustment(db_session, users.manager, -10, prior.id, utorid="regular1")

        assert users.regular.points == 90

    async def test_owner_defaults_to_related_owner(self, db_session, users, purchase):
        txn = await create_adjustment(db_session, users.manager, 25, purchase.id)

        assert txn.user_id == users.regular.id
        assert users.regular.points == 165

    async def test_may_go_below_zero(self, db_session, users, purchase):
        await create_adjustment(db_session, users.manager, -500, purchase.id)
        assert users.regular.points == -360

    async def test_zero_adjustment_is_recorded(self, db_session, users, purchase):
        txn = await create_adjustment(db_session, users.manager, 0, purchase.id)
        assert txn.id is not None
        assert users.regular.points == 140

    async def test_flat_promotion_adds_bonus(
        self, db_session, users, purchase, make_promotion
    ):
        promo = await make_promotion(rate=1.0, points=7)
        txn = await create_adjustment(
            db_session, users.manager, 3, purchase.id, promotion_ids=[promo.id]
        )

        assert txn.amount == 10
        assert txn.promotion_ids == [promo.id]
        assert users.regular.points == 150

    async def test_min_spending_promotion_refused(
        self, db_session, users, purchase, make_promotion
    ):
        promo = await make_promotion(min_spending=Decimal("1.00"), points=7)
        with pytest.raises(InvalidStateError, match="purchase amount"):
            await create_adjustment(
                db_session, users.manager, 3, purchase.id, promotion_ids=[promo.id]
            )
        assert users.regular.points == 140


class TestAdjustmentFailures:
    """Rejected adjustments change nothing."""

    async def test_related_belongs_to_someone_else(self, db_session, users, purchase):
        with pytest.raises(InvalidInputError, match="does not match"):
            await create_adjustment(
                db_session, users.manager, -10, purchase.id, utorid="regular2"
            )
        assert users.regular.points == 140
        assert users.other.points == 100

    async def test_unknown_related_transaction(self, db_session, users):
        with pytest.raises(NotFoundError, match="Transaction"):
            await create_adjustment(db_session, users.manager, 5, 999)

    async def test_unknown_user(self, db_session, users, purchase):
        with pytest.raises(NotFoundError, match="ghost"):
            await create_adjustment(db_session, users.manager, 5, purchase.id, utorid="ghost")

    async def test_cashier_forbidden(self, db_session, users, purchase):
        with pytest.raises(ForbiddenError):
            await create_adjustment(db_session, users.cashier, 5, purchase.id)

    @pytest.mark.parametrize("amount", [1.5, "5", True, None])
    async def test_amount_must_be_integer(self, db_session, users, purchase, amount):
        with pytest.raises(InvalidInputError, match="amount"):
            await create_adjustment(db_session, users.manager, amount, purchase.id)

    @pytest.mark.parametrize("related_id", [0, -1, "1", None])
    async def test_related_id_must_be_positive(self, db_session, users, related_id):
        with pytest.raises(InvalidInputError, match="relatedId"):
            await create_adjustment(db_session, users.manager, 5, related_id)


class TestAdjustmentEndpoint:
    """POST /transactions with type=adjustment."""

    async def test_create_adjustment(
        self, client, users, purchase, auth_headers, points_of
    ):
        response = await client.post(
            "/transactions",
            json={
                "type": "adjustment",
                "utorid": "regular1",
                "amount": -10,
                "relatedId": purchase.id,
                "remark": "refund",
            },
            headers=auth_headers(users.manager),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["type"] == "adjustment"
        assert data["amount"] == -10
        assert data["relatedId"] == purchase.id
        assert data["createdBy"] == "manager1"
        assert await points_of(users.regular) == 130

    async def test_mismatched_user_is_400(
        self, client, users, purchase, auth_headers, points_of
    ):
        response = await client.post(
            "/transactions",
            json={
                "type": "adjustment",
                "utorid": "regular2",
                "amount": -10,
                "relatedId": purchase.id,
            },
            headers=auth_headers(users.manager),
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_input"
        assert await points_of(users.other) == 100

    async def test_unknown_type_is_422(self, client, users, auth_headers):
        response = await client.post(
            "/transactions",
            json={"type": "refund", "amount": 5},
            headers=auth_headers(users.manager),
        )
        assert response.status_code == 422
