"""
Tests for paging through the ledger.

Verifies:
  - Managers page through every transaction, newest first, with a total count
  - Users page through only the transactions they own
  - Every row comes back in its kind's view, whatever kind it is
  - page and limit must be positive integers
"""

import pytest

from campus_points.exceptions import ForbiddenError, InvalidInputError
from campus_points.models.user import User
from campus_points.services.transaction_service import (
    create_purchase,
    create_redemption,
    create_transfer,
    list_transactions,
    list_user_transactions,
)


class TestListTransactions:
    """The manager's view of the whole ledger."""

    async def test_newest_first(self, db_session, users):
        purchase = await create_purchase(db_session, users.cashier, "regular1", 1)
        sent, received = await create_transfer(db_session, users.regular, users.other.id, 5)
        redemption = await create_redemption(db_session, users.other, 10)

        count, rows = await list_transactions(db_session, users.manager)

        assert count == 4
        assert [t.id for t in rows] == [redemption.id, received.id, sent.id, purchase.id]

    async def test_pages(self, db_session, users):
        for _ in range(5):
            await create_purchase(db_session, users.cashier, "regular1", 1)

        count, first = await list_transactions(db_session, users.manager, page=1, limit=2)
        _, last = await list_transactions(db_session, users.manager, page=3, limit=2)

        assert count == 5
        assert len(first) == 2
        assert len(last) == 1
        assert first[0].id > first[1].id > last[0].id

    async def test_reloaded_rows_are_complete(self, db_session, users):
        await create_purchase(db_session, users.cashier, "regular1", "3.00")
        redemption = await create_redemption(db_session, users.regular, 10)
        await db_session.commit()
        redemption_id, manager_id = redemption.id, users.manager.id
        db_session.expunge_all()
        manager = await db_session.get(User, manager_id)

        _, rows = await list_transactions(db_session, manager)

        assert rows[0].id == redemption_id
        assert rows[0].processed_by_id is None
        assert rows[1].spent == 3

    @pytest.mark.parametrize("who", ["regular", "cashier"])
    async def test_below_manager_forbidden(self, db_session, users, who):
        with pytest.raises(ForbiddenError):
            await list_transactions(db_session, getattr(users, who))

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (-1, 5), (1, True), ("1", 5)])
    async def test_invalid_paging(self, db_session, users, page, limit):
        with pytest.raises(InvalidInputError, match="positive integers"):
            await list_transactions(db_session, users.manager, page=page, limit=limit)


class TestListUserTransactions:
    """A user's view of their own rows."""

    async def test_only_own_rows(self, db_session, users):
        mine = await create_purchase(db_session, users.cashier, "regular1", 1)
        await create_purchase(db_session, users.cashier, "regular2", 1)
        sent, received = await create_transfer(db_session, users.other, users.regular.id, 5)

        count, rows = await list_user_transactions(db_session, users.regular)

        assert count == 2
        assert [t.id for t in rows] == [received.id, mine.id]

    async def test_empty(self, db_session, users):
        count, rows = await list_user_transactions(db_session, users.regular)
        assert count == 0
        assert rows == []


class TestListingEndpoints:
    """GET /transactions and GET /users/me/transactions."""

    async def test_manager_listing(self, client, users, auth_headers):
        await client.post(
            "/transactions",
            json={"type": "purchase", "utorid": "regular1", "spent": 2.5},
            headers=auth_headers(users.cashier),
        )
        await client.post(
            f"/users/{users.other.id}/transactions",
            json={"type": "transfer", "amount": 5},
            headers=auth_headers(users.regular),
        )

        response = await client.get(
            "/transactions", params={"limit": 2}, headers=auth_headers(users.manager)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 3
        assert [r["type"] for r in data["results"]] == ["transfer", "transfer"]
        assert sorted(r["amount"] for r in data["results"]) == [-5, 5]

    async def test_cashier_gets_403(self, client, users, auth_headers):
        response = await client.get("/transactions", headers=auth_headers(users.cashier))
        assert response.status_code == 403

    async def test_bad_page_is_400(self, client, users, auth_headers):
        response = await client.get(
            "/transactions", params={"page": 0}, headers=auth_headers(users.manager)
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_input"

    async def test_my_listing(self, client, users, auth_headers):
        await client.post(
            "/transactions",
            json={"type": "purchase", "utorid": "regular1", "spent": 1.0},
            headers=auth_headers(users.cashier),
        )
        await client.post(
            "/users/me/transactions",
            json={"type": "redemption", "amount": 20},
            headers=auth_headers(users.regular),
        )
        await client.post(
            "/transactions",
            json={"type": "purchase", "utorid": "regular2", "spent": 1.0},
            headers=auth_headers(users.cashier),
        )

        response = await client.get(
            "/users/me/transactions", headers=auth_headers(users.regular)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [r["type"] for r in data["results"]] == ["redemption", "purchase"]
        assert data["results"][0]["redeemed"] == 20
        assert data["results"][1]["earned"] == 4
        assert all(r["utorid"] == "regular1" for r in data["results"])
