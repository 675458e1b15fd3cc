"""
Endpoint tests for /host/payouts and /host/transactions.

booking_crud / ledger_crud are patched per-test; the balance cache helpers are
no-ops via the autouse fixture in conftest unless a test patches them again.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from app.deps import get_current_user
from app.schemas import HostPayoutResponse, HostProfileResponse

from .factories import (
    BOOKING_ID,
    HOST_ID,
    NOW,
    PAYOUT_ID,
    booking_model,
    host_profile_dict,
    make_guest,
    payout_dict,
    transaction_dict,
)

BOOKING_CRUD_PATH = "app.routers.host.booking_crud"
LEDGER_CRUD_PATH = "app.routers.host.ledger_crud"


def _profile(**overrides) -> HostProfileResponse:
    return HostProfileResponse(**host_profile_dict(**overrides))


def _completed(**overrides):
    return booking_model(status="completed", completed_at=NOW.isoformat(), **overrides)


class TestPayoutSummary:
    def test_summary_built_from_profile_and_bookings(self, host_client):
        with (
            patch(BOOKING_CRUD_PATH) as b_crud,
            patch(LEDGER_CRUD_PATH) as l_crud,
            patch("app.routers.host.set_balance_cache", AsyncMock()) as set_cache,
        ):
            l_crud.get_host_profile = AsyncMock(return_value=_profile())
            l_crud.list_payouts = AsyncMock(return_value=[payout_dict()])
            b_crud.list_pending_payout_bookings = AsyncMock(
                return_value=[_completed(host_earnings="900000")]
            )
            resp = host_client.get("/host/payouts")

        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["balance"]["available"]) == Decimal("900000")
        assert Decimal(body["balance"]["lifetime"]) == Decimal("900000")
        assert body["pending_bookings"][0]["id"] == str(BOOKING_ID)
        assert Decimal(body["pending_bookings"][0]["amount"]) == Decimal("900000")
        assert body["payouts"][0]["id"] == str(PAYOUT_ID)
        set_cache.assert_awaited_once()
        assert set_cache.await_args.args[0] == HOST_ID

    def test_unsettled_booking_shows_computed_share(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            l_crud.get_host_profile = AsyncMock(return_value=_profile())
            l_crud.list_payouts = AsyncMock(return_value=[])
            b_crud.list_pending_payout_bookings = AsyncMock(
                return_value=[_completed(total_price="2000000")]
            )
            resp = host_client.get("/host/payouts")
        amount = resp.json()["pending_bookings"][0]["amount"]
        assert Decimal(amount) == Decimal("1800000")

    def test_no_profile_gives_zero_balance(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            l_crud.get_host_profile = AsyncMock(return_value=None)
            l_crud.list_payouts = AsyncMock(return_value=[])
            b_crud.list_pending_payout_bookings = AsyncMock(return_value=[])
            resp = host_client.get("/host/payouts")
        assert resp.status_code == 200
        assert Decimal(resp.json()["balance"]["available"]) == Decimal("0")

    def test_cache_hit_skips_database(self, host_client):
        cached = {
            "balance": {"available": "5", "pending": "0", "lifetime": "5"},
            "pending_bookings": [],
            "payouts": [],
        }
        with (
            patch("app.routers.host.get_balance_cache", AsyncMock(return_value=cached)),
            patch(BOOKING_CRUD_PATH) as b_crud,
            patch(LEDGER_CRUD_PATH) as l_crud,
        ):
            l_crud.get_host_profile = AsyncMock()
            b_crud.list_pending_payout_bookings = AsyncMock()
            resp = host_client.get("/host/payouts")
        assert resp.status_code == 200
        assert Decimal(resp.json()["balance"]["available"]) == Decimal("5")
        l_crud.get_host_profile.assert_not_awaited()
        b_crud.list_pending_payout_bookings.assert_not_awaited()

    def test_missing_payouts_scope_returns_403(self, anon_app):
        async def _guest():
            return make_guest()

        anon_app.dependency_overrides[get_current_user] = _guest
        with TestClient(anon_app) as c:
            resp = c.get("/host/payouts")
        assert resp.status_code == 403


class TestRequestPayout:
    def _post(self, client, **body):
        return client.post("/host/payouts", json=body)

    def _mock(self, b_crud, l_crud, profile=None, bookings=None, payout=None):
        l_crud.get_host_profile = AsyncMock(
            return_value=profile if profile is not None else _profile()
        )
        b_crud.list_pending_payout_bookings = AsyncMock(
            return_value=bookings
            if bookings is not None
            else [_completed(host_earnings="900000")]
        )
        l_crud.create_payout = AsyncMock(
            return_value=payout
            if payout is not None
            else HostPayoutResponse(**payout_dict())
        )

    def test_payout_for_all_eligible_bookings(self, host_client):
        with (
            patch(BOOKING_CRUD_PATH) as b_crud,
            patch(LEDGER_CRUD_PATH) as l_crud,
            patch("app.routers.host.invalidate_balance_cache", AsyncMock()) as inv,
        ):
            self._mock(b_crud, l_crud)
            resp = self._post(host_client, method=" bank_transfer ", note="  ")

        assert resp.status_code == 201
        assert resp.json()["id"] == str(PAYOUT_ID)
        kwargs = l_crud.create_payout.call_args.kwargs
        assert kwargs["host_id"] == HOST_ID
        assert kwargs["amount"] == Decimal("900000")
        assert kwargs["booking_ids"] == [BOOKING_ID]
        assert kwargs["payout_method"] == "bank_transfer"
        assert kwargs["notes"] is None
        inv.assert_awaited_once_with(HOST_ID)

    def test_selected_bookings_forwarded(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud)
            self._post(host_client, bookings=[str(BOOKING_ID)])
        kwargs = b_crud.list_pending_payout_bookings.call_args.kwargs
        assert kwargs["booking_ids"] == [BOOKING_ID]

    def test_partial_amount_accepted(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud)
            resp = self._post(host_client, amount="500000")
        assert resp.status_code == 201
        assert l_crud.create_payout.call_args.kwargs["amount"] == Decimal("500000")

    def test_rounding_within_tolerance_accepted(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud)
            resp = self._post(host_client, amount="900000.50")
        assert resp.status_code == 201

    def test_no_profile_returns_400(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud)
            l_crud.get_host_profile = AsyncMock(return_value=None)
            resp = self._post(host_client)
        assert resp.status_code == 400
        l_crud.create_payout.assert_not_awaited()

    def test_no_eligible_bookings_returns_400(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud, bookings=[])
            resp = self._post(host_client, bookings=[str(uuid4())])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No bookings are eligible for a payout"

    def test_non_positive_amount_returns_400(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud)
            resp = self._post(host_client, amount="0")
        assert resp.status_code == 400

    def test_amount_above_bookings_total_returns_400(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud)
            resp = self._post(host_client, amount="900002")
        assert resp.status_code == 400
        assert "selected bookings" in resp.json()["detail"]

    def test_amount_above_available_balance_returns_400(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud, profile=_profile(available_balance="100000"))
            resp = self._post(host_client)
        assert resp.status_code == 400
        assert "balance" in resp.json()["detail"]

    def test_concurrent_balance_change_returns_409(self, host_client):
        with patch(BOOKING_CRUD_PATH) as b_crud, patch(LEDGER_CRUD_PATH) as l_crud:
            self._mock(b_crud, l_crud)
            l_crud.create_payout = AsyncMock(return_value=None)
            resp = self._post(host_client)
        assert resp.status_code == 409


class TestListTransactions:
    def test_host_sees_own_ledger(self, host_client):
        with patch(LEDGER_CRUD_PATH) as l_crud:
            l_crud.list_transactions = AsyncMock(
                return_value=[transaction_dict(), transaction_dict(type="payout")]
            )
            resp = host_client.get("/host/transactions", params={"page_size": 5})
        assert resp.status_code == 200
        assert [t["type"] for t in resp.json()] == ["booking_payment", "payout"]
        host_id, filters = l_crud.list_transactions.call_args.args
        assert host_id == HOST_ID
        assert filters.page_size == 5

    def test_page_size_over_limit_returns_422(self, host_client):
        resp = host_client.get("/host/transactions", params={"page_size": 500})
        assert resp.status_code == 422
