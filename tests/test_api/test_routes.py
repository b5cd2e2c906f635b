"""HTTP-level tests for the transaction API, error mapping and health check."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from agentic_marketplace.infrastructure.database import engine as engine_module

BASE = "/api/v1/transactions"


def _agent(agent_id: uuid.UUID) -> dict[str, str]:
    return {"X-Agent-ID": str(agent_id)}


async def _open(client, operator_headers, buyer_id, seller_id, **extra) -> dict:
    body = {"buyer_id": str(buyer_id), "seller_id": str(seller_id), "amount": "100", **extra}
    response = await client.post(BASE, json=body, headers=operator_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateAndRead:
    @pytest.mark.asyncio
    async def test_operator_opens_transaction(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        listing_id = uuid.uuid4()
        data = await _open(
            client, operator_headers, buyer_id, seller_id, listing_id=str(listing_id)
        )

        assert data["status"] == "pending"
        assert data["currency"] == "USD"
        assert Decimal(data["platform_fee"]) == Decimal("2.5")
        assert data["listing_id"] == str(listing_id)

        response = await client.get(f"{BASE}/{data['id']}/escrow")
        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    @pytest.mark.asyncio
    async def test_create_requires_operator_key(self, client, buyer_id, seller_id) -> None:
        body = {"buyer_id": str(buyer_id), "seller_id": str(seller_id), "amount": "100"}

        missing = await client.post(BASE, json=body)
        wrong = await client.post(BASE, json=body, headers={"X-Operator-Key": "nope"})

        assert missing.status_code == 403
        assert wrong.status_code == 403

    @pytest.mark.asyncio
    async def test_two_origins_rejected(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        body = {
            "buyer_id": str(buyer_id),
            "seller_id": str(seller_id),
            "amount": "100",
            "listing_id": str(uuid.uuid4()),
            "auction_id": str(uuid.uuid4()),
        }
        response = await client.post(BASE, json=body, headers=operator_headers)

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_TRANSACTION_REQUEST"

    @pytest.mark.asyncio
    async def test_status_lists_allowed_events(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        data = await _open(client, operator_headers, buyer_id, seller_id)

        response = await client.get(f"{BASE}/{data['id']}/status")

        body = response.json()
        assert body["status"] == "pending"
        assert body["is_terminal"] is False
        assert "cancel" in body["allowed_events"]

    @pytest.mark.asyncio
    async def test_list_filters_by_agent(
        self, client, operator_headers, buyer_id, seller_id, outsider_id
    ) -> None:
        await _open(client, operator_headers, buyer_id, seller_id)
        await _open(client, operator_headers, outsider_id, seller_id)

        mine = await client.get(BASE, params={"agent_id": str(buyer_id)})
        as_seller = await client.get(
            BASE, params={"agent_id": str(seller_id), "role": "seller", "limit": 1}
        )

        assert mine.json()["total"] == 1
        assert as_seller.json()["total"] == 2
        assert len(as_seller.json()["items"]) == 1
        assert as_seller.json()["limit"] == 1


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_unknown_transaction_is_404(self, client) -> None:
        response = await client.get(f"{BASE}/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"] == "TRANSACTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_wrong_party_is_403(
        self, client, operator_headers, buyer_id, seller_id, outsider_id
    ) -> None:
        data = await _open(client, operator_headers, buyer_id, seller_id)

        response = await client.post(
            f"{BASE}/{data['id']}/deliver", json={}, headers=_agent(outsider_id)
        )

        assert response.status_code == 403
        assert response.json()["error"] == "NOT_AUTHORIZED"

    @pytest.mark.asyncio
    async def test_illegal_transition_is_409(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        data = await _open(client, operator_headers, buyer_id, seller_id)

        response = await client.post(f"{BASE}/{data['id']}/complete", headers=operator_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATUS"

    @pytest.mark.asyncio
    async def test_rating_before_delivery_is_409(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        data = await _open(client, operator_headers, buyer_id, seller_id)

        response = await client.post(
            f"{BASE}/{data['id']}/rate", json={"score": 5}, headers=_agent(buyer_id)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "TRANSACTION_NOT_READY"

    @pytest.mark.asyncio
    async def test_out_of_range_score_is_422(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        data = await _open(client, operator_headers, buyer_id, seller_id)

        response = await client.post(
            f"{BASE}/{data['id']}/rate", json={"score": 9}, headers=_agent(buyer_id)
        )

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_RATING"

    @pytest.mark.asyncio
    async def test_missing_agent_header_is_422(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        data = await _open(client, operator_headers, buyer_id, seller_id)

        response = await client.post(f"{BASE}/{data['id']}/fund")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client) -> None:
        response = await client.get(f"{BASE}/{uuid.uuid4()}", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    @pytest.mark.asyncio
    async def test_request_id_is_generated(self, client) -> None:
        response = await client.get(BASE)

        assert uuid.UUID(response.headers["X-Request-ID"])


class TestLifecycleOverHttp:
    @pytest.mark.asyncio
    async def test_fund_deliver_rate_completes(
        self, client, service, gateway, operator_headers, buyer_id, seller_id
    ) -> None:
        tx_id = (await _open(client, operator_headers, buyer_id, seller_id))["id"]

        funding = await client.post(f"{BASE}/{tx_id}/fund", headers=_agent(buyer_id))
        assert funding.status_code == 200
        assert funding.json()["payment_ref"] == "pi_test_1"
        assert funding.json()["client_secret"] == "pi_test_1_secret"

        # The provider confirms the hold out of band
        await service.confirm_escrow_funded(uuid.UUID(tx_id), "pi_test_1")

        delivered = await client.post(
            f"{BASE}/{tx_id}/deliver",
            json={"proof": "https://example.com/artifact"},
            headers=_agent(seller_id),
        )
        assert delivered.json()["status"] == "delivered"

        confirmed = await client.post(f"{BASE}/{tx_id}/confirm", headers=_agent(buyer_id))
        assert confirmed.json()["delivery_confirmed_at"] is not None

        for rater in (buyer_id, seller_id):
            rated = await client.post(
                f"{BASE}/{tx_id}/rate", json={"score": 5}, headers=_agent(rater)
            )
            assert rated.status_code == 201

        final = (await client.get(f"{BASE}/{tx_id}")).json()
        escrow = (await client.get(f"{BASE}/{tx_id}/escrow")).json()
        ratings = (await client.get(f"{BASE}/{tx_id}/ratings")).json()

        assert final["status"] == "completed"
        assert final["completed_at"] is not None
        assert escrow["status"] == "released"
        assert len(ratings) == 2
        assert gateway.captures == ["pi_test_1"]

    @pytest.mark.asyncio
    async def test_dispute_then_refund(
        self, client, service, gateway, operator_headers, buyer_id, seller_id
    ) -> None:
        tx_id = (await _open(client, operator_headers, buyer_id, seller_id))["id"]
        await client.post(f"{BASE}/{tx_id}/fund", headers=_agent(buyer_id))
        await service.confirm_escrow_funded(uuid.UUID(tx_id), "pi_test_1")

        disputed = await client.post(
            f"{BASE}/{tx_id}/dispute",
            json={"reason": "nothing delivered"},
            headers=_agent(buyer_id),
        )
        assert disputed.status_code == 200
        assert disputed.json()["metadata"]["dispute"]["reason"] == "nothing delivered"

        refunded = await client.post(
            f"{BASE}/{tx_id}/refund", json={}, headers=operator_headers
        )

        assert refunded.json()["status"] == "refunded"
        assert gateway.refunds == ["pi_test_1"]

    @pytest.mark.asyncio
    async def test_dispute_released_to_seller(
        self, client, operator_headers, buyer_id, seller_id
    ) -> None:
        tx_id = (await _open(client, operator_headers, buyer_id, seller_id))["id"]
        await client.post(
            f"{BASE}/{tx_id}/dispute", json={"reason": "late"}, headers=_agent(seller_id)
        )

        released = await client.post(f"{BASE}/{tx_id}/release", headers=operator_headers)

        assert released.status_code == 200
        assert released.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_cancel_pending(self, client, operator_headers, buyer_id, seller_id) -> None:
        tx_id = (await _open(client, operator_headers, buyer_id, seller_id))["id"]

        cancelled = await client.post(
            f"{BASE}/{tx_id}/cancel", json={"reason": "changed my mind"}, headers=_agent(buyer_id)
        )
        again = await client.post(f"{BASE}/{tx_id}/cancel", json={}, headers=_agent(buyer_id))

        assert cancelled.json()["status"] == "cancelled"
        assert again.status_code == 409


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_reports_database_and_dispatcher(
        self, client, engine, monkeypatch
    ) -> None:
        monkeypatch.setattr(engine_module, "_engine", engine)

        response = await client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["database"] == "healthy"
        assert body["redis"] == "not configured"
        assert set(body["dispatcher"]) == {"enqueued", "delivered", "failed", "dropped"}
