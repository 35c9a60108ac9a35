"""
Интеграционные тесты движка выплат
"""

import asyncio
from datetime import timedelta

import pytest

from marketplace.core.config import Settings
from marketplace.core.constants import OrderStatus, PayoutStatus, PayoutTrigger, TransferState
from marketplace.domain.errors import GatewayRequestNotSentError, UpstreamUnavailableError
from marketplace.repositories.exceptions import EntityNotFoundError
from marketplace.services.order_lifecycle import OrderLifecycleEngine
from marketplace.services.payment_gateway import TransferResult
from marketplace.utils.helpers import get_now
from tests.conftest import T0


pytestmark = pytest.mark.integration


async def _deliver(services, place_order, seller_id: str = "seller-1"):
    order = await place_order(services, seller_id=seller_id)
    lifecycle = services.lifecycle
    await lifecycle.commit(order.id, seller_id, now=T0 + timedelta(hours=1))
    await lifecycle.mark_collected(order.id, tracking_number="TRK1", now=T0 + timedelta(hours=3))
    await lifecycle.mark_delivered(order.id, now=T0 + timedelta(hours=24))
    return order


async def _complete(services, place_order, seller_id: str = "seller-1"):
    order = await _deliver(services, place_order, seller_id)
    await services.lifecycle.confirm_receipt(order.id, "buyer-1", now=T0 + timedelta(hours=25))
    return order


def _reference(order, attempt: int) -> str:
    return f"payout-{order.id.replace('-', '')}-{attempt}"


class TestPayoutProcessing:
    """Тесты обработки очереди выплат"""

    @pytest.mark.asyncio()
    async def test_successful_payout(self, services, place_order, gateway, transport, notifier):
        order = await _complete(services, place_order)

        result = await services.payout_engine.process_queue()
        await notifier.drain()

        assert result.processed == 1
        assert gateway.transfer_calls == [
            {
                "recipient": "RCP_test_seller",
                "amount": 31000,
                "reference": _reference(order, 1),
                "reason": f"Payout for order {order.id[:8]}",
            }
        ]

        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.transfer_code == "TRF_default"
        assert payout.processed_at is not None

        paid_out = await services.lifecycle.get_order(order.id)
        assert paid_out.payout_completed_at is not None
        assert paid_out.payout_held is False
        assert "payout_completed" in transport.templates("seller-1")

        assert (await services.payout_engine.process_queue()).processed == 0
        assert len(gateway.transfer_calls) == 1

    @pytest.mark.asyncio()
    async def test_concurrent_claim_has_one_winner(self, services, place_order):
        order = await _complete(services, place_order)
        payout = await services.payout_repository.get_by_order_id(order.id)

        claims = await asyncio.gather(
            services.payout_repository.claim(payout.id, "payout-a-1"),
            services.payout_repository.claim(payout.id, "payout-b-1"),
        )

        assert sorted(claims) == [False, True]

    @pytest.mark.asyncio()
    async def test_concurrent_workers_transfer_once(self, services, place_order, gateway):
        """Два воркера над одной очередью: один перевод"""
        await _complete(services, place_order)

        results = await asyncio.gather(
            services.payout_engine.process_queue(), services.payout_engine.process_queue()
        )

        assert len(gateway.transfer_calls) == 1
        assert sum(result.processed for result in results) == 1

    @pytest.mark.asyncio()
    async def test_retry_cap_marks_failed(self, services, place_order, gateway, transport, notifier):
        order = await _complete(services, place_order)
        gateway.transfer_results = [
            TransferResult(TransferState.FAILED, message="recipient account closed") for _ in range(3)
        ]

        for attempt in (1, 2):
            result = await services.payout_engine.process_queue()
            assert result.failed == 1
            payout = await services.payout_repository.get_by_order_id(order.id)
            assert payout.status == PayoutStatus.PENDING
            assert payout.retry_count == attempt

        await services.payout_engine.process_queue()
        await notifier.drain()

        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.FAILED
        assert payout.retry_count == 3
        assert payout.error_message == "recipient account closed"
        assert [call["reference"] for call in gateway.transfer_calls] == [
            _reference(order, 1),
            _reference(order, 2),
            _reference(order, 3),
        ]
        assert "payout_failed" in transport.templates("admin")

        await services.payout_engine.process_queue()
        assert len(gateway.transfer_calls) == 3
        assert (await services.lifecycle.get_order(order.id)).payout_completed_at is None

    @pytest.mark.asyncio()
    async def test_connection_error_counts_as_failed_attempt(self, services, place_order, gateway):
        order = await _complete(services, place_order)
        gateway.transfer_results = [GatewayRequestNotSentError("payment_gateway", "connection refused")]

        result = await services.payout_engine.process_queue()

        assert result.failed == 1
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PENDING
        assert payout.retry_count == 1

    @pytest.mark.asyncio()
    async def test_missing_recipient(self, services, place_order, db):
        order = await _complete(services, place_order)
        async with db.get_session() as session:
            stored = await session.get(type(order), order.id)
            stored.seller_recipient_code = ""

        result = await services.payout_engine.process_queue()

        assert result.failed == 1
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert "получателя" in payout.error_message


class TestAmbiguousTransfers:
    """Тесты неоднозначного исхода перевода и сверки"""

    @pytest.mark.asyncio()
    async def test_timeout_waits_for_reconciliation(self, services, place_order, gateway):
        order = await _complete(services, place_order)
        gateway.transfer_results = [UpstreamUnavailableError("payment_gateway", "read timeout")]

        result = await services.payout_engine.process_queue()

        assert result.ambiguous == 1
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PROCESSING
        assert payout.retry_count == 0
        assert "неизвестен" in payout.error_message

        # Повторной инициации нет, пока исход не выяснен
        await services.payout_engine.process_queue()
        assert len(gateway.transfer_calls) == 1

        gateway.transfer_lookups[_reference(order, 1)] = TransferResult(
            TransferState.SUCCESS, transfer_code="TRF_late"
        )
        reconciled = await services.payout_engine.reconcile_stale(now=get_now() + timedelta(hours=1))

        assert reconciled.completed == 1
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.transfer_code == "TRF_late"
        assert len(gateway.transfer_calls) == 1

    @pytest.mark.asyncio()
    async def test_reconcile_not_found_allows_retry(self, services, place_order, gateway):
        order = await _complete(services, place_order)
        gateway.transfer_results = [UpstreamUnavailableError("payment_gateway", "HTTP 502")]
        await services.payout_engine.process_queue()

        reconciled = await services.payout_engine.reconcile_stale(now=get_now() + timedelta(hours=1))

        assert reconciled.failed == 1
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PENDING
        assert payout.retry_count == 1

        result = await services.payout_engine.process_queue()

        assert result.processed == 1
        assert gateway.transfer_calls[-1]["reference"] == _reference(order, 2)

    @pytest.mark.asyncio()
    async def test_fresh_processing_is_not_reconciled(self, services, place_order, gateway):
        await _complete(services, place_order)
        gateway.transfer_results = [UpstreamUnavailableError("payment_gateway", "read timeout")]
        await services.payout_engine.process_queue()

        reconciled = await services.payout_engine.reconcile_stale()

        assert reconciled.checked == 0

    @pytest.mark.asyncio()
    async def test_pending_lookup_stays_unresolved(self, services, place_order, gateway):
        order = await _complete(services, place_order)
        gateway.transfer_results = [TransferResult(TransferState.PENDING, transfer_code="TRF_slow")]
        await services.payout_engine.process_queue()

        reconciled = await services.payout_engine.reconcile_stale(now=get_now() + timedelta(hours=1))

        assert reconciled.unresolved == 1
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PROCESSING


class TestTransferWebhooks:
    """Тесты событий шлюза о переводах"""

    @pytest.mark.asyncio()
    async def test_accepted_transfer_completed_by_webhook(self, services, place_order, gateway):
        order = await _complete(services, place_order)
        gateway.transfer_results = [TransferResult(TransferState.PENDING, transfer_code="TRF_otp")]

        result = await services.payout_engine.process_queue()

        assert result.accepted == 1
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PROCESSING
        assert payout.transfer_code == "TRF_otp"

        event = {"reference": payout.transfer_reference, "transfer_code": "TRF_otp"}
        assert await services.payout_engine.handle_transfer_event("transfer.success", event)
        assert not await services.payout_engine.handle_transfer_event("transfer.success", event)

        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.COMPLETED

    @pytest.mark.asyncio()
    async def test_failed_webhook_requeues(self, services, place_order, gateway):
        order = await _complete(services, place_order)
        gateway.transfer_results = [TransferResult(TransferState.PENDING, transfer_code="TRF_otp")]
        await services.payout_engine.process_queue()
        payout = await services.payout_repository.get_by_order_id(order.id)

        changed = await services.payout_engine.handle_transfer_event(
            "transfer.failed", {"reference": payout.transfer_reference, "reason": "bank rejected"}
        )

        assert changed
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PENDING
        assert payout.retry_count == 1
        assert payout.error_message == "bank rejected"

    @pytest.mark.asyncio()
    async def test_unknown_reference_ignored(self, services):
        assert not await services.payout_engine.handle_transfer_event(
            "transfer.success", {"reference": "payout-unknown-1"}
        )
        assert not await services.payout_engine.handle_transfer_event("transfer.success", {})


class TestPayoutOnDelivery:
    """Тесты с выплатой при доставке и спором после захвата"""

    @pytest.mark.asyncio()
    async def test_dispute_after_accepted_transfer_requires_review(
        self, make_services, place_order, gateway, transport, notifier
    ):
        services = make_services(Settings(payout_trigger=PayoutTrigger.DELIVERED))
        order = await _deliver(services, place_order)
        assert await services.payout_repository.get_by_order_id(order.id) is not None

        gateway.transfer_results = [TransferResult(TransferState.PENDING, transfer_code="TRF_otp")]
        await services.payout_engine.process_queue()
        await services.lifecycle.raise_dispute(order.id, "buyer-1", "pages missing")

        payout = await services.payout_repository.get_by_order_id(order.id)
        assert await services.payout_engine.handle_transfer_event(
            "transfer.success", {"reference": payout.transfer_reference}
        )
        await notifier.drain()

        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.requires_review is True
        assert "payout_review_required" in transport.templates("admin")
        assert (await services.lifecycle.get_order(order.id)).status == OrderStatus.DISPUTED

    @pytest.mark.asyncio()
    async def test_disputed_order_is_skipped(self, make_services, place_order, gateway):
        services = make_services(Settings(payout_trigger=PayoutTrigger.DELIVERED))
        order = await _deliver(services, place_order)
        await services.lifecycle.raise_dispute(order.id, "buyer-1", "wrong book")

        result = await services.payout_engine.process_queue()

        assert gateway.transfer_calls == []
        assert result.processed == 0
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PENDING

    @pytest.mark.asyncio()
    async def test_collected_held_trigger(self, make_services, place_order):
        services = make_services(Settings(payout_trigger=PayoutTrigger.COLLECTED_HELD))
        order = await place_order(services)
        await services.lifecycle.commit(order.id, "seller-1", now=T0 + timedelta(hours=1))
        await services.lifecycle.mark_collected(order.id)

        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout is not None
        assert payout.amount == 31000

    @pytest.mark.asyncio()
    async def test_refund_resolution_retires_payout(
        self, make_services, place_order, gateway, transport, notifier
    ):
        """Выплата по возвращённому заказу не блокирует очередь"""
        services = make_services(Settings(payout_trigger=PayoutTrigger.DELIVERED))
        refunded = await _deliver(services, place_order, seller_id="seller-a")
        await services.lifecycle.raise_dispute(refunded.id, "buyer-1", "wrong edition")
        await services.lifecycle.resolve_dispute(refunded.id, "refund_buyer", actor_id="admin-1")
        payable = await _deliver(services, place_order, seller_id="seller-b")

        result = await services.payout_engine.process_queue(batch_size=1)
        await notifier.drain()

        assert result.processed == 1
        assert [call["reference"] for call in gateway.transfer_calls] == [_reference(payable, 1)]

        retired = await services.payout_repository.get_by_order_id(refunded.id)
        assert retired.status == PayoutStatus.FAILED
        assert retired.requires_review is True
        assert retired.retry_count == 0
        assert "payout_cancelled" in transport.templates("admin")

    @pytest.mark.asyncio()
    async def test_queue_retires_payout_of_terminal_order(self, make_services, place_order, gateway, db):
        services = make_services(Settings(payout_trigger=PayoutTrigger.DELIVERED))
        order = await _deliver(services, place_order)
        async with db.get_session() as session:
            stored = await session.get(type(order), order.id)
            stored.status = OrderStatus.REFUNDED

        first = await services.payout_engine.process_queue()
        second = await services.payout_engine.process_queue()

        assert first.skipped == 1
        assert second.skipped == 0
        assert gateway.transfer_calls == []
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.FAILED
        assert payout.requires_review is True

    @pytest.mark.asyncio()
    async def test_processing_payout_not_cancelled(self, make_services, place_order):
        services = make_services(Settings(payout_trigger=PayoutTrigger.DELIVERED))
        order = await _deliver(services, place_order)
        payout = await services.payout_repository.get_by_order_id(order.id)
        await services.payout_repository.claim(payout.id, _reference(order, 1))

        assert not await services.payout_engine.cancel_for_order(order)
        assert (await services.payout_repository.get_by_order_id(order.id)).status == PayoutStatus.PROCESSING


class TestQueueAdministration:
    """Тесты постановки в очередь и ручного управления"""

    @pytest.mark.asyncio()
    async def test_enqueue_is_idempotent(self, services, place_order):
        order = await _complete(services, place_order)
        existing = await services.payout_repository.get_by_order_id(order.id)

        again = await services.payout_engine.enqueue_for_order(order)

        assert again.id == existing.id
        assert await services.payout_engine.enqueue_eligible_orders() == 0

    @pytest.mark.asyncio()
    async def test_ineligible_order_not_enqueued(self, services, place_order):
        order = await place_order(services)

        assert await services.payout_engine.enqueue_for_order(order) is None

    @pytest.mark.asyncio()
    async def test_enqueue_eligible_orders_catches_up(self, services, place_order, gateway, notifier):
        """Заказ завершён без постановки выплаты: фоновый проход её создаёт"""
        bare_lifecycle = OrderLifecycleEngine(
            services.order_repository, services.listing_repository, gateway, notifier, services.settings
        )
        order = await place_order(services)
        await bare_lifecycle.commit(order.id, "seller-1", now=T0 + timedelta(hours=1))
        await bare_lifecycle.mark_collected(order.id)
        await bare_lifecycle.mark_delivered(order.id)
        await bare_lifecycle.confirm_receipt(order.id, "buyer-1")
        assert await services.payout_repository.get_by_order_id(order.id) is None

        assert await services.payout_engine.enqueue_eligible_orders() == 1
        assert await services.payout_repository.get_by_order_id(order.id) is not None

    @pytest.mark.asyncio()
    async def test_requeue_failed(self, services, place_order, gateway):
        order = await _complete(services, place_order)
        gateway.transfer_results = [TransferResult(TransferState.FAILED, message="declined") for _ in range(3)]
        for _ in range(3):
            await services.payout_engine.process_queue()

        failed = await services.payout_engine.get_failed_payouts()
        assert [payout.order_id for payout in failed] == [order.id]

        assert await services.payout_engine.requeue_failed(failed[0].id)
        payout = await services.payout_repository.get_by_order_id(order.id)
        assert payout.status == PayoutStatus.PENDING
        assert payout.retry_count == 3

        assert (await services.payout_engine.process_queue()).processed == 1
        assert gateway.transfer_calls[-1]["reference"] == _reference(order, 4)

    @pytest.mark.asyncio()
    async def test_requeue_unknown_payout(self, services):
        with pytest.raises(EntityNotFoundError):
            await services.payout_engine.requeue_failed("missing")

    @pytest.mark.asyncio()
    async def test_stats_and_history(self, services, place_order):
        await _complete(services, place_order, seller_id="seller-1")
        await _complete(services, place_order, seller_id="seller-2")
        await services.payout_engine.process_queue(batch_size=1)
        stats = await services.payout_engine.get_queue_stats()

        assert stats[PayoutStatus.COMPLETED] == {"count": 1, "amount": 31000}
        assert stats[PayoutStatus.PENDING] == {"count": 1, "amount": 31000}
        assert stats[PayoutStatus.FAILED] == {"count": 0, "amount": 0}

        history = await services.payout_engine.get_seller_payout_history("seller-2")
        assert len(history) == 1
        assert history[0].seller_id == "seller-2"
