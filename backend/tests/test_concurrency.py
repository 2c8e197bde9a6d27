"""
Concurrency tests for the workflow engine.

Same-order calls must succeed at most once; different orders proceed
independently; warehouse counters stay balanced throughout.
"""

import asyncio
import gc

from structlog.testing import capture_logs

from core.exceptions import InsufficientStock, InvalidStateTransition
from replenishment.engine import KeyedLocks, ReplenishmentWorkflowEngine


async def _alert(workflow, seeded, **overrides):
    kwargs = dict(
        store_id=seeded["store_id"],
        product_id=seeded["product_id"],
        product_name="Organic Milk 1L",
        current_stock=5,
        reorder_threshold=10,
    )
    kwargs.update(overrides)
    return await workflow.create_low_stock_alert(**kwargs)


async def test_duplicate_transfer_requests_succeed_once(workflow, seeded, warehouse_level):
    order = await _alert(workflow, seeded)

    results = await asyncio.gather(
        *(workflow.create_transfer_order(order.replenishment_id) for _ in range(5)),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 4
    assert all(isinstance(f, InvalidStateTransition) for f in failures)
    assert await warehouse_level() == (100, 85, 15)
    assert len(await workflow.get_order_history(order.replenishment_id)) == 2


async def test_two_engine_instances_race_on_one_order(runtime, seeded, warehouse_level):
    """Separate engines share no in-process lock; the version counter decides."""
    other = ReplenishmentWorkflowEngine(
        runtime.session_factory,
        runtime.notifier,
        settings=runtime.workflow.settings,
    )
    order = await _alert(runtime.workflow, seeded)

    results = await asyncio.gather(
        runtime.workflow.create_transfer_order(order.replenishment_id),
        other.create_transfer_order(order.replenishment_id),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidStateTransition)
    assert await warehouse_level() == (100, 85, 15)


async def test_different_orders_share_warehouse_stock(workflow, seeded, warehouse_level):
    orders = [await _alert(workflow, seeded, requested_quantity=30) for _ in range(5)]

    results = await asyncio.gather(
        *(workflow.create_transfer_order(o.replenishment_id) for o in orders),
        return_exceptions=True,
    )

    reserved = sum(r.transfer_quantity for r in results if not isinstance(r, BaseException))
    failures = [r for r in results if isinstance(r, BaseException)]
    assert reserved == 100
    assert all(isinstance(f, InsufficientStock) for f in failures)

    total, available, held = await warehouse_level()
    assert total == available + held
    assert held == 100


async def test_cancelled_caller_does_not_abort_transition(workflow, seeded, warehouse_level):
    order = await _alert(workflow, seeded)

    task = asyncio.create_task(workflow.create_transfer_order(order.replenishment_id))
    await asyncio.sleep(0)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    # the shielded unit keeps running to completion
    for _ in range(100):
        if (await workflow.get_order(order.replenishment_id)).status == "PENDING_PICKING":
            break
        await asyncio.sleep(0.01)

    assert (await workflow.get_order(order.replenishment_id)).status == "PENDING_PICKING"
    assert await warehouse_level() == (100, 85, 15)


async def test_keyed_locks_are_released():
    locks = KeyedLocks()
    order: list[str] = []

    async def _hold(key, tag, delay):
        async with locks.hold(key):
            order.append(f"{tag}-in")
            await asyncio.sleep(delay)
            order.append(f"{tag}-out")

    await asyncio.gather(_hold("A", "a1", 0.02), _hold("A", "a2", 0))
    assert order == ["a1-in", "a1-out", "a2-in", "a2-out"]
    assert len(locks) == 0


async def test_cancelled_caller_unit_failure_is_logged(workflow, seeded):
    order = await _alert(workflow, seeded)
    loop = asyncio.get_running_loop()
    unhandled: list[str] = []
    loop.set_exception_handler(lambda _loop, context: unhandled.append(context["message"]))
    try:
        with capture_logs() as logs:
            # ALERT_RAISED cannot ship, so the detached unit fails
            task = asyncio.create_task(workflow.create_shipment(order.replenishment_id))
            await asyncio.sleep(0)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            for _ in range(100):
                if any(e["event"] == "replenishment.detached_unit_failed" for e in logs):
                    break
                await asyncio.sleep(0.01)
        gc.collect()
        await asyncio.sleep(0)
    finally:
        loop.set_exception_handler(None)

    failures = [e for e in logs if e["event"] == "replenishment.detached_unit_failed"]
    assert len(failures) == 1
    assert failures[0]["error_type"] == "InvalidStateTransition"
    assert failures[0]["key"] == order.replenishment_id
    assert "Task exception was never retrieved" not in unhandled
    assert task.cancelled()


async def test_alert_with_skip_if_active_returns_none_for_open_pair(workflow, seeded):
    first = await _alert(workflow, seeded)
    assert await _alert(workflow, seeded, skip_if_active=True) is None

    await workflow.cancel_order(first.replenishment_id, reason="recount")
    again = await _alert(workflow, seeded, skip_if_active=True)
    assert again is not None
    assert [o.replenishment_id for o in await workflow.list_active_orders()] == [again.replenishment_id]
