import asyncio

import pytest

from transactional_testing import TransactionalHelper
from transactional_testing.exception import (
    InvalidTransactionArgumentError,
    NoActiveTransactionError,
    TransactionChangedError,
)


def savepoint_statements(statements):
    return [
        statement for statement in statements if "SAVEPOINT" in statement
    ]


async def test_query_is_wrapped_in_savepoint(fake_helper, fake_client, proxy):
    await fake_helper.start_new_transaction()

    result = await proxy.recorder.run("a")

    assert result == "a"
    assert fake_client.statements == [
        "BEGIN",
        "SAVEPOINT transactional_testing_0",
        "run a",
        "RELEASE SAVEPOINT transactional_testing_0",
    ]
    assert fake_helper.savepoint_count == 0


async def test_savepoint_names_increase_and_reset_per_transaction(
    fake_helper, fake_client, proxy
):
    await fake_helper.start_new_transaction()
    await proxy.recorder.run("a")
    await proxy.recorder.run("b")
    await fake_helper.rollback_current_transaction()

    await fake_helper.start_new_transaction()
    await proxy.recorder.run("c")

    assert savepoint_statements(fake_client.statements) == [
        "SAVEPOINT transactional_testing_0",
        "RELEASE SAVEPOINT transactional_testing_0",
        "SAVEPOINT transactional_testing_1",
        "RELEASE SAVEPOINT transactional_testing_1",
        "SAVEPOINT transactional_testing_0",
        "RELEASE SAVEPOINT transactional_testing_0",
    ]


async def test_failure_rolls_back_and_reraises_same_error(
    fake_helper, fake_client, proxy
):
    await fake_helper.start_new_transaction()
    error = ValueError("boom")

    with pytest.raises(ValueError) as exc_info:
        await proxy.recorder.run("a", fail=error)

    assert exc_info.value is error
    assert fake_client.statements[-1] == (
        "ROLLBACK TO SAVEPOINT transactional_testing_0"
    )
    # ROLLBACK TO keeps the savepoint established
    assert fake_helper.savepoint_count == 1


async def test_wrap_without_transaction(fake_helper):
    async def operation():
        return "never"

    with pytest.raises(
        NoActiveTransactionError, match="no transaction is active"
    ):
        await fake_helper.savepoints.wrap(operation)

    assert not fake_helper.savepoints.lock.locked


async def test_custom_prefix(fake_client):
    helper = TransactionalHelper(fake_client, savepoint_prefix="test_sp_")
    proxy = helper.get_proxy_client()
    await helper.start_new_transaction()

    await proxy.recorder.run("a")

    assert "SAVEPOINT test_sp_0" in fake_client.statements


@pytest.mark.parametrize(
    "kwargs",
    (
        {"savepoint_prefix": "not valid"},
        {"savepoint_prefix": "1abc"},
        {"release_threshold": 0},
        {"release_threshold": "10"},
        {"release_threshold": True},
    ),
)
def test_invalid_configuration(fake_client, kwargs):
    with pytest.raises(ValueError):
        TransactionalHelper(fake_client, **kwargs)


async def test_nested_transaction_with_list(fake_helper, fake_client, proxy):
    await fake_helper.start_new_transaction()

    results = await proxy.transaction(
        [proxy.recorder.run("a"), proxy.recorder.run("b")]
    )

    assert results == ["a", "b"]
    assert fake_client.statements[1:] == [
        "SAVEPOINT transactional_testing_0",
        "run a",
        "run b",
        "RELEASE SAVEPOINT transactional_testing_0",
    ]


async def test_nested_transaction_with_callback(
    fake_helper, fake_client, proxy
):
    await fake_helper.start_new_transaction()
    received = []

    async def callback(client):
        received.append(client)
        return await client.recorder.run("a")

    result = await proxy.transaction(callback)

    assert result == "a"
    assert received == [fake_client.transaction_clients[0]]


async def test_nested_transaction_with_sync_callback(fake_helper, proxy):
    await fake_helper.start_new_transaction()

    result = await proxy.transaction(lambda client: "done")

    assert result == "done"


async def test_nested_transaction_ignores_timeouts(fake_helper, proxy):
    await fake_helper.start_new_transaction()

    result = await proxy.transaction(
        lambda client: "done", timeout=1, max_wait=2
    )

    assert result == "done"


@pytest.mark.parametrize("argument", (None, 42, "SELECT 1"))
async def test_nested_transaction_invalid_argument(
    fake_helper, fake_client, proxy, argument
):
    await fake_helper.start_new_transaction()

    with pytest.raises(InvalidTransactionArgumentError):
        await proxy.transaction(argument)

    assert fake_client.statements[-1] == (
        "ROLLBACK TO SAVEPOINT transactional_testing_0"
    )


async def test_queries_inside_explicit_transaction_share_its_savepoint(
    fake_helper, fake_client, proxy
):
    await fake_helper.start_new_transaction()

    async def callback(_):
        await proxy.recorder.run("a")
        await proxy.recorder.run("b")

    await proxy.transaction(callback)

    assert savepoint_statements(fake_client.statements) == [
        "SAVEPOINT transactional_testing_0",
        "RELEASE SAVEPOINT transactional_testing_0",
    ]


async def test_explicit_transaction_inside_explicit_transaction(
    fake_helper, fake_client, proxy
):
    await fake_helper.start_new_transaction()

    async def inner(_):
        raise ValueError("inner")

    async def outer(_):
        with pytest.raises(ValueError):
            await proxy.transaction(inner)
        return await proxy.recorder.run("after")

    assert await proxy.transaction(outer) == "after"
    assert savepoint_statements(fake_client.statements) == [
        "SAVEPOINT transactional_testing_0",
        "SAVEPOINT transactional_testing_1",
        "ROLLBACK TO SAVEPOINT transactional_testing_1",
        "RELEASE SAVEPOINT transactional_testing_0",
    ]
    assert fake_helper.savepoint_count == 0


async def test_failed_savepoints_are_released_in_batches(fake_client):
    helper = TransactionalHelper(fake_client, release_threshold=3)
    proxy = helper.get_proxy_client()
    await helper.start_new_transaction()

    for index in range(4):
        with pytest.raises(ValueError):
            await proxy.recorder.run(str(index), fail=ValueError(index))
        assert helper.savepoint_count <= 3

    statements = savepoint_statements(fake_client.statements)
    release_at = statements.index("RELEASE SAVEPOINT transactional_testing_0")
    assert statements[release_at - 1] == (
        "ROLLBACK TO SAVEPOINT transactional_testing_2"
    )
    assert statements[release_at + 1] == "SAVEPOINT transactional_testing_3"
    assert [savepoint.name for savepoint in helper.savepoints.established] == [
        "transactional_testing_3"
    ]


async def test_batch_release_keeps_open_savepoints(fake_client):
    helper = TransactionalHelper(fake_client, release_threshold=2)
    proxy = helper.get_proxy_client()
    await helper.start_new_transaction()

    async def failing(_):
        raise ValueError("fail")

    async def body(_):
        for _ in range(3):
            with pytest.raises(ValueError):
                await proxy.transaction(failing)
        return "done"

    assert await proxy.transaction(body) == "done"

    statements = savepoint_statements(fake_client.statements)
    assert "RELEASE SAVEPOINT transactional_testing_1" in statements
    assert "RELEASE SAVEPOINT transactional_testing_2" in statements
    assert statements.count("RELEASE SAVEPOINT transactional_testing_0") == 1
    assert statements[-1] == "RELEASE SAVEPOINT transactional_testing_0"
    assert helper.savepoint_count == 0


async def test_batch_release_skipped_when_every_savepoint_is_open(
    fake_client,
):
    helper = TransactionalHelper(fake_client, release_threshold=1)
    proxy = helper.get_proxy_client()
    await helper.start_new_transaction()

    async def inner(_):
        return helper.savepoint_count

    async def outer(_):
        return await proxy.transaction(inner)

    assert await proxy.transaction(outer) == 2
    assert savepoint_statements(fake_client.statements) == [
        "SAVEPOINT transactional_testing_0",
        "SAVEPOINT transactional_testing_1",
        "RELEASE SAVEPOINT transactional_testing_1",
        "RELEASE SAVEPOINT transactional_testing_0",
    ]


async def test_unawaited_query_fails_after_transaction_changed(
    fake_helper, fake_client, proxy
):
    await fake_helper.start_new_transaction()
    gate = asyncio.Event()
    pending = asyncio.ensure_future(proxy.recorder.run("slow", gate=gate))
    await asyncio.sleep(0.01)

    fake_helper.rollback_current_transaction()
    await fake_helper.start_new_transaction()
    gate.set()

    with pytest.raises(TransactionChangedError, match="awaited"):
        await pending

    assert not fake_helper.savepoints.lock.locked
    # nothing was issued against the new transaction for the stale query
    assert fake_client.statements[-1] == "BEGIN"


async def test_cancelled_query_rolls_back(fake_helper, fake_client, proxy):
    await fake_helper.start_new_transaction()
    gate = asyncio.Event()
    pending = asyncio.ensure_future(proxy.recorder.run("slow", gate=gate))
    await asyncio.sleep(0.01)

    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    assert fake_client.statements[-1] == (
        "ROLLBACK TO SAVEPOINT transactional_testing_0"
    )
    assert not fake_helper.savepoints.lock.locked
