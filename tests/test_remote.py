import asyncio

import pytest

from chaintree.community import Community
from chaintree.errors import NotFoundError
from chaintree.pubsub import TopicBus, topic_for
from chaintree.remote import RemoteTree
from chaintree.store import MemoryBlockStore
from chaintree.tree import ChainTree
from chaintree.tx import set_data_transaction


async def _writer(agg, wallet):
    tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
    community = Community(agg, tree.store)
    await community.play_transactions(tree, [set_data_transaction("a/b", "hi")])
    return tree, community


def test_falls_back_to_remote(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        writer, _ = await _writer(agg, wallet)

        local = MemoryBlockStore()
        reader = RemoteTree(writer.tip, local, resolver=agg, did=wallet.did)
        res = await reader.resolve_data("a/b", want_provenance=True)
        assert res.value == "hi"
        assert res.touched_nodes[0] == writer.tip
        for cid in res.touched_nodes:
            assert await local.has(cid)

        # now answered locally
        assert (await reader.resolve_data("a/b")).value == "hi"
        missing = await reader.resolve_data("a/nope")
        assert missing.remainder_path == ["nope"]

    run(_go())


def test_remote_without_did(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        writer, _ = await _writer(agg, wallet)
        reader = RemoteTree(writer.tip, MemoryBlockStore(), resolver=agg)
        with pytest.raises(NotFoundError):
            await reader.resolve("tree/data/a/b")

    run(_go())


def test_get_latest(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        writer, _ = await _writer(agg, wallet)
        community = Community(agg, MemoryBlockStore())
        latest = await community.get_latest(wallet.did)
        assert latest.tip == writer.tip
        assert (await latest.resolve_data("a/b")).value == "hi"

        with pytest.raises(NotFoundError):
            await community.get_tip("did:tupelo:0x0000000000000000000000000000000000000000")

    run(_go())


def test_notifications_move_tip(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        writer, community = await _writer(agg, wallet)

        reader = RemoteTree(writer.tip, MemoryBlockStore(), resolver=agg, did=wallet.did, channel=agg.bus)
        events = []
        reader.updated.add(events.append)
        sub = await reader.subscribe()
        assert agg.bus.subscribers(topic_for(wallet.did)) == 1

        await community.play_transactions(writer, [set_data_transaction("a/b", "bye")])
        assert reader.tip == writer.tip
        assert await reader.height() == 1
        assert (await reader.resolve_data("a/b")).value == "bye"
        assert len(events) == 1
        assert events[0]["height"] == 1
        assert events[0]["newTip"] == writer.tip

        sub.cancel()
        sub.cancel()
        assert agg.bus.subscribers(topic_for(wallet.did)) == 0
        seen = reader.tip
        await community.play_transactions(writer, [set_data_transaction("a/b", "again")])
        assert reader.tip == seen
        assert len(events) == 1

    run(_go())


def test_subscribe_requires_channel(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        writer, _ = await _writer(agg, wallet)
        reader = RemoteTree(writer.tip, MemoryBlockStore(), resolver=agg, did=wallet.did)
        with pytest.raises(RuntimeError):
            await reader.subscribe()

    run(_go())


class _GatedResolver:
    """Holds every remote resolve until the gate opens."""

    def __init__(self, inner):
        self.inner = inner
        self.gate = asyncio.Event()
        self.waiting = asyncio.Event()

    async def resolve(self, did, path, want_provenance=False):
        self.waiting.set()
        await self.gate.wait()
        return await self.inner.resolve(did, path, want_provenance)


def test_late_notification_does_not_roll_back_applied_tip(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        resolver = _GatedResolver(agg)
        channel = TopicBus()
        tree = await RemoteTree.new_empty_tree(
            MemoryBlockStore(), wallet, resolver=resolver, did=wallet.did, channel=channel
        )
        community = Community(agg, tree.store)
        assert (await community.play_transactions(tree, [set_data_transaction("a", 0)])).valid

        resp1 = await agg.add_block(await tree.new_add_block_request([set_data_transaction("a", 1)]))
        assert resp1.valid
        events = []
        tree.updated.add(events.append)
        await tree.subscribe()
        pending = asyncio.ensure_future(
            channel.publish(
                topic_for(wallet.did),
                {"did": wallet.did, "height": 1, "newTip": str(resp1.new_tip)},
            )
        )
        # the notification is now parked in the middle of its remote fetch
        await resolver.waiting.wait()

        assert await tree.apply_response(resp1)
        resp2 = await community.play_transactions(tree, [set_data_transaction("a", 2)])
        assert resp2.valid

        resolver.gate.set()
        await pending
        assert tree.tip == resp2.new_tip
        assert await tree.height() == 2
        assert (await tree.resolve_data("a")).value == 2
        assert events == []

    run(_go())


def test_stale_apply_does_not_roll_back_notified_tip(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        writer, community = await _writer(agg, wallet)
        reader = RemoteTree(writer.tip, MemoryBlockStore(), resolver=agg, did=wallet.did, channel=agg.bus)
        await reader.subscribe()

        resp1 = await community.play_transactions(writer, [set_data_transaction("a/b", "bye")])
        await community.play_transactions(writer, [set_data_transaction("a/b", "again")])
        assert reader.tip == writer.tip

        assert not await reader.apply_response(resp1)
        assert reader.tip == writer.tip
        assert await reader.height() == 2

    run(_go())
