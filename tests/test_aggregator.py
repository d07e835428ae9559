from chaintree.block import AddBlockRequest, Block, SignatureRecord
from chaintree.community import Community
from chaintree.pubsub import topic_for
from chaintree.store import MemoryBlockStore
from chaintree.tree import ChainTree
from chaintree.tx import TransactionRecord, set_data_transaction, set_ownership_transaction
from chaintree.utils import decode, encode
from chaintree.wallet import Wallet


def test_rejects_non_owner(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        store = MemoryBlockStore()
        empty = await ChainTree.new_empty_tree(store, wallet)
        intruder = ChainTree(empty.tip, store, key=Wallet.create())
        abr = await intruder.new_add_block_request([set_data_transaction("a", 1)])
        assert abr.did == wallet.did
        resp = await agg.add_block(abr)
        assert not resp.valid
        assert "not an owner" in resp.errors[0]
        assert await agg.get_tip(wallet.did) is None

    run(_go())


def test_rejects_tampered_payload(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
        abr = await tree.new_add_block_request([set_data_transaction("a", 1)])
        raw = decode(abr.payload)
        raw["transactions"][0]["setDataPayload"]["value"] = encode(2)
        abr.payload = encode(raw)
        resp = await agg.add_block(abr)
        assert not resp.valid

    run(_go())


def test_rejects_stale_previous_tip(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
        stale = ChainTree(tree.tip, tree.store, key=wallet)
        community = Community(agg, tree.store)
        assert (await community.play_transactions(tree, [set_data_transaction("a", 1)])).valid

        resp = await community.play_transactions(stale, [set_data_transaction("a", 2)])
        assert not resp.valid
        assert "previous tip" in resp.errors[0]
        assert stale.tip != tree.tip

    run(_go())


def test_rejects_unknown_transaction_type(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
        block = Block(height=0, transactions=[TransactionRecord(type=99)])
        signed = wallet.sign_object(block.payload_obj())
        block.signatures[wallet.address] = SignatureRecord(signature=signed.signature)
        state = [(await tree.store.get(tree.tip)).data]
        state.append((await tree.store.get(decode(state[0])["tree"])).data)
        abr = AddBlockRequest(
            previous_tip=bytes(tree.tip),
            object_id=wallet.did.encode(),
            height=0,
            payload=block.encode(),
            state=state,
        )
        resp = await agg.add_block(abr)
        assert not resp.valid
        assert "unsupported transaction" in resp.errors[0]

    run(_go())


def test_ownership_transfer(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        store = MemoryBlockStore()
        community = Community(agg, store)
        tree = await ChainTree.new_empty_tree(store, wallet)
        new_owner = Wallet.create()

        resp = await community.play_transactions(tree, [set_ownership_transaction([new_owner.address])])
        assert resp.valid
        auths = await tree.resolve("tree/_tupelo/authentications")
        assert auths.value == [new_owner.address]

        resp = await community.play_transactions(tree, [set_data_transaction("a", 1)])
        assert not resp.valid

        owned = ChainTree(tree.tip, store, key=new_owner)
        resp = await community.play_transactions(owned, [set_data_transaction("a", 1)])
        assert resp.valid
        assert await owned.id() == wallet.did
        assert (await owned.resolve_data("a")).value == 1

    run(_go())


def test_publishes_new_tip(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        seen = []
        agg.bus.subscribe(topic_for(wallet.did), seen.append)
        tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
        resp = await Community(agg, tree.store).play_transactions(tree, [set_data_transaction("a", 1)])
        assert seen == [{"did": wallet.did, "height": 0, "newTip": str(resp.new_tip)}]

    run(_go())


def test_resolve_unknown_tree(run, make_aggregator):
    async def _go():
        agg = make_aggregator()
        res = await agg.resolve("did:tupelo:0x0000000000000000000000000000000000000000", "tree/data/a", True)
        assert res.value is None
        assert res.remainder_path == ["tree", "data", "a"]
        assert res.touched_nodes == []

    run(_go())


def test_resolve_with_provenance(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
        await Community(agg, tree.store).play_transactions(tree, [set_data_transaction("a/b", "c")])
        res = await agg.resolve(wallet.did, "tree/data/a/b", True)
        assert res.value == "c"
        assert res.touched_nodes[0].cid == tree.tip
        assert [n.cid for n in res.touched_nodes] == (await tree.resolve("tree/data/a/b", True)).touched_nodes

    run(_go())


def test_failing_subscriber_does_not_break_submission(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        seen = []

        def listener_gone(msg):
            raise ConnectionError("listener gone")

        agg.bus.subscribe(topic_for(wallet.did), listener_gone)
        agg.bus.subscribe(topic_for(wallet.did), seen.append)
        tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
        community = Community(agg, tree.store)

        resp = await community.play_transactions(tree, [set_data_transaction("a", 1)])
        assert resp.valid
        assert tree.tip == await agg.get_tip(wallet.did)
        assert len(seen) == 1

        resp = await community.play_transactions(tree, [set_data_transaction("a", 2)])
        assert resp.valid
        assert (await tree.resolve_data("a")).value == 2
        assert len(seen) == 2

    run(_go())
