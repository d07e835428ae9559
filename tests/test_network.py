import asyncio

from chaintree.block import AddBlockResponse
from chaintree.client import Client
from chaintree.community import Community
from chaintree.identity import Identity, SignedIdentity
from chaintree.network import read_message, request_frame, send_message
from chaintree.server import AggregatorServer
from chaintree.store import MemoryBlockStore
from chaintree.tree import ChainTree
from chaintree.tx import set_data_transaction
from chaintree.wallet import Wallet


def test_identity_token(wallet):
    signed = Identity.for_did(wallet.did, ttl=30).sign(wallet)
    assert signed.address() == wallet.address
    assert signed.verify([wallet.address])
    assert not signed.verify([Wallet.create().address])
    assert not signed.verify([wallet.address], now=signed.identity.exp + 1)

    parsed = SignedIdentity.from_header(signed.to_header())
    assert parsed.identity == signed.identity
    assert parsed.verify([wallet.address.lower()])
    assert SignedIdentity.from_header("") is None


def test_tampered_identity(wallet):
    signed = Identity.for_did(wallet.did).sign(wallet)
    signed.identity.sub = Wallet.create().did
    assert not signed.verify([wallet.address])


def test_client_server_roundtrip(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        server = AggregatorServer(agg, port=0, require_identity=False)
        await server.start()
        try:
            async with Client("127.0.0.1", server.port) as client:
                assert await client.get_tip(wallet.did) is None

                tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
                resp = await Community(client, tree.store).play_transactions(
                    tree, [set_data_transaction("a/b", {"x": b"\x00\x01"})]
                )
                assert isinstance(resp, AddBlockResponse)
                assert resp.valid
                assert await client.get_tip(wallet.did) == tree.tip

                res = await client.resolve(wallet.did, "tree/data/a/b", True)
                assert res.value == {"x": b"\x00\x01"}
                assert res.remainder_path == []
                assert res.touched_nodes[0].cid == tree.tip

                missing = await client.resolve(wallet.did, "tree/data/a/c")
                assert missing.value is None
                assert missing.remainder_path == ["c"]
                assert missing.touched_nodes == []
        finally:
            await server.close()

    run(_go())


def test_server_requires_identity(run, wallet, make_aggregator):
    async def _go():
        agg = make_aggregator()
        server = AggregatorServer(agg, port=0, require_identity=True)
        await server.start()
        try:
            tree = await ChainTree.new_empty_tree(MemoryBlockStore(), wallet)
            async with Client("127.0.0.1", server.port) as client:
                resp = await Community(client, tree.store).play_transactions(
                    tree, [set_data_transaction("a", 1)]
                )
                assert not resp.valid
                assert resp.errors == ["unauthorized"]

                client.identify(wallet.did, Wallet.create())
                resp = await Community(client, tree.store).play_transactions(
                    tree, [set_data_transaction("a", 1)]
                )
                assert not resp.valid

                client.identify(wallet.did, wallet)
                resp = await Community(client, tree.store).play_transactions(
                    tree, [set_data_transaction("a", 1)]
                )
                assert resp.valid
        finally:
            await server.close()

    run(_go())


def test_unknown_method(run, make_aggregator):
    async def _go():
        server = AggregatorServer(make_aggregator(), port=0)
        await server.start()
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            await send_message(writer, request_frame(7, "nope", {}))
            reply = await read_message(reader)
            assert reply["id"] == 7
            assert not reply["ok"]
            assert "unknown method" in reply["error"]

            await send_message(writer, request_frame(8, "resolve", {}))
            reply = await read_message(reader)
            assert not reply["ok"]
            assert reply["error"].startswith("bad request")
            writer.close()
            await writer.wait_closed()
        finally:
            await server.close()

    run(_go())
