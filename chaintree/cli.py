import argparse
import asyncio
import json
import logging
import os
from typing import Any, List, Tuple

from multiformats import CID

from .aggregator import LocalAggregator
from .client import Client
from .community import Community
from .errors import ChainTreeError, NotFoundError
from .remote import RemoteTree
from .security import enforce_security_requirements
from .server import AggregatorServer
from .store import SqliteBlockStore
from .tree import ChainTree
from .tx import set_data_transaction, set_ownership_transaction
from .utils import b64
from .wallet import Wallet

DEFAULT_DATA_DIR = os.path.join(os.getcwd(), "chaintree_data")
LOG_LEVEL = os.getenv("CHAINTREE_LOG_LEVEL", "WARNING").upper()


def _jsonable(value: Any) -> Any:
    if isinstance(value, CID):
        return {"/": str(value)}
    if isinstance(value, bytes):
        return {"bytes": b64(value)}
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _load_value(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _parse_remote(value: str) -> Tuple[str, int]:
    host, _, port = value.rpartition(":")
    if not host or not port.isdigit():
        raise SystemExit(f"Invalid --remote, expected host:port: {value}")
    return host, int(port)


def _wallet_path(args: argparse.Namespace) -> str:
    return args.wallet or os.path.join(args.data_dir, "wallet.json")


def _load_wallet(args: argparse.Namespace) -> Wallet:
    path = _wallet_path(args)
    if not os.path.exists(path):
        raise SystemExit(f"No wallet at {path}; run create-key first")
    return Wallet.load(path)


def _store(args: argparse.Namespace) -> SqliteBlockStore:
    return SqliteBlockStore(os.path.join(args.data_dir, "chaintree.db"))


async def _open_tree(args: argparse.Namespace, store: SqliteBlockStore, remote: Any, wallet: Wallet) -> ChainTree:
    tip = await remote.get_tip(wallet.did)
    if tip is None:
        return await ChainTree.new_empty_tree(store, wallet)
    if isinstance(remote, Client):
        return RemoteTree(tip=tip, store=store, resolver=remote, did=wallet.did, key=wallet)
    return ChainTree(tip=tip, store=store, key=wallet)


async def _play(args: argparse.Namespace, transactions: List[Any]) -> None:
    wallet = _load_wallet(args)
    store = _store(args)
    remote: Any = LocalAggregator(store)
    if args.remote:
        host, port = _parse_remote(args.remote)
        remote = Client(host, port)
        remote.identify(wallet.did, wallet)
    try:
        tree = await _open_tree(args, store, remote, wallet)
        resp = await Community(remote, store).play_transactions(tree, transactions)
    finally:
        if isinstance(remote, Client):
            await remote.close()
        store.close()
    if not resp.valid:
        raise SystemExit("Block rejected: " + "; ".join(resp.errors))
    print("Block accepted")
    print("Tip:", resp.new_tip)


def cmd_create_key(args: argparse.Namespace) -> None:
    path = _wallet_path(args)
    if os.path.exists(path) and not args.force:
        raise SystemExit(f"Wallet already exists at {path} (use --force to replace)")
    dir_name = os.path.dirname(path)
    if dir_name:
        os.makedirs(dir_name, exist_ok=True)
    wallet = Wallet.create()
    wallet.save(path)
    print("Wallet created")
    print("Address:", wallet.address)
    print("DID:", wallet.did)


def cmd_did(args: argparse.Namespace) -> None:
    print(_load_wallet(args).did)


def cmd_set_data(args: argparse.Namespace) -> None:
    asyncio.run(_play(args, [set_data_transaction(args.path, _load_value(args.value))]))


def cmd_set_owner(args: argparse.Namespace) -> None:
    asyncio.run(_play(args, [set_ownership_transaction(args.owner)]))


async def _resolve(args: argparse.Namespace) -> dict:
    did = args.did or _load_wallet(args).did
    store = _store(args)
    try:
        if args.remote:
            async with Client(*_parse_remote(args.remote)) as client:
                resp = await client.resolve(did, args.path, args.provenance)
                out = {
                    "value": resp.value,
                    "remainderPath": resp.remainder_path,
                    "touchedNodes": [n.cid for n in resp.touched_nodes],
                }
        else:
            tip = await LocalAggregator(store).get_tip(did)
            if tip is None:
                raise NotFoundError(args.path, [did])
            resp = await ChainTree(tip, store).resolve(args.path, args.provenance)
            out = {
                "value": resp.value,
                "remainderPath": resp.remainder_path,
                "touchedNodes": resp.touched_nodes,
            }
    finally:
        store.close()
    if not args.provenance:
        out.pop("touchedNodes")
    return out


def cmd_resolve(args: argparse.Namespace) -> None:
    try:
        out = asyncio.run(_resolve(args))
    except ChainTreeError as exc:
        raise SystemExit(str(exc)) from exc
    print(json.dumps(_jsonable(out), indent=2))


def cmd_tip(args: argparse.Namespace) -> None:
    did = args.did or _load_wallet(args).did
    store = _store(args)
    try:
        tip = store.get_tip(did)
    finally:
        store.close()
    if tip is None:
        raise SystemExit(f"Unknown tree: {did}")
    print(tip)


def cmd_serve(args: argparse.Namespace) -> None:
    enforce_security_requirements()
    store = _store(args)
    server = AggregatorServer(LocalAggregator(store), host=args.host, port=args.port)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        pass
    finally:
        store.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chaintree")
    p.add_argument("--data-dir", default=DEFAULT_DATA_DIR)
    p.add_argument("--wallet")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("create-key", help="create a signing key")
    s.add_argument("--force", action="store_true")
    s.set_defaults(func=cmd_create_key)

    s = sub.add_parser("did", help="print the DID for the wallet")
    s.set_defaults(func=cmd_did)

    s = sub.add_parser("set-data", help="set a value under tree/data")
    s.add_argument("path")
    s.add_argument("value", help="JSON value (plain strings allowed)")
    s.add_argument("--remote", help="aggregator host:port")
    s.set_defaults(func=cmd_set_data)

    s = sub.add_parser("set-owner", help="replace the tree owners")
    s.add_argument("owner", nargs="+")
    s.add_argument("--remote", help="aggregator host:port")
    s.set_defaults(func=cmd_set_owner)

    s = sub.add_parser("resolve", help="resolve a path")
    s.add_argument("path")
    s.add_argument("--did")
    s.add_argument("--provenance", action="store_true")
    s.add_argument("--remote", help="aggregator host:port")
    s.set_defaults(func=cmd_resolve)

    s = sub.add_parser("tip", help="print the current tip")
    s.add_argument("--did")
    s.set_defaults(func=cmd_tip)

    s = sub.add_parser("serve", help="run a local aggregator")
    s.add_argument("--host", default="127.0.0.1")
    s.add_argument("--port", type=int, default=9011)
    s.set_defaults(func=cmd_serve)

    return p


def main() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
