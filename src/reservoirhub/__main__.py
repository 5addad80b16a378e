"""
Command line entry point.

    python -m reservoirhub serve [--host 0.0.0.0] [--port 3000]
    python -m reservoirhub snapshot [--via-api]
    python -m reservoirhub watch [--duration 600]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .client import UpstreamClient
from .config import HubConfig
from .exceptions import PolicyError
from .fetchers import ApiFetcher
from .models import SourceState
from .policy import FRESHNESS_POLICIES, load_policy_file
from .prefetch import Prefetcher, prefetch_snapshot
from .revalidation import RevalidationController
from .view import build_view_model

logger = logging.getLogger("reservoirhub")


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="reservoirhub")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    ap.add_argument("--policy-file", help="JSON file with freshness policy overrides")
    sub = ap.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the /api/* HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3000)

    snap = sub.add_parser("snapshot", help="Print a prefetched snapshot as JSON")
    snap.add_argument(
        "--via-api",
        action="store_true",
        help="Fetch through the running service instead of upstream",
    )

    watch = sub.add_parser("watch", help="Poll the service and log state changes")
    watch.add_argument(
        "--duration", type=float, default=None, help="Stop after N seconds"
    )
    return ap


def _log_state(key: str, state: SourceState) -> None:
    if state.is_validating:
        logger.info(f"{key}: validating")
        return
    values = state.data.values() if state.data is not None else None
    logger.info(f"{key}: error={state.error.value if state.error else None} {values}")


async def _watch(config: HubConfig, policies, duration: Optional[float]) -> None:
    async with UpstreamClient(user_agent=config.user_agent) as client:
        fetcher = ApiFetcher(client, config.base_url)
        snapshot = await Prefetcher(fetcher, policies).prefetch_all()
        controller = RevalidationController(fetcher, policies)
        controller.subscribe(_log_state)
        controller.start(snapshot)
        try:
            if duration is None:
                await controller.run()
            else:
                await asyncio.wait_for(controller.run(), duration)
        except asyncio.TimeoutError:
            pass
        finally:
            await controller.aclose()
        print(json.dumps(build_view_model(controller), indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = HubConfig.from_env()
    try:
        policies = (
            load_policy_file(args.policy_file) if args.policy_file else FRESHNESS_POLICIES
        )
    except PolicyError as e:
        logger.error(str(e))
        return 2

    if args.command == "serve":
        import uvicorn

        from .api import create_app

        uvicorn.run(create_app(config, policies), host=args.host, port=args.port)
        return 0

    if args.command == "snapshot":
        snapshot = prefetch_snapshot.sync(
            config=config, via_api=args.via_api, policies=policies
        )
        print(json.dumps(snapshot.to_payload(), indent=2))
        return 0

    try:
        asyncio.run(_watch(config, policies, args.duration))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
