"""
Synchronous wrapper functions for reservoirhub.

This module provides blocking versions of the async entry points for callers
that render pages synchronously (templating, static builds, scripts). Under
the hood they run the async code with asyncio.

Usage:
    # Instead of this async code:
    async with UpstreamClient() as client:
        snapshot = await Prefetcher(DirectFetcher(client, config)).prefetch_all()

    # Use this sync code:
    from reservoirhub.sync import prefetch_snapshot_sync
    snapshot = prefetch_snapshot_sync()
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union, get_args, get_origin

R = TypeVar("R")


class AsyncSyncBridge:
    """Runs the async entry points from blocking code."""

    @staticmethod
    def run_async(
        async_fn: Callable[..., Awaitable[R]],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        client_class: Optional[type] = None,
    ) -> R:
        """Run ``async_fn`` to completion on a fresh event loop.

        When ``client_class`` is given and ``async_fn`` takes a ``client``
        argument the caller did not pass, an instance is opened for the call
        and closed afterwards.

        Raises:
            RuntimeError: If an event loop is already running in this thread
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            raise RuntimeError(
                f"{async_fn.__name__} was called synchronously from inside an "
                "existing asyncio event loop; await the async version instead"
            )

        call_kwargs = dict(kwargs or {})
        wants_client = (
            client_class is not None
            and "client" not in call_kwargs
            and "client" in inspect.signature(async_fn).parameters
        )

        async def _main() -> R:
            if not wants_client:
                return await async_fn(*args, **call_kwargs)
            async with client_class() as client:
                return await async_fn(*args, client=client, **call_kwargs)

        return asyncio.run(_main())

    @staticmethod
    def extract_client_class(annotation: Any) -> Optional[type]:
        """The client type behind a ``client: Optional[UpstreamClient]`` parameter."""
        if get_origin(annotation) is Union:
            annotation = next(
                (arg for arg in get_args(annotation) if arg is not type(None)), None
            )
        return annotation if isinstance(annotation, type) else None


def prefetch_snapshot_sync(
    config: Optional[Any] = None,
    via_api: bool = False,
    policies: Optional[Mapping[str, Any]] = None,
) -> "FallbackSnapshot":
    """Synchronous version of prefetch_snapshot.

    Fetch every source once and return the fallback snapshot.

    Args:
        config: HubConfig; read from the environment if omitted
        via_api: Go through this service's ``/api/*`` endpoints instead of
                 calling upstream directly
        policies: Freshness policy table

    Examples:
        >>> snapshot = prefetch_snapshot_sync()
        >>> snapshot.to_payload()["lake-level"]["level"]
        546.12
    """
    from .policy import FRESHNESS_POLICIES
    from .prefetch import prefetch_snapshot

    return AsyncSyncBridge.run_async(
        prefetch_snapshot,
        kwargs={
            "config": config,
            "via_api": via_api,
            "policies": policies or FRESHNESS_POLICIES,
        },
    )


def fetch_source_sync(key: str, config: Optional[Any] = None) -> "FetchResult":
    """Synchronous version of fetch_with_fallback for a single source.

    Args:
        key: Source key ('lake-level', 'outflow' or 'weather')
        config: HubConfig; read from the environment if omitted

    Returns:
        FetchResult with the bundle (possibly the fallback) and any error
    """
    from .client import UpstreamClient
    from .config import HubConfig
    from .fallback import fetch_with_fallback

    hub_config = config or HubConfig.from_env()

    async def _fetch(client: Optional[UpstreamClient] = None) -> "FetchResult":
        return await fetch_with_fallback(key, client, hub_config)

    return AsyncSyncBridge.run_async(_fetch, client_class=UpstreamClient)
