#!/usr/bin/env python3
"""
Keyed asynchronous asset cache with prefetch for slide assets.

Each slide index owns at most one cache entry. The first request starts the
load and registers it before yielding to the event loop, so every later
request for the same slide (whether a blocking resolve or a fire-and-forget
prefetch) shares that single in-flight load. Failures are terminal for the
slide: they are logged once and resolve to "no visual object" so playback
can continue with a blank slide.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, List, Optional

from .slides import AssetKind, Slide
from .collaborators import AssetHandle, AssetLoader

logger = logging.getLogger(__name__)


class AssetStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class AssetCacheEntry:
    """State of one slide's asset."""
    status: AssetStatus
    task: Optional[asyncio.Task] = None
    handle: Optional[AssetHandle] = None
    error: Optional[str] = None
    prefetched: bool = False
    requested: bool = False


class AssetCache:
    """Loads, memoizes and releases slide assets."""

    def __init__(self, slides: List[Slide], loader: AssetLoader, asset_root: str = ""):
        """
        Initialize the cache.

        Args:
            slides: Slides in playback order; cache keys are their indices
            loader: Asset-loading collaborator
            asset_root: Directory prepended to each slide's asset_ref
        """
        self.slides = slides
        self.loader = loader
        self.asset_root = Path(asset_root) if asset_root else None
        self.load_count = 0
        self._entries: Dict[int, AssetCacheEntry] = {}

    def status(self, index: int) -> Optional[AssetStatus]:
        entry = self._entries.get(index)
        return entry.status if entry else None

    def asset_url(self, slide: Slide) -> str:
        if self.asset_root is None:
            return slide.asset_ref
        return str(self.asset_root / slide.asset_ref)

    async def resolve(self, index: int) -> Optional[AssetHandle]:
        """
        Return the asset for a slide, loading it if needed.

        Args:
            index: Slide index

        Returns:
            The loaded handle, or None for out-of-range slides, slides
            without an asset, and failed or cancelled loads
        """
        if not 0 <= index < len(self.slides) or not self.slides[index].asset_ref:
            return None

        entry = self._entries.get(index) or self._start_load(index)
        entry.requested = True

        if entry.status is AssetStatus.READY:
            return entry.handle
        if entry.status is AssetStatus.FAILED:
            return None

        task = entry.task
        try:
            # Shielded so a cancelled waiter does not abort the shared load
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                logger.debug(f"Load for slide {index} was cancelled")
                return None
            raise

    def prefetch(self, index: int) -> Optional[asyncio.Task]:
        """
        Start loading a slide's asset without waiting for it.

        Must be called with a running event loop.

        Returns:
            The in-flight load task, or None if nothing needed loading
        """
        if not 0 <= index < len(self.slides) or not self.slides[index].asset_ref:
            return None

        entry = self._entries.get(index)
        if entry is not None:
            return entry.task if entry.status is AssetStatus.PENDING else None

        entry = self._start_load(index)
        entry.prefetched = True
        logger.debug(f"Prefetching asset for slide {index}")
        return entry.task

    def release(self, index: int):
        """
        Dispose a slide's loaded asset and forget it.

        A disposed handle is never handed out again; a later visit to the
        slide loads the asset afresh.
        """
        entry = self._entries.get(index)
        if entry is None or entry.status is not AssetStatus.READY:
            return

        del self._entries[index]
        if entry.handle is not None:
            _dispose(entry.handle, index)

    def cancel_prefetches(self) -> int:
        """
        Cancel prefetch loads nobody is waiting on yet (best effort).

        Returns:
            Number of loads cancelled
        """
        cancelled = 0
        for index, entry in list(self._entries.items()):
            if (entry.status is AssetStatus.PENDING and entry.prefetched
                    and not entry.requested and not entry.task.done()):
                entry.task.cancel()
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending prefetch(es)")
        return cancelled

    def clear(self):
        """Cancel every outstanding load and dispose every loaded asset."""
        for index, entry in list(self._entries.items()):
            if entry.status is AssetStatus.PENDING and not entry.task.done():
                entry.task.cancel()
            elif entry.status is AssetStatus.READY:
                self.release(index)
        self._entries = {}

    def _start_load(self, index: int) -> AssetCacheEntry:
        entry = AssetCacheEntry(status=AssetStatus.PENDING)
        self._entries[index] = entry
        entry.task = asyncio.ensure_future(self._load(index, entry))
        return entry

    async def _load(self, index: int, entry: AssetCacheEntry) -> Optional[AssetHandle]:
        slide = self.slides[index]
        url = self.asset_url(slide)
        self.load_count += 1

        try:
            handle = await self._dispatch(slide.asset_kind, url)
        except asyncio.CancelledError:
            if self._entries.get(index) is entry:
                del self._entries[index]
            raise
        except Exception as e:
            logger.error(f"Failed to load asset {url} for slide {index}: {e}")
            entry.status = AssetStatus.FAILED
            entry.error = str(e)
            return None

        entry.status = AssetStatus.READY
        entry.handle = handle
        logger.debug(f"Loaded asset for slide {index}: {url}")
        return handle

    async def _dispatch(self, kind: AssetKind, url: str) -> AssetHandle:
        if kind is AssetKind.MESH:
            return await self.loader.load_mesh(url)
        elif kind is AssetKind.POINT_CLOUD:
            return await self.loader.load_point_cloud(url)
        elif kind is AssetKind.IMAGE:
            return await self.loader.load_image(url)
        raise ValueError(f"Unsupported asset kind: {kind}")


def _dispose(handle: AssetHandle, index: int):
    try:
        handle.dispose()
    except Exception as e:
        logger.error(f"Failed to dispose asset for slide {index}: {e}")
