"""Request-scoped release of temp files and provider file handles.

Every resource acquired while handling a request (a buffered upload on
local disk, a file stored with the AI provider) is registered here as soon
as it exists. ``run()`` releases all of them exactly once, on every exit
path, and never raises: deletion failures are logged and swallowed so they
cannot mask the error being reported to the caller.

Usage:
    async with CleanupCoordinator(provider) as cleanup:
        parsed = await parser.parse(request, cleanup)
        report = await dispatcher.generate(parsed.user_prompt, parsed.files, cleanup)
"""
import asyncio
import logging
import os
from typing import TYPE_CHECKING, List, Optional, Set

from .schemas import UploadedFileDescriptor

if TYPE_CHECKING:
    from reportgen.generation.base import GenerationProvider, ProviderFileHandle

logger = logging.getLogger(__name__)


class CleanupCoordinator:
    """Tracks and releases the resources of a single request.

    Attributes:
        provider: Provider used to delete remote file handles (may be None
            when the request never talks to a provider).
    """

    def __init__(self, provider: Optional["GenerationProvider"] = None) -> None:
        self.provider = provider
        self._temp_files: List[UploadedFileDescriptor] = []
        self._provider_files: List["ProviderFileHandle"] = []
        self._done = False
        self._late_deletes: Set[asyncio.Task] = set()
        self.deleted_temp_files = 0
        self.deleted_provider_files = 0

    @property
    def done(self) -> bool:
        return self._done

    def track_temp_file(self, descriptor: UploadedFileDescriptor) -> None:
        self._temp_files.append(descriptor)

    def track_provider_file(self, handle: "ProviderFileHandle") -> None:
        if self._done:
            # acquired after cleanup already ran; nothing else will release it
            logger.warning(f"Provider file {handle.remote_id} registered after cleanup; deleting now")
            task = asyncio.ensure_future(self._delete_provider_file(handle))
            self._late_deletes.add(task)
            task.add_done_callback(self._late_deletes.discard)
            return
        self._provider_files.append(handle)

    async def _delete_provider_file(self, handle: "ProviderFileHandle") -> bool:
        if self.provider is None:
            logger.warning(f"No provider available to delete file {handle.remote_id}")
            return False
        try:
            await self.provider.delete_file(handle)
            return True
        except Exception as e:
            logger.warning(f"Failed to delete provider file {handle.remote_id}: {e}")
            return False

    def _delete_temp_file(self, descriptor: UploadedFileDescriptor) -> bool:
        path = descriptor.temporary_path
        try:
            if os.path.exists(path):
                os.remove(path)
                return True
        except OSError as e:
            logger.warning(f"Failed to delete local file {path}: {e}")
        return False

    async def run(self) -> None:
        """Release everything that was tracked. Subsequent calls are no-ops."""
        if self._done:
            return
        self._done = True

        if self._provider_files:
            logger.info(f"Deleting {len(self._provider_files)} file(s) from the AI provider")
            results = await asyncio.gather(
                *(self._delete_provider_file(h) for h in self._provider_files)
            )
            self.deleted_provider_files = sum(1 for ok in results if ok)

        if self._temp_files:
            logger.info(f"Deleting {len(self._temp_files)} local temp file(s)")
            self.deleted_temp_files = sum(
                1 for d in self._temp_files if self._delete_temp_file(d)
            )

    async def __aenter__(self) -> "CleanupCoordinator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        # Shielded so a client disconnect (task cancellation) still releases
        # provider handles and temp files.
        await asyncio.shield(self.run())
        return False
