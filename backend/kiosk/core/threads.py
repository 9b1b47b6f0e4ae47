"""Worker-thread shim for the blocking local store and backup calls."""

import asyncio


async def run_blocking(fn, *args, **kwargs):
    """Run a blocking call on a worker thread so the event loop stays free."""
    return await asyncio.to_thread(fn, *args, **kwargs)
