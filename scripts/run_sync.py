#!/usr/bin/env python3
"""
Run offline storage synchronization.

Usage:
    python scripts/run_sync.py              # Run once
    python scripts/run_sync.py --daemon     # Run as daemon
    python scripts/run_sync.py --daemon 5   # Run daemon with 5 min interval
"""

import asyncio
import logging
import sys

from replica import ClientSettings, ReplicaClient, SyncManager


async def run_once():
    async with ReplicaClient(ClientSettings.from_env()) as client:
        result = await client.sync()
        return result.to_dict()


async def run_daemon(interval_minutes: int):
    async with ReplicaClient(ClientSettings.from_env()) as client:
        manager = SyncManager(client, auto_sync=True, interval_seconds=interval_minutes * 60)
        await manager.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await manager.stop()


def main():
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) > 1 and sys.argv[1] == "--daemon":
        interval = int(sys.argv[2]) if len(sys.argv) > 2 else 10
        print(f"Starting sync daemon (interval: {interval} minutes)")
        asyncio.run(run_daemon(interval))
    else:
        print("Running single sync...")
        result = asyncio.run(run_once())
        print(f"Result: {result}")


if __name__ == "__main__":
    main()
