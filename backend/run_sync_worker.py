#!/usr/bin/env python3
"""
Sync Worker Entry Point

Runs the periodic authoritative leaderboard re-sync.
"""
import asyncio
import logging
import os
import sys

# Add backend to path
backend_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, backend_dir)

from workers.sync_worker import main

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )
    asyncio.run(main())
