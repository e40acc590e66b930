#!/usr/bin/env python3
"""
Leaderboard process supervisor
==============================

Runs the API, the re-sync loop and the push event workers as child
processes of one container. A child that exits is restarted after
RESTART_DELAY seconds unless it has crashed MAX_RESTARTS times in a row
without staying up for STABLE_AFTER seconds.

Usage:
    python run_workers.py                     # api + sync + 1 lockup worker
    python run_workers.py --only sync         # re-sync loop only
    python run_workers.py --lockup-workers 3  # api + sync + 3 lockup workers
    python run_workers.py --no-api            # background processes only
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger('supervisor')

PROCESS_KINDS = ('api', 'sync', 'lockups')
RESTART_DELAY = 5.0
MAX_RESTARTS = 5
STABLE_AFTER = 60.0


@dataclass
class ProcessSpec:
    name: str
    argv: List[str]
    env: Dict[str, str] = field(default_factory=dict)
    restart: bool = True


def plan_processes(
    only: Optional[str] = None,
    lockup_workers: int = 1,
    api_port: int = 8000,
    include_api: bool = True,
) -> List[ProcessSpec]:
    """
    Child processes for one container.

    Exactly one sync process is planned: two authoritative re-syncs
    writing the same rows would race each other.
    """
    kinds = PROCESS_KINDS if only in (None, 'all') else (only,)
    python = sys.executable or 'python'
    specs = []

    if 'api' in kinds and include_api:
        specs.append(ProcessSpec(
            name='api',
            argv=[python, '-m', 'uvicorn', 'main:app', '--host', '0.0.0.0', '--port', str(api_port)],
        ))
    if 'sync' in kinds:
        specs.append(ProcessSpec(name='sync', argv=[python, 'run_sync_worker.py']))
    if 'lockups' in kinds:
        for worker_id in range(1, max(lockup_workers, 0) + 1):
            specs.append(ProcessSpec(
                name=f'lockups-{worker_id}',
                argv=[python, 'run_lockup_worker.py'],
                env={'WORKER_ID': str(worker_id)},
            ))
    return specs


class RestartPolicy:
    """Counts consecutive short-lived runs per process"""

    def __init__(self, max_restarts: int = MAX_RESTARTS, stable_after: float = STABLE_AFTER):
        self.max_restarts = max_restarts
        self.stable_after = stable_after
        self.crashes: Dict[str, int] = {}

    def record_exit(self, name: str, uptime: float) -> bool:
        """Register an exit; returns True if the process should be started again"""
        if uptime >= self.stable_after:
            self.crashes[name] = 0
        else:
            self.crashes[name] = self.crashes.get(name, 0) + 1
        return self.crashes[name] <= self.max_restarts


class Supervisor:
    def __init__(self, specs: List[ProcessSpec], policy: Optional[RestartPolicy] = None,
                 restart_delay: float = RESTART_DELAY, cwd: Optional[Path] = None):
        self.specs = specs
        self.policy = policy or RestartPolicy()
        self.restart_delay = restart_delay
        self.cwd = cwd or Path(__file__).parent
        self.children: Dict[str, asyncio.subprocess.Process] = {}
        self._stopping = asyncio.Event()

    async def _spawn(self, child: ProcessSpec) -> Optional[asyncio.subprocess.Process]:
        env = {**os.environ, **child.env}
        try:
            proc = await asyncio.create_subprocess_exec(
                *child.argv,
                cwd=str(self.cwd),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Could not start {child.name}: {e}")
            return None
        logger.info(f"Started {child.name} (pid {proc.pid})")
        self.children[child.name] = proc
        return proc

    @staticmethod
    async def _relay(name: str, proc: asyncio.subprocess.Process):
        while True:
            line = await proc.stdout.readline()
            if not line:
                return
            sys.stdout.write(f"[{name}] {line.decode(errors='replace')}")
            sys.stdout.flush()

    async def _supervise(self, child: ProcessSpec):
        while not self._stopping.is_set():
            proc = await self._spawn(child)
            if proc is None:
                return
            started = time.monotonic()
            await self._relay(child.name, proc)
            code = await proc.wait()
            if self._stopping.is_set():
                return

            uptime = time.monotonic() - started
            logger.warning(f"{child.name} exited with code {code} after {uptime:.0f}s")
            if not child.restart or not self.policy.record_exit(child.name, uptime):
                logger.error(f"{child.name} will not be restarted")
                return
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.restart_delay)
            except asyncio.TimeoutError:
                pass

    def request_stop(self):
        logger.info("Stop requested")
        self._stopping.set()
        for name, proc in self.children.items():
            if proc.returncode is None:
                proc.terminate()

    async def _reap(self, timeout: float = 10.0):
        for name, proc in self.children.items():
            if proc.returncode is not None:
                continue
            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Killing {name} (pid {proc.pid})")
                proc.kill()

    async def run(self):
        if not self.specs:
            logger.error("Nothing to run")
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)

        logger.info(f"Supervising {', '.join(s.name for s in self.specs)}")
        await asyncio.gather(*(self._supervise(child) for child in self.specs))
        await self._reap()
        logger.info("All processes stopped")


def main():
    parser = argparse.ArgumentParser(description='Leaderboard process supervisor')
    parser.add_argument('--only', choices=[*PROCESS_KINDS, 'all'], help='Run a single process kind')
    parser.add_argument('--lockup-workers', type=int, default=1, help='Push event worker count (default: 1)')
    parser.add_argument('--port', type=int, default=int(os.getenv('PORT', '8000')), help='API port')
    parser.add_argument('--no-api', action='store_true', help='Skip the API server')
    args = parser.parse_args()

    load_dotenv(Path(__file__).parent.parent / '.env')
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    specs = plan_processes(args.only, args.lockup_workers, args.port, include_api=not args.no_api)
    asyncio.run(Supervisor(specs).run())


if __name__ == '__main__':
    main()
