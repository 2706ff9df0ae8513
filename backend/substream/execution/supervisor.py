"""
Process supervisor.

Tracks every OS process spawned by any pipeline so the service can stop
them all on shutdown.

Design rules:
- Registration is a no-op for processes without a pid
- Each process deregisters itself when its exit is observed (no polling)
- terminate_all() is SIGTERM → SIGKILL escalation, scheduled per process
  on the event loop so the caller never blocks
- The tracked set is cleared eagerly by terminate_all()
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ManagedProcess:
    """
    One supervised OS process.

    The supervisor owns the registry entry; the spawning component owns
    the process's stdio streams.
    """

    process: asyncio.subprocess.Process
    name: str
    job_id: Optional[str] = None
    killed: bool = False
    exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def alive(self) -> bool:
        """Not exited, not signalled, and not already killed by us."""
        return self.process.returncode is None and not self.killed

    def terminate(self) -> None:
        """Request a graceful stop (SIGTERM)."""
        if self.process.returncode is not None:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        """Force stop (SIGKILL). Marks the process as killed by us."""
        if self.process.returncode is not None:
            return
        self.killed = True
        try:
            self.process.kill()
        except ProcessLookupError:
            pass

    def __str__(self) -> str:
        prefix = f"[{self.job_id}] " if self.job_id else ""
        return f"{prefix}{self.name} (PID {self.pid})"


class ProcessSupervisor:
    """
    Registry of live child processes shared by all pipelines.
    """

    def __init__(self, grace_period: float = 2.0):
        """
        Initialize supervisor.

        Args:
            grace_period: Seconds between SIGTERM and SIGKILL in terminate_all()
        """
        self.grace_period = grace_period
        self._processes: Set[ManagedProcess] = set()
        self._lock = threading.Lock()
        self._watchers: Set[asyncio.Task] = set()

    @property
    def tracked_count(self) -> int:
        with self._lock:
            return len(self._processes)

    def register(
        self,
        process: asyncio.subprocess.Process,
        name: str,
        job_id: Optional[str] = None,
    ) -> Optional[ManagedProcess]:
        """
        Track a process until it exits.

        Must be called from the event loop that spawned the process.

        Returns:
            The ManagedProcess wrapper, or None if the process has no pid
        """
        if process is None or not getattr(process, "pid", None):
            return None

        managed = ManagedProcess(process=process, name=name, job_id=job_id)
        with self._lock:
            self._processes.add(managed)

        watcher = asyncio.get_running_loop().create_task(self._watch(managed))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

        logger.debug(f"[Supervisor] Registered {managed}")
        return managed

    async def _watch(self, managed: ManagedProcess) -> None:
        try:
            returncode = await managed.process.wait()
        finally:
            with self._lock:
                self._processes.discard(managed)
            managed.exited.set()
        logger.debug(f"[Supervisor] {managed} exited with code {returncode}")

    def kill(self, managed: ManagedProcess) -> None:
        """Immediately force-stop one process."""
        if managed.alive:
            logger.info(f"[Supervisor] Killing {managed}")
            managed.kill()

    def terminate_all(self) -> List[ManagedProcess]:
        """
        Stop every tracked process.

        Sends SIGTERM now and schedules SIGKILL after grace_period for each
        process still alive at that point. Does not wait for exits.

        Returns:
            The processes that were signalled
        """
        with self._lock:
            processes = list(self._processes)
            self._processes.clear()

        loop = asyncio.get_running_loop()
        signalled = []
        for managed in processes:
            if not managed.alive:
                continue
            try:
                logger.info(f"[Supervisor] Sending SIGTERM to {managed}")
                managed.terminate()
                loop.call_later(self.grace_period, self._escalate, managed)
                signalled.append(managed)
            except OSError as e:
                logger.error(f"[Supervisor] Failed to terminate {managed}: {e}")

        return signalled

    def _escalate(self, managed: ManagedProcess) -> None:
        if managed.alive:
            logger.warning(f"[Supervisor] {managed} did not terminate, sending SIGKILL")
            managed.kill()

    async def wait_closed(self, processes: Iterable[ManagedProcess], timeout: float) -> bool:
        """
        Wait for processes to exit.

        Returns:
            True if all exited before the timeout
        """
        pending = [asyncio.ensure_future(m.process.wait()) for m in processes]
        if not pending:
            return True
        done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for future in still_pending:
            future.cancel()
        return not still_pending
