import asyncio
import logging
import random
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from config import SimulationTiming
from mock_data import generate_mock_devices, generate_mock_updates
from state import CANCELLED, COMPLETED, FAILED, Session, SessionStore, utcnow

logger = logging.getLogger(__name__)

DRIVER_SCAN    = "driver-scan"
DRIVER_UPDATE  = "driver-update"
WINDOWS_UPDATE = "windows-update"

PHASES = [
    "Initializing scan...",
    "Detecting hardware...",
    "Analyzing drivers...",
    "Checking for updates...",
    "Generating report...",
    "Finalizing results...",
]

UPDATE_RESULTS = [
    {"device": "Intel HD Graphics", "result": "Success", "action": "Updated to version 27.20.100.8681"},
    {"device": "Realtek Audio", "result": "Success", "action": "Updated to version 6.0.9167.1"},
]

# Début des résultats par type d'opération

def _execution_time_ms(session: Session) -> int:
    return round(session.elapsed_seconds() * 1000)


def driver_scan_results(session: Session, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    devices = generate_mock_devices(rng)
    problems = sum(1 for d in devices if d["hasProblem"])
    return {
        "devices": devices,
        "systemInfo": {
            "totalDevices": len(devices),
            "problemDevices": problems,
            "workingDevices": len(devices) - problems,
            "scanCompleted": utcnow().isoformat(),
        },
        "executionTime": _execution_time_ms(session),
    }


def windows_update_results(session: Session, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    updates = generate_mock_updates(rng)
    return {
        "updates": updates,
        "totalCount": len(updates),
        "totalSize": sum(u["sizeMB"] for u in updates),
    }


def driver_update_results(session: Session, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    return {
        "devicesUpdated": generate_mock_devices(rng)[:3],
        "updateResults": [dict(r) for r in UPDATE_RESULTS],
        "executionTime": _execution_time_ms(session),
    }


RESULT_BUILDERS: Dict[str, Callable[..., Dict[str, Any]]] = {
    DRIVER_SCAN: driver_scan_results,
    WINDOWS_UPDATE: windows_update_results,
    DRIVER_UPDATE: driver_update_results,
}

OPERATIONS = frozenset(RESULT_BUILDERS)

## Fin des résultats


class ProgressSimulator:
    """
    Walks one session through PHASES and finalizes it.

    Each tick re-reads the session from the store: a missing or terminal
    session (cancelled, reaped) ends the simulation without writing.
    """

    def __init__(self, store: SessionStore, session_id: str, operation: str,
                 timing: SimulationTiming, rng: Optional[random.Random] = None):
        if operation not in RESULT_BUILDERS:
            raise ValueError(f"Unknown operation: {operation}")
        self.store = store
        self.session_id = session_id
        self.operation = operation
        self.timing = timing
        self.rng = rng
        self.phase_index = 0

    def next_interval(self) -> float:
        rng = self.rng or random
        return rng.uniform(self.timing.tick_min, self.timing.tick_max)

    def step(self) -> bool:
        """Apply one tick. Returns False once there is nothing left to do."""
        session = self.store.get(self.session_id)
        if session is None or session.is_terminal:
            return False

        if self.phase_index < len(PHASES):
            session.status = PHASES[self.phase_index]
            session.progress = round(self.phase_index / len(PHASES) * 90)
            self.phase_index += 1
            self.store.set(self.session_id, session)
            return True

        try:
            results = RESULT_BUILDERS[self.operation](session, self.rng)
        except Exception as ex:
            logger.exception(f"Operation {self.operation} failed for session {self.session_id}")
            session.status = FAILED
            session.progress = 100
            session.success = False
            session.error = str(ex)
            self.store.set(self.session_id, session)
            return False

        session.status = COMPLETED
        session.progress = 100
        session.success = True
        session.results = results
        self.store.set(self.session_id, session)
        logger.info(f"Operation {self.operation} completed for session {self.session_id}")
        return False

    async def run(self) -> None:
        await asyncio.sleep(self.timing.start_delay)
        if self.session_id not in self.store:
            return
        logger.info(f"Starting {self.operation} operation for session {self.session_id}")
        while True:
            await asyncio.sleep(self.next_interval())
            if not self.step():
                return


class SessionScheduler:
    """One asyncio task per session id, cancellable by id."""

    def __init__(self, store: SessionStore, timing: SimulationTiming,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.timing = timing
        self.rng = rng
        self._tasks: Dict[str, asyncio.Task] = {}

    def start(self, session_id: str, operation: str) -> Optional[asyncio.Task]:
        """Must be called from the running event loop."""
        if self.is_running(session_id):
            return None
        simulator = ProgressSimulator(self.store, session_id, operation, self.timing, self.rng)
        task = asyncio.get_running_loop().create_task(simulator.run(), name=f"session-{session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(lambda t: self._on_done(session_id, t))
        return task

    async def launch(self, session_id: str, operation: str) -> None:
        # entry point for BackgroundTasks, runs once the response is sent
        self.start(session_id, operation)

    def _on_done(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Simulator for session {session_id} crashed: {task.exception()!r}")

    def is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    def cancel(self, session_id: str) -> bool:
        task = self._tasks.pop(session_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    @property
    def active(self) -> List[str]:
        return [sid for sid, t in self._tasks.items() if not t.done()]

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def cancel_session(store: SessionStore, scheduler: SessionScheduler, session_id: str) -> Optional[Session]:
    """Flip a live session to CANCELLED and stop its task. Terminal sessions are left as they are."""
    session = store.get(session_id)
    if session is None:
        return None
    if not session.is_terminal:
        session.status = CANCELLED
        store.set(session_id, session)
        scheduler.cancel(session_id)
        logger.info(f"Operation cancelled for session {session_id}")
    return session


class SessionReaper:
    """Periodically drops sessions older than timing.session_max_age, whatever their status."""

    def __init__(self, store: SessionStore, scheduler: SessionScheduler, timing: SimulationTiming):
        self.store = store
        self.scheduler = scheduler
        self.timing = timing
        self._task: Optional[asyncio.Task] = None

    def sweep(self, now=None) -> int:
        max_age = timedelta(seconds=self.timing.session_max_age)
        removed = 0
        for session_id in self.store.expired(max_age, now):
            self.scheduler.cancel(session_id)
            if self.store.delete(session_id):
                removed += 1
                logger.info(f"Cleaned up old session {session_id}")
        return removed

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.timing.reaper_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Session cleanup failed")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run(), name="session-reaper")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
