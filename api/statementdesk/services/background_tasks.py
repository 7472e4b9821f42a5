# api/statementdesk/services/background_tasks.py
"""
Supervised registry for detached statement builds.

Every submitted build gets a task handle (id + Future) on a bounded
ThreadPoolExecutor, so fan-out never exceeds the worker count the ledger can
take, failures are recorded instead of vanishing, and callers (tests, the
shutdown hook) can wait for outstanding work.
"""
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait as futures_wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .. import settings

log = logging.getLogger("background_tasks")

TASK_PENDING = "pending"
TASK_RUNNING = "running"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"
TASK_CANCELLED = "cancelled"


@dataclass
class TaskStatus:
    id: str
    name: str
    status: str
    submitted_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class TaskManager:
    def __init__(self, max_workers: int = 4, history_ttl: timedelta = timedelta(hours=1)):
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="statement-gen")
        self._tasks: Dict[str, TaskStatus] = {}
        self._futures: Dict[str, Future] = {}
        self._lock = threading.RLock()
        self._history_ttl = history_ttl

    def submit(self, func: Callable, *args: Any, name: Optional[str] = None, **kwargs: Any) -> str:
        task_id = str(uuid.uuid4())
        with self._lock:
            self._tasks[task_id] = TaskStatus(
                id=task_id,
                name=name or getattr(func, "__name__", "task"),
                status=TASK_PENDING,
                submitted_at=datetime.utcnow(),
            )
            self._futures[task_id] = self._executor.submit(self._run_task, task_id, func, args, kwargs)
            self._cleanup_old_tasks()
        log.info("task %s (%s) submitted", task_id, self._tasks[task_id].name)
        return task_id

    def _run_task(self, task_id: str, func: Callable, args: tuple, kwargs: dict) -> Any:
        with self._lock:
            task = self._tasks[task_id]
            task.status = TASK_RUNNING
            task.started_at = datetime.utcnow()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            with self._lock:
                task.status = TASK_FAILED
                task.error = f"{e.__class__.__name__}: {e}"
                task.completed_at = datetime.utcnow()
            log.exception("task %s (%s) failed", task_id, task.name)
            raise
        with self._lock:
            task.status = TASK_COMPLETED
            task.completed_at = datetime.utcnow()
        log.info("task %s (%s) completed", task_id, task.name)
        return result

    def get_status(self, task_id: str) -> Optional[TaskStatus]:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            return TaskStatus(**vars(task))

    def list_tasks(self) -> List[TaskStatus]:
        with self._lock:
            return [TaskStatus(**vars(t)) for t in self._tasks.values()]

    def cancel(self, task_id: str) -> bool:
        """Only queued tasks can be cancelled; a running build always finishes."""
        with self._lock:
            future = self._futures.get(task_id)
            if future is None or not future.cancel():
                return False
            task = self._tasks[task_id]
            task.status = TASK_CANCELLED
            task.completed_at = datetime.utcnow()
        log.info("task %s cancelled", task_id)
        return True

    def wait(self, task_id: str, timeout: Optional[float] = None) -> Optional[TaskStatus]:
        with self._lock:
            future = self._futures.get(task_id)
        if future is not None:
            futures_wait([future], timeout=timeout)
        return self.get_status(task_id)

    def wait_all(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            futures = list(self._futures.values())
        futures_wait(futures, timeout=timeout)

    def _cleanup_old_tasks(self) -> None:
        """Drop finished tasks older than the TTL. Caller holds the lock."""
        now = datetime.utcnow()
        expired = [
            tid for tid, t in self._tasks.items()
            if t.completed_at is not None and (now - t.completed_at) > self._history_ttl
        ]
        for tid in expired:
            del self._tasks[tid]
            self._futures.pop(tid, None)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        log.info("task manager shut down")


_task_manager: Optional[TaskManager] = None
_task_manager_lock = threading.Lock()


def get_task_manager() -> TaskManager:
    global _task_manager
    if _task_manager is None:
        with _task_manager_lock:
            if _task_manager is None:
                _task_manager = TaskManager(max_workers=settings.GENERATION_MAX_WORKERS)
    return _task_manager
