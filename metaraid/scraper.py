"""Worker pool that drains the Redis job queue through Spotify clients."""

from __future__ import annotations

import enum
import logging
import queue
import threading
from collections.abc import Callable, Iterable
from typing import Any

from metaraid.config import ScraperConfig
from metaraid.database import (
    add_jobs,
    ensure_seed_job,
    insert_tracks,
    mark_job_done,
    pop_jobs,
    recover_in_progress_tasks,
)
from metaraid.fatal import die, fatal_on_error
from metaraid.spotify import ClientStatus, MaxRetryDurationExceeded, get_artists

log = logging.getLogger(__name__)


class WorkerStatus(enum.Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    COLD_KEY = "cold_key"
    STOPPED = "stopped"


class Worker:
    """Takes artist ids from a queue and stores their tracks."""

    def __init__(self, client: Any, worker_id: str, rdb: Any, *, poll_interval: float = 1.0,
                 stats_interval: float = 60.0,
                 on_fatal: Callable[[int], None] | None = None) -> None:
        self.client = client
        self.id = worker_id
        self.rdb = rdb
        self.status = WorkerStatus.INITIALIZED
        self.threads: list[threading.Thread] = []
        self.cancel = threading.Event()
        self._log = logging.LoggerAdapter(log, {"worker": worker_id})
        self._poll_interval = poll_interval
        self._stats_interval = stats_interval
        self._on_fatal = on_fatal
        self._lock = threading.Lock()
        self._requests = 0
        self._tracks = 0

    def start(self, jobs: queue.Queue) -> None:
        """Begin working on jobs from the queue in background threads."""
        if self.status is not WorkerStatus.INITIALIZED:
            log.warning("Can not start worker, incorrect status status=%s", self.status.value)
            return
        self._log.info("worker id=%s Starting", self.id)
        self.status = WorkerStatus.RUNNING
        self.threads = [threading.Thread(target=self._report_stats, daemon=True),
                        threading.Thread(target=self._run, args=(jobs,), daemon=True)]
        for thread in self.threads:
            thread.start()

    def stop(self) -> None:
        self._log.info("worker id=%s stopping", self.id)
        self.cancel.set()
        self.status = WorkerStatus.STOPPED

    def _report_stats(self) -> None:
        while not self.cancel.wait(self._stats_interval):
            with self._lock:
                requests, tracks = self._requests, self._tracks
                self._requests = self._tracks = 0
            self._log.info("worker id=%s Stats per minute request=%d tracks=%d",
                           self.id, requests, tracks)

    def _run(self, jobs: queue.Queue) -> None:
        try:
            while not self.cancel.is_set():
                try:
                    job = jobs.get(timeout=self._poll_interval)
                except queue.Empty:
                    continue
                if not self._process(job, jobs):
                    return
            self._log.info("worker id=%s stopped worker", self.id)
        except SystemExit as exit_:
            self.status = WorkerStatus.STOPPED
            self.cancel.set()
            if self._on_fatal is not None:
                self._on_fatal(exit_.code if isinstance(exit_.code, int) else 1)

    def _process(self, job: str, jobs: queue.Queue) -> bool:
        self._log.info("worker id=%s working job=%s", self.id, job)
        try:
            tracks, request_count = self.client.fetch_artist_tracks(job)
        except MaxRetryDurationExceeded as error:
            self._log.warning("worker id=%s Max retry duration exceeded, cold key", self.id)
            self.status = WorkerStatus.COLD_KEY
            self.client.update_status(error)
            jobs.put(job)
            self.stop()
            return False
        except Exception as error:  # noqa: BLE001
            die(error, "Failed to fetch artist tracks")
        self._log.info("worker id=%s tracks fetched artist=%s count=%d request_count=%d",
                       self.id, job, len(tracks), request_count)
        with fatal_on_error("Failed to add tracks"):
            insert_tracks(self.rdb, tracks)
        with fatal_on_error("Failed to add tasks"):
            add_jobs(self.rdb, get_artists(tracks, job))
        with self._lock:
            self._requests += request_count
            self._tracks += len(tracks)
        try:
            mark_job_done(self.rdb, job)
        except Exception:  # noqa: BLE001
            self._log.error("worker id=%s Failed to mark job as done job=%s", self.id, job)
        return True


class Scraper:
    """Feeds pending jobs to one worker per usable client."""

    def __init__(self, clients: Iterable[Any], rdb: Any, conf: ScraperConfig, *,
                 poll_interval: float = 1.0, idle_wait: float = 3.0,
                 manage_interval: float = 5.0, stats_interval: float = 60.0) -> None:
        self.clients = list(clients)
        self.rdb = rdb
        self.config = conf
        self.jobs: queue.Queue[str] = queue.Queue(maxsize=20)
        self.exit_code = 0
        self._poll_interval = poll_interval
        self._idle_wait = idle_wait
        self._manage_interval = manage_interval
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._threads: list[threading.Thread] = []
        self.workers: list[Worker] = []
        for index, client in enumerate(self.clients):
            if client.status is ClientStatus.COLD:
                log.warning("Client is not ready for use name=%s status=%s cooldown=%s",
                            client.name, client.status, client.cooldown)
                continue
            self.workers.append(Worker(client, str(index), rdb, poll_interval=poll_interval,
                                       stats_interval=stats_interval, on_fatal=self._fatal))

    def _fatal(self, code: int) -> None:
        self.exit_code = code
        self._done.set()

    def start(self) -> None:
        """Recover stale jobs, seed the queue and start all workers."""
        if not self.workers:
            log.error("Can not start scraper with 0 workers")
            self._done.set()
            return
        log.info("Starting scraper")
        with fatal_on_error():
            recover_in_progress_tasks(self.rdb)
        with fatal_on_error():
            ensure_seed_job(self.rdb, self.config.seed_artist_id)
        self._threads = [threading.Thread(target=self._fetch_jobs, daemon=True),
                         threading.Thread(target=self._manage_workers, daemon=True)]
        for thread in self._threads:
            thread.start()
        for worker in self.workers:
            worker.start(self.jobs)

    def stop(self) -> None:
        """Cancel every thread and wait for them to finish."""
        log.info("Stopping scraper")
        self._cancel.set()
        for worker in self.workers:
            worker.cancel.set()
        for thread in self._threads + [t for w in self.workers for t in w.threads]:
            thread.join()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait until the scraper asks to be shut down; True once it has."""
        return self._done.wait(timeout)

    def _manage_workers(self) -> None:
        while not self._cancel.wait(self._manage_interval):
            stopped = sum(w.status is WorkerStatus.STOPPED for w in self.workers)
            running = sum(w.status is WorkerStatus.RUNNING for w in self.workers)
            log.info("worker pool state stopped=%d running=%d", stopped, running)
            if running == 0:
                self._done.set()
        log.info("stopped workerManager")

    def _fetch_jobs(self) -> None:
        while not self._cancel.is_set():
            if self.jobs.qsize() > 10:
                self._cancel.wait(self._poll_interval)
                continue
            try:
                tasks = pop_jobs(self.rdb, 5)
            except Exception as error:  # noqa: BLE001
                log.warning("failed to fetch tasks error=%s", error)
                tasks = []
            if not tasks:
                log.info("no jobs to fetch, waiting sec=%s", self._idle_wait)
                self._cancel.wait(self._idle_wait)
            else:
                log.info("adding tracks to task queue count=%d", len(tasks))
            for task in tasks:
                while not self._cancel.is_set():
                    try:
                        self.jobs.put(task, timeout=self._poll_interval)
                        break
                    except queue.Full:
                        continue
        log.info("stopped job fetcher")