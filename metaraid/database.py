"""Job queue and track storage kept in Redis."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import redis

from metaraid.config import RedisConfig
from metaraid.fatal import fatal_on_error
from metaraid.track import FullerTrack

log = logging.getLogger(__name__)

_PENDING = "jobs_pending"
_WORKING = "jobs_working"
_DONE = "jobs_done"
_JOB_PREFIX = "jobs:"
_TRACK_PREFIX = "tracks:"

_ADD_JOBS_SCRIPT = """
local added = {}
for i, key in ipairs(ARGV) do
    local fresh = redis.call('HSETNX', key, 'status', 'pending')
    if fresh == 1 then
        redis.call('SADD', KEYS[1], key)
    end
    added[i] = fresh
end
return added
"""

_POP_JOBS_SCRIPT = """
local popped = redis.call('SPOP', KEYS[1], tonumber(ARGV[1]))
for _, job in ipairs(popped) do
    redis.call('HSET', 'jobs:' .. job, 'status', 'working')
    redis.call('SADD', KEYS[2], job)
end
return popped
"""

_RECOVER_SCRIPT = """
local stuck = redis.call('SMEMBERS', KEYS[1])
for _, job in ipairs(stuck) do
    redis.call('SADD', KEYS[2], job)
    redis.call('HSET', 'jobs:' .. job, 'status', 'pending')
end
if #stuck > 0 then
    redis.call('DEL', KEYS[1])
end
return #stuck
"""


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def new_redis(conf: RedisConfig) -> redis.Redis:
    """Connect to Redis and exit the process if it does not answer."""
    rdb = redis.Redis(
        host=conf.host,
        port=conf.port,
        db=conf.database,
        max_connections=conf.pool_size,
    )
    with fatal_on_error("Failed to connect to redis DB"):
        rdb.ping()
    return rdb


def add_jobs(rdb: Any, jobs: Iterable[str]) -> list[bool]:
    """Queue artist ids not seen before; report which ones were new."""
    jobs = list(jobs)
    if not jobs:
        return []
    keys = [f"{_JOB_PREFIX}{job}" for job in jobs]
    results = rdb.eval(_ADD_JOBS_SCRIPT, 1, _PENDING, *keys)
    added = [int(result) == 1 for result in results]
    for job, was_added in zip(jobs, added):
        if was_added:
            log.debug("job added to queue job=%s", job)
        else:
            log.debug("job already exists job=%s", job)
    return added


def ensure_seed_job(rdb: Any, seed_task: str) -> bool:
    """Queue the seed artist when the pending queue is empty."""
    if int(rdb.scard(_PENDING)) == 0:
        log.info("job queue is empty, adding seed task seed=%s", seed_task)
        add_jobs(rdb, [seed_task])
        return True
    log.info("job queue is not empty, no seed job needed")
    return False


def pop_jobs(rdb: Any, count: int) -> list[str]:
    """Take up to ``count`` pending jobs and mark them as being worked on."""
    results = rdb.eval(_POP_JOBS_SCRIPT, 2, _PENDING, _WORKING, count)
    return [_text(job).removeprefix(_JOB_PREFIX) for job in results or []]


def recover_in_progress_tasks(rdb: Any) -> int:
    """Put every job left in the working set back into the pending set."""
    recovered = int(rdb.eval(_RECOVER_SCRIPT, 2, _WORKING, _PENDING))
    if recovered == 0:
        log.info("no jobs to recover")
    else:
        log.info("recovered jobs count=%d", recovered)
    return recovered


def mark_job_done(rdb: Any, job: str) -> None:
    """Move a job from working to done in one transaction."""
    pipe = rdb.pipeline(transaction=True)
    pipe.srem(_WORKING, job)
    pipe.sadd(_DONE, job)
    pipe.hset(f"{_JOB_PREFIX}{job}", "status", "done")
    pipe.execute()
    log.info("Marked task as done task=%s", job)


def insert_tracks(rdb: Any, tracks: Iterable[FullerTrack]) -> None:
    """Store each track under ``tracks:<id>``."""
    pipe = rdb.pipeline(transaction=False)
    for track in tracks:
        key = f"{_TRACK_PREFIX}{track.track['id']}"
        try:
            data = track.serialize()
        except (TypeError, ValueError) as error:
            raise ValueError(f"failed to serialize data: {error}") from error
        pipe.set(key, data)
    pipe.execute()