import os
import json
import time
import asyncio
import tempfile
import contextlib
from pathlib import Path
from collections import namedtuple

from . import dev_modes
from .logsetup import get_logger
from .utils import now_ts

logr = get_logger('cache')

# Bump whenever the shape of any persisted metric changes.
FILE_SCHEMA_VERSION = 5

class Snapshot(namedtuple('Snapshot', ['schema_version', 'last_updated_at', 'data'])):

    def to_json(self):
        return json.dumps({'schemaVersion': self.schema_version,
                           'lastUpdatedAt': self.last_updated_at,
                           'data': self.data}, indent=2).encode('utf-8')

    @classmethod
    def from_json(cls, blob):
        obj = json.loads(blob)
        return cls(obj['schemaVersion'], int(obj['lastUpdatedAt']), obj['data'])


class FileStorage:
    """Blobs by file name under one directory.  Writes are atomic (temp file + rename)."""

    def __init__(self, base_dir):
        self.base_dir = Path(base_dir)
        if not self.base_dir.exists():
            logr.info(f"Creating data directory {self.base_dir}")
            self.base_dir.mkdir(parents=True, exist_ok=True)

    def read(self, name):
        path = self.base_dir / name
        if not path.exists():
            return None
        return path.read_bytes()

    def write(self, name, blob):
        fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.base_dir / name)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_path)
            raise


class MetricsCacheManager:
    """
    Owns the committed snapshot of one metric.

    Readers call `get_current()`, which never blocks and never fetches.  `refresh()`
    runs the compute function; while one refresh is running any other call is a
    logged no-op.  A successful refresh swaps in a new snapshot and persists it, a
    failed one is logged and the previous snapshot stays in place.

    `start()` loads the persisted snapshot, refreshes right away if it is missing
    or older than `interval`, then refreshes every `interval` seconds.
    """

    def __init__(self, name, compute_fn, default, storage, interval=0,
                 schema_version=FILE_SCHEMA_VERSION, clock=now_ts, skip_initial_update=None):

        logr.info(f"Initializing {name} with interval {interval} seconds")

        self.name = name
        self.filename = f"{name}.json"
        self.compute_fn = compute_fn
        self.storage = storage
        self.interval = interval
        self.schema_version = schema_version
        self.clock = clock

        if skip_initial_update is None:
            skip_initial_update = dev_modes.SKIP_INITIAL_UPDATE
        self.skip_initial_update = skip_initial_update

        self.snapshot = Snapshot(schema_version, 0, default)

        self.lock = asyncio.Lock()
        self.ticker = None
        self.tasks = set()

    def get_current(self):
        return self.snapshot.data, self.snapshot.last_updated_at

    @property
    def is_refreshing(self):
        return self.lock.locked()

    def data_age(self):
        return self.clock() - self.snapshot.last_updated_at

    def needs_refresh(self):
        if self.interval <= 0:
            return False
        if self.snapshot.last_updated_at == 0:
            return True
        return self.data_age() >= self.interval

    def load(self):

        try:
            blob = self.storage.read(self.filename)
        except OSError as e:
            logr.error(f"Error loading {self.filename}: {e}")
            return False

        if blob is None:
            return False

        try:
            snapshot = Snapshot.from_json(blob)
        except (ValueError, KeyError, TypeError) as e:
            logr.error(f"Unreadable snapshot in {self.filename}, ignoring it: {e!r}")
            return False

        if snapshot.schema_version != self.schema_version:
            logr.warning(f"File schema version mismatch in {self.filename}: {snapshot.schema_version} (expected {self.schema_version})")
            return False

        self.snapshot = snapshot
        return True

    def persist(self):
        try:
            self.storage.write(self.filename, self.snapshot.to_json())
        except Exception:
            logr.exception(f"Error saving {self.filename}")

    async def refresh(self):

        if self.lock.locked():
            logr.info(f"Update already in progress for {self.name}, skipping this update")
            return False

        async with self.lock:

            logr.info(f"Starting update for {self.name}")
            start = time.perf_counter()

            try:
                data = await self.compute_fn()
            except Exception:
                logr.exception(f"Error updating data for {self.name}, keeping snapshot from {self.snapshot.last_updated_at}")
                return False

            self.snapshot = Snapshot(self.schema_version, self.clock(), data)
            self.persist()

            logr.info(f"Completed update for {self.name} [{time.perf_counter() - start:.2f}s]")
            return True

    def spawn_refresh(self):
        task = asyncio.create_task(self.refresh())
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def tick(self):
        while True:
            await asyncio.sleep(self.interval)
            self.spawn_refresh()

    async def start(self):

        logr.info(f"Loading data for {self.name}")
        loaded = self.load()

        if self.needs_refresh():
            reason = "No cached data found" if not loaded else f"Cached data is stale ({self.data_age()}s old)"
            if self.skip_initial_update:
                logr.info(f"{reason}, but SKIP_INITIAL_UPDATE is set")
            else:
                logr.info(f"{reason}, will update")
                self.spawn_refresh()
        elif loaded:
            logr.info(f"Using cached data ({self.data_age()}s old)")

        if self.interval > 0:
            logr.info(f"Setting up periodic updates for {self.name} with interval {self.interval} seconds")
            self.ticker = asyncio.create_task(self.tick())

    async def join(self):
        """Wait for the refreshes spawned so far."""
        if self.tasks:
            await asyncio.gather(*list(self.tasks), return_exceptions=True)

    async def stop(self):
        pending = list(self.tasks)
        if self.ticker:
            pending.append(self.ticker)
            self.ticker = None

        for task in pending:
            task.cancel()

        await asyncio.gather(*pending, return_exceptions=True)
