"""Application root wiring one instance of every collaborator together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from .clock import Clock
from .config import PROJECT_ROOT, Settings
from .errors import TaskflowError
from .remote import RemoteStore, RestRemoteStore, SQLiteRemoteStore
from .services.task_parser import TaskParser
from .storage import LocalStorage
from .tasks.store import TaskStore
from .tracking.focus import FocusTracker
from .tracking.sessions import TimeSessionStore
from .tracking.sync import SyncManager, SyncOptions

logger = logging.getLogger(__name__)


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    return (base / p).resolve()


def build_remote_store(settings: Settings) -> RemoteStore:
    """Create the remote backend selected by ``settings.remote_backend``."""

    if settings.remote_backend == "rest":
        if settings.rest_url is None or settings.rest_anon_key is None:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY are required for the rest backend")
        token = settings.rest_access_token
        return RestRemoteStore(
            str(settings.rest_url),
            settings.rest_anon_key.get_secret_value(),
            token.get_secret_value() if token else None,
            timeout=settings.remote_timeout,
        )
    return SQLiteRemoteStore(
        _resolve_under(PROJECT_ROOT, settings.sqlite_database_path),
        user_id=settings.local_user_id,
    )


@dataclass(slots=True)
class AppContext:
    """Holds the process-wide stores; routers reach it through ``app.state``."""

    settings: Settings
    clock: Clock
    remote: RemoteStore
    storage: LocalStorage
    tasks: TaskStore
    sync: SyncManager
    sessions: TimeSessionStore
    focus: FocusTracker
    parser: TaskParser

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        clock: Clock | None = None,
        remote: RemoteStore | None = None,
        storage: LocalStorage | None = None,
        parser: TaskParser | None = None,
    ) -> "AppContext":
        clock = clock or Clock()
        remote = remote or build_remote_store(settings)
        storage = storage or LocalStorage(_resolve_under(PROJECT_ROOT, settings.storage_dir))
        timeout = settings.remote_timeout

        sync = SyncManager(
            remote,
            storage,
            clock=clock,
            options=SyncOptions.from_settings(settings),
            timeout=timeout,
        )
        sessions = TimeSessionStore(remote, sync, storage, clock=clock, timeout=timeout)
        return cls(
            settings=settings,
            clock=clock,
            remote=remote,
            storage=storage,
            tasks=TaskStore(
                remote,
                clock=clock,
                grace_seconds=settings.hard_delete_grace_seconds,
                timeout=timeout,
            ),
            sync=sync,
            sessions=sessions,
            focus=FocusTracker(sessions, storage, clock=clock),
            parser=parser or TaskParser(settings),
        )

    async def start(self) -> None:
        """Open the remote store, drain the sync queue and rehydrate state."""

        initialize = getattr(self.remote, "initialize", None)
        if initialize is not None:
            await initialize()

        await self.sync.initialize()
        self.sessions.restore()
        self.focus.restore()
        await self.tasks.load()
        try:
            await self.sessions.load_today()
        except TaskflowError as exc:
            logger.warning(f"Could not load today's sessions: {exc}")
        logger.info("✓ Taskflow context started")

    async def shutdown(self) -> None:
        """Cancel timers and pending deletes, then close the remote store."""

        await self.sessions.shutdown()
        await self.sync.shutdown()
        await self.tasks.shutdown()
        try:
            await asyncio.wait_for(self.remote.close(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Remote store close timed out after 5s")


__all__ = ["AppContext", "build_remote_store"]
