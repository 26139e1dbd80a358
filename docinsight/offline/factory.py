from docinsight.config.settings import Settings
from docinsight.offline.memory_store import InMemoryJobStore
from docinsight.offline.offline_queue import OfflineQueue
from docinsight.offline.postgres_store import PostgresJobStore
from docinsight.offline.store_base import BaseJobStore


class OfflineQueueFactory:
    """Creates the configured job store and the queue around it."""

    @classmethod
    def create_store(cls, settings: Settings) -> BaseJobStore:
        store = settings.job_store.lower()
        if store == "memory":
            return InMemoryJobStore()
        if store == "postgres":
            return PostgresJobStore()
        raise ValueError(f"Unknown job store '{store}'. Choose from: ['memory', 'postgres']")

    @classmethod
    def create(cls, settings: Settings, store: BaseJobStore | None = None) -> OfflineQueue:
        return OfflineQueue(
            store if store is not None else cls.create_store(settings),
            capacity=settings.offline_queue_capacity,
            max_attempts=settings.max_job_attempts,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
        )
