import asyncio

from docinsight.config.settings import Settings
from docinsight.logging.logger import Log
from docinsight.offline.connection import close_pool, ensure_schema, init_pool
from docinsight.orchestrator.orchestrator import build_orchestrator
from docinsight.worker.drain_worker import DrainWorker


async def run(settings: Settings) -> None:
    """Initialize pool -> build dependencies -> recover jobs -> run the drain loop."""
    uses_postgres = settings.job_store.lower() == "postgres"
    if uses_postgres:
        await init_pool(settings)
        await ensure_schema()

    try:
        orchestrator = build_orchestrator(settings)
        await orchestrator.start()
        worker = DrainWorker(orchestrator, settings)
        await worker.run()
    finally:
        if uses_postgres:
            await close_pool()


def main() -> None:
    """Entry point."""
    settings = Settings()
    Log.configure(settings.log_level)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        Log.info("Shutting down")


if __name__ == "__main__":
    main()
