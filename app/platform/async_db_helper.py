"""
Async Database Helper for Celery Tasks

Provides async database session management for use in synchronous Celery tasks
when they need to drive the async ranking engine.
"""

from contextlib import asynccontextmanager

from app.platform.db.session import SessionLocal


@asynccontextmanager
async def get_async_db():
    """
    Get async database session for use in sync Celery tasks.

    Usage in Celery task:
        import asyncio
        async def _run():
            async with get_async_db() as db:
                engine = RankingEngine(db)
                await engine.recompute(campaign_id)

        asyncio.run(_run())
    """
    async with SessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
