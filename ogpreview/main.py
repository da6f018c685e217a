import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI

from ogpreview.config.database import Base, engine
from ogpreview.config.settings import settings
from ogpreview.modules.rate_limiter.service import rate_limiter_service
from ogpreview.modules.scraper.router import router as scrape_router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    import ogpreview.modules.persistence.models  # noqa: F401  (registers ORM models)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables synced")

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        rate_limiter_service.sweep,
        IntervalTrigger(minutes=settings.rate_limit_sweep_minutes),
        id="rate_limit_sweep",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started, rate-limit sweep every %d minutes", settings.rate_limit_sweep_minutes)
    yield
    scheduler.shutdown(wait=False)
    await engine.dispose()


app = FastAPI(title="OG Preview", lifespan=lifespan)

app.include_router(scrape_router, prefix="/api/scrape", tags=["scrape"])


@app.get("/health")
async def health():
    return {"status": "ok"}
