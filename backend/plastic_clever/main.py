import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from .db import Base, SessionLocal, engine, ensure_schema
from .cleanup import run_maintenance
from .logging_setup import setup_logging
from .settings import settings
from .routers import health
from .routers import auth
from .routers import schools
from .routers import team
from .routers import evidence
from .routers import audits
from .routers import promises
from .routers import certificates
from .routers import resources
from .routers import admin
from .routers import notifications
from .routers import uploads

logger = logging.getLogger(__name__)

app = FastAPI(title="Plastic Clever Schools API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origin_list,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(schools.router)
app.include_router(team.router)
app.include_router(evidence.router)
app.include_router(audits.router)
app.include_router(promises.router)
app.include_router(certificates.router)
app.include_router(resources.router)
app.include_router(admin.router)
app.include_router(notifications.router)
app.include_router(uploads.router)


@app.get("/", include_in_schema=False)
async def redirect_root_to_docs():
	return RedirectResponse(url="/docs")


def _maintenance_once() -> None:
	db = SessionLocal()
	try:
		run_maintenance(db)
	except Exception:
		db.rollback()
		logger.exception("maintenance run failed")
	finally:
		db.close()


async def _maintenance_watcher():
	# Run once at startup, then every interval
	while True:
		await asyncio.to_thread(_maintenance_once)
		await asyncio.sleep(settings.maintenance_interval_seconds)


@app.on_event("startup")
async def startup_event():
	setup_logging(settings.log_level)
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	applied = ensure_schema()
	if applied:
		logger.info("added columns: %s", ", ".join(applied))
	db = SessionLocal()
	try:
		auth.ensure_seed_admin(db)
	finally:
		db.close()
	asyncio.create_task(_maintenance_watcher())
