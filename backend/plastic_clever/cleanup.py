from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Dict

from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession
from .progression import migrate_stuck_schools
from .settings import settings

logger = logging.getLogger(__name__)


def purge_stale_sessions(db: Session, retention_days: int | None = None) -> int:
	days = retention_days if retention_days is not None else settings.session_retention_days
	threshold = datetime.utcnow() - timedelta(days=days)
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	db.commit()
	return res.rowcount or 0


def run_maintenance(db: Session) -> Dict[str, Any]:
	"""One maintenance pass: idle session purge, then stuck round repair."""
	purged = purge_stale_sessions(db)
	stuck = migrate_stuck_schools(db)
	logger.info("maintenance: purged %d idle sessions, moved %d stuck schools", purged, stuck["fixed"])
	return {"sessions_purged": purged, "schools_fixed": stuck["fixed"], "schools": stuck["schools"]}
