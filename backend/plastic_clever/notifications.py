from __future__ import annotations
import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .models import NOTIFICATION_TYPES, Notification, SchoolUser

logger = logging.getLogger(__name__)


def notify_user(
	db: Session,
	user_id: str,
	type: str,
	title: str,
	message: str,
	*,
	school_id: Optional[str] = None,
	action_url: Optional[str] = None,
) -> Notification:
	if type not in NOTIFICATION_TYPES:
		raise ValueError(f"Unknown notification type: {type}")
	row = Notification(
		user_id=user_id,
		school_id=school_id,
		type=type,
		title=title,
		message=message,
		action_url=action_url,
	)
	db.add(row)
	return row


def notify_school(db: Session, school_id: str, type: str, title: str, message: str, *, action_url: Optional[str] = None) -> int:
	"""Queue one notification per verified member of the school. Caller commits."""
	members: Iterable[SchoolUser] = (
		db.query(SchoolUser)
		.filter(SchoolUser.school_id == school_id, SchoolUser.role != "pending_teacher")
		.all()
	)
	count = 0
	for member in members:
		notify_user(db, member.user_id, type, title, message, school_id=school_id, action_url=action_url)
		count += 1
	logger.debug("queued %d %s notifications for school %s", count, type, school_id)
	return count
