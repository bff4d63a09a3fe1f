from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import Notification, User
from ..serializers import notification_to_dict
from .auth import get_current_user

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def list_notifications(unread_only: bool = False, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	q = db.query(Notification).filter(Notification.user_id == user.id)
	if unread_only:
		q = q.filter(Notification.is_read.is_(False))
	rows = q.order_by(Notification.created_at.desc()).limit(100).all()
	return [notification_to_dict(n) for n in rows]


@router.patch("/{notification_id}/read")
def mark_read(notification_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = db.get(Notification, notification_id)
	if row is None or row.user_id != user.id:
		raise HTTPException(status_code=404, detail="Notification not found")
	row.is_read = True
	db.commit()
	return notification_to_dict(row)


@router.post("/read-all")
def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	updated = (
		db.query(Notification)
		.filter(Notification.user_id == user.id, Notification.is_read.is_(False))
		.update({Notification.is_read: True}, synchronize_session=False)
	)
	db.commit()
	return {"updated": updated}
