from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import STAGES, VISIBILITIES, Resource, User
from ..serializers import resource_to_dict
from ..storage import delete_by_url
from .auth import get_optional_user, is_admin, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["resources"])


@router.get("/resources")
def list_resources(
	stage: Optional[str] = None,
	language: Optional[str] = None,
	country: Optional[str] = None,
	search: Optional[str] = None,
	limit: int = Query(50, ge=1, le=200),
	offset: int = Query(0, ge=0),
	db: Session = Depends(get_db),
):
	q = db.query(Resource).filter(Resource.is_active.is_(True), Resource.visibility == "public")
	if stage:
		q = q.filter(Resource.stage == stage)
	if language:
		q = q.filter(Resource.language == language)
	if country:
		q = q.filter(Resource.country == country)
	if search:
		term = f"%{search.strip().lower()}%"
		q = q.filter(or_(func.lower(Resource.title).like(term), func.lower(Resource.description).like(term)))
	rows = q.order_by(Resource.created_at.desc()).offset(offset).limit(limit).all()
	return [resource_to_dict(r) for r in rows]


def _can_download(row: Resource, user: Optional[User]) -> bool:
	if row.visibility == "public":
		return True
	if row.visibility == "registered":
		return user is not None
	return is_admin(user)


@router.get("/resources/{resource_id}/download")
def download_resource(resource_id: str, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	row = db.get(Resource, resource_id)
	if row is None or not row.is_active or not row.file_url or not _can_download(row, user):
		raise HTTPException(status_code=404, detail="Resource not found")
	row.download_count = (row.download_count or 0) + 1
	db.commit()
	return RedirectResponse(url=row.file_url, status_code=302)


class ResourceIn(BaseModel):
	title: str = Field(min_length=1, max_length=256)
	description: Optional[str] = None
	stage: str
	age_range: Optional[str] = None
	language: str = "English"
	country: Optional[str] = None
	resource_type: Optional[str] = None
	file_url: Optional[str] = None
	file_type: Optional[str] = None
	file_size: Optional[int] = None
	visibility: str = "public"
	is_active: bool = True


class ResourceUpdate(BaseModel):
	title: Optional[str] = Field(default=None, min_length=1, max_length=256)
	description: Optional[str] = None
	stage: Optional[str] = None
	age_range: Optional[str] = None
	language: Optional[str] = None
	country: Optional[str] = None
	resource_type: Optional[str] = None
	file_url: Optional[str] = None
	file_type: Optional[str] = None
	file_size: Optional[int] = None
	visibility: Optional[str] = None
	is_active: Optional[bool] = None


def _validate(stage: Optional[str], visibility: Optional[str]) -> None:
	if stage is not None and stage not in STAGES:
		raise HTTPException(status_code=400, detail=f"stage must be one of {list(STAGES)}")
	if visibility is not None and visibility not in VISIBILITIES:
		raise HTTPException(status_code=400, detail=f"visibility must be one of {list(VISIBILITIES)}")


@router.post("/admin/resources", status_code=201)
def create_resource(req: ResourceIn, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	_validate(req.stage, req.visibility)
	row = Resource(**req.model_dump())
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("resource %s created by %s", row.id, admin.id)
	return resource_to_dict(row)


@router.patch("/admin/resources/{resource_id}")
def update_resource(resource_id: str, req: ResourceUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	row = db.get(Resource, resource_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Resource not found")
	updates = req.model_dump(exclude_unset=True)
	_validate(updates.get("stage"), updates.get("visibility"))
	replaced = row.file_url if updates.get("file_url", row.file_url) != row.file_url else None
	for key, value in updates.items():
		setattr(row, key, value)
	db.commit()
	delete_by_url(replaced)
	db.refresh(row)
	return resource_to_dict(row)


@router.delete("/admin/resources/{resource_id}")
def delete_resource(resource_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	row = db.get(Resource, resource_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Resource not found")
	file_url = row.file_url
	db.delete(row)
	db.commit()
	delete_by_url(file_url)
	logger.info("resource %s deleted by %s", resource_id, admin.id)
	return {"ok": True}
