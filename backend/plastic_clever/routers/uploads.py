from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse

from ..models import VISIBILITIES, User
from ..storage import EVIDENCE_TYPES, StorageError, object_meta, open_object, save_upload
from .auth import get_current_user, get_optional_user, is_admin

router = APIRouter(tags=["objects"])


@router.post("/api/objects/upload", status_code=201)
async def upload_object(
	file: UploadFile = File(...),
	visibility: str = Form("registered"),
	user: User = Depends(get_current_user),
):
	if visibility not in VISIBILITIES:
		raise HTTPException(status_code=400, detail=f"visibility must be one of {list(VISIBILITIES)}")
	try:
		ref = await save_upload(file, user.id, visibility, EVIDENCE_TYPES)
	except StorageError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
	return ref.as_dict()


@router.get("/objects/{key}")
def get_object(key: str, user: Optional[User] = Depends(get_optional_user)):
	try:
		meta = object_meta(key)
		path = open_object(key)
	except StorageError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
	visibility = meta.get("visibility")
	if visibility != "public":
		allowed = user is not None and (
			visibility == "registered" or user.id == meta.get("owner_id") or is_admin(user)
		)
		if not allowed:
			raise HTTPException(status_code=404, detail=f"Object {key} not found")
	return FileResponse(path, media_type=meta.get("type"), filename=meta.get("name"))
