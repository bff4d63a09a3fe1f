"""Local-directory object store for uploaded documents.

Objects live under ``settings.upload_dir`` as ``{uuid}{ext}`` with a small
JSON sidecar recording owner, visibility and content type.
"""
from __future__ import annotations
import json
import logging
import mimetypes
import os
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from fastapi import UploadFile

from .settings import settings

logger = logging.getLogger(__name__)

IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp", "image/heic")
PDF_TYPES = ("application/pdf",)
VIDEO_TYPES = ("video/mp4", "video/quicktime", "video/webm")
OFFICE_TYPES = (
	"application/msword",
	"application/vnd.openxmlformats-officedocument.wordprocessingml.document",
	"application/vnd.ms-excel",
	"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
	"application/vnd.ms-powerpoint",
	"application/vnd.openxmlformats-officedocument.presentationml.presentation",
)
EVIDENCE_TYPES = IMAGE_TYPES + PDF_TYPES + VIDEO_TYPES + OFFICE_TYPES
CONSENT_TYPES = IMAGE_TYPES + PDF_TYPES

_CHUNK = 1024 * 1024


class StorageError(Exception):
	def __init__(self, message: str, status_code: int = 400) -> None:
		super().__init__(message)
		self.status_code = status_code


class ObjectNotFound(StorageError, LookupError):
	def __init__(self, key: str) -> None:
		super().__init__(f"Object {key} not found", status_code=404)


@dataclass
class ObjectRef:
	key: str
	url: str
	name: str
	type: str
	size: int

	def as_dict(self) -> Dict[str, Any]:
		return asdict(self)


def upload_root() -> Path:
	root = Path(settings.upload_dir).resolve()
	root.mkdir(parents=True, exist_ok=True)
	return root


def object_url(key: str) -> str:
	return f"/objects/{key}"


def key_from_url(url: str) -> Optional[str]:
	if not url or "/objects/" not in url:
		return None
	return url.rsplit("/objects/", 1)[1] or None


def _resolve(key: str) -> Path:
	root = upload_root()
	if not key or "/" in key or "\\" in key or key.startswith(".") or key.endswith(".meta.json"):
		raise ObjectNotFound(key)
	path = (root / key).resolve()
	if path.parent != root:
		raise ObjectNotFound(key)
	return path


def _meta_path(path: Path) -> Path:
	return path.with_name(path.name + ".meta.json")


def _content_type(upload: UploadFile) -> str:
	ctype = (upload.content_type or "").split(";")[0].strip().lower()
	if not ctype or ctype == "application/octet-stream":
		guessed, _ = mimetypes.guess_type(upload.filename or "")
		ctype = guessed or "application/octet-stream"
	return ctype


async def save_upload(
	upload: UploadFile,
	owner_id: str,
	visibility: str = "private",
	allowed_types: Optional[Iterable[str]] = None,
) -> ObjectRef:
	"""Stream an upload to disk, enforcing type and size limits."""
	ctype = _content_type(upload)
	if allowed_types is not None and ctype not in set(allowed_types):
		raise StorageError(f"Unsupported file type: {ctype}", status_code=415)

	name = os.path.basename(upload.filename or "upload")
	ext = Path(name).suffix.lower() or (mimetypes.guess_extension(ctype) or "")
	key = f"{uuid.uuid4().hex}{ext}"
	path = _resolve(key)

	size = 0
	try:
		with open(path, "wb") as fh:
			while True:
				chunk = await upload.read(_CHUNK)
				if not chunk:
					break
				size += len(chunk)
				if size > settings.max_upload_bytes:
					raise StorageError(
						f"File exceeds maximum size of {settings.max_upload_bytes} bytes", status_code=413
					)
				fh.write(chunk)
	except StorageError:
		path.unlink(missing_ok=True)
		raise

	meta = {"owner_id": owner_id, "visibility": visibility, "type": ctype, "name": name, "size": size}
	_meta_path(path).write_text(json.dumps(meta))
	logger.info("stored object %s (%s, %d bytes) for %s", key, ctype, size, owner_id)
	return ObjectRef(key=key, url=object_url(key), name=name, type=ctype, size=size)


def object_meta(key: str) -> Dict[str, Any]:
	path = _resolve(key)
	if not path.is_file():
		raise ObjectNotFound(key)
	meta_file = _meta_path(path)
	if meta_file.is_file():
		return json.loads(meta_file.read_text())
	return {"visibility": "public", "type": mimetypes.guess_type(key)[0] or "application/octet-stream", "name": key}


def open_object(key: str) -> Path:
	path = _resolve(key)
	if not path.is_file():
		raise ObjectNotFound(key)
	return path


def delete_object(key: str) -> bool:
	path = _resolve(key)
	if not path.is_file():
		return False
	path.unlink()
	_meta_path(path).unlink(missing_ok=True)
	logger.info("deleted object %s", key)
	return True


def delete_by_url(url: Optional[str]) -> bool:
	"""Remove the stored object behind an ``/objects/`` URL; other URLs are left alone."""
	key = key_from_url(url or "")
	if key is None:
		return False
	try:
		return delete_object(key)
	except ObjectNotFound:
		logger.warning("not deleting unrecognised object url %s", url)
		return False


def delete_file_list(files: Optional[Iterable[Dict[str, Any]]]) -> int:
	return sum(1 for f in files or [] if delete_by_url(f.get("url")))
