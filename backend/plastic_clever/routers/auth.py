from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import User, AuthSession

router = APIRouter(prefix="/api/auth", tags=["auth"])

logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

MIN_PASSWORD_LENGTH = 8


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class UserOut(BaseModel):
	id: str
	email: str
	first_name: Optional[str] = None
	last_name: Optional[str] = None
	role: str
	is_admin: bool
	preferred_language: str = "en"

	model_config = {"from_attributes": True}


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode("utf-8")
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
	user = db.query(User).filter(User.email == email.strip().lower()).first()
	if user and user.password_hash and verify_password(password, user.password_hash):
		return user
	return None


def is_admin(user: Optional[User]) -> bool:
	return bool(user and (user.is_admin or user.role == "admin"))


def ensure_seed_admin(db: Session) -> Optional[User]:
	email = settings.seed_admin_email
	password = settings.seed_admin_password
	if not email or not password:
		return None
	email = email.strip().lower()
	user = db.query(User).filter(User.email == email).first()
	if user is None:
		user = User(email=email, password_hash=hash_password(password), role="admin", is_admin=True, first_name="Admin")
		db.add(user)
		db.commit()
		logger.info("seeded admin user %s", email)
	return user


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	"""Return the JWT expiry timestamp, capped within datetime bounds."""
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	expire = _resolve_expiry(expires_delta)
	to_encode.update({"exp": expire})
	encoded_jwt = jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
	return encoded_jwt


def issue_token(db: Session, user: User) -> Token:
	# New session id (jti) persisted server-side so logout can revoke it
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.id, "jti": session_id})
	db.merge(AuthSession(session_id=session_id, user_id=user.id))
	user.last_active_at = datetime.utcnow()
	db.commit()
	return Token(access_token=access_token)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	return issue_token(db, user)


def _decode(token: str) -> tuple[str, str]:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		raise credentials_exception
	user_id: str | None = payload.get("sub")
	jti: str | None = payload.get("jti")
	if user_id is None or jti is None:
		raise credentials_exception
	return user_id, jti


def _user_for_token(db: Session, token: str) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	user_id, jti = _decode(token)
	# Session row must still exist; deleting it revokes the token
	row = db.get(AuthSession, jti)
	if not row or row.user_id != user_id:
		raise credentials_exception
	user = db.get(User, user_id)
	if user is None:
		raise credentials_exception
	row.last_activity_at = datetime.utcnow()
	db.commit()
	return user


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	return _user_for_token(db, token)


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme), db: Session = Depends(get_db)) -> Optional[User]:
	if not token:
		return None
	try:
		return _user_for_token(db, token)
	except HTTPException:
		return None


def require_admin(user: User = Depends(get_current_user)) -> User:
	if not is_admin(user):
		raise HTTPException(status_code=403, detail="Admin access required")
	return user


def require_admin_or_partner(user: User = Depends(get_current_user)) -> User:
	if not (is_admin(user) or user.role == "partner"):
		raise HTTPException(status_code=403, detail="Admin or partner access required")
	return user


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
	return user


@router.post("/logout")
async def logout(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
	_, jti = _decode(token)
	row = db.get(AuthSession, jti)
	if row is not None:
		db.delete(row)
		db.commit()
	return {"ok": True}


class RegisterRequest(BaseModel):
	email: str
	password: str
	first_name: Optional[str] = None
	last_name: Optional[str] = None
	preferred_language: Optional[str] = None


@router.post("/register", status_code=201, response_model=UserOut)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	email = (req.email or "").strip().lower()
	password = req.password or ""
	if not email or "@" not in email:
		raise HTTPException(status_code=400, detail="a valid email is required")
	if len(password) < MIN_PASSWORD_LENGTH:
		raise HTTPException(status_code=400, detail=f"password must be at least {MIN_PASSWORD_LENGTH} characters")
	existing = db.query(User).filter(User.email == email).first()
	if existing:
		raise HTTPException(status_code=409, detail="email already registered")
	row = User(
		email=email,
		password_hash=hash_password(password),
		first_name=(req.first_name or "").strip() or None,
		last_name=(req.last_name or "").strip() or None,
		preferred_language=req.preferred_language or "en",
		role="teacher",
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("registered user %s", row.id)
	return row
