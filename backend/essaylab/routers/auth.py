import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Dict

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db
from ..errors import ForbiddenError
from ..models import AuthUser, AuthSession

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

ROLES = ("student", "admin")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str
	role: str = "student"


def _truncate_for_bcrypt(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_truncate_for_bcrypt(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_truncate_for_bcrypt(plain_password), hashed_password)


def _ensure_seed_user(db: Session) -> None:
	username = settings.seed_username
	password = settings.seed_password_plain
	if not username or not password:
		return
	if db.get(AuthUser, username) is not None:
		return
	db.add(AuthUser(username=username, password_hash=hash_password(password), role="admin", requests_limit=settings.default_requests_limit))
	db.commit()
	logger.info("Seeded admin user %s", username)


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
	_ensure_seed_user(db)
	user_row = db.get(AuthUser, username)
	if user_row and verify_password(password, user_row.password_hash):
		return User(username=user_row.username, role=user_row.role)
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
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
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.username, "jti": session_id})
	try:
		db.add(AuthSession(session_id=session_id, username=user.username))
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		logger.exception("Could not persist session for %s", user.username)
		raise HTTPException(status_code=500, detail="Could not start session")
	return Token(access_token=access_token)


def _resolve_token(token: str, db: Session) -> Optional[User]:
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		return None
	username: str | None = payload.get("sub")
	jti: str | None = payload.get("jti")
	if username is None or jti is None:
		return None
	try:
		row = db.get(AuthSession, jti)
		if not row or row.username != username:
			return None
		user_row = db.get(AuthUser, username)
		if user_row is None:
			return None
		row.last_activity_at = datetime.utcnow()
		db.commit()
	except SQLAlchemyError:
		# On DB errors, fail closed
		db.rollback()
		logger.exception("Session lookup failed")
		return None
	return User(username=username, role=user_row.role)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	user = _resolve_token(token, db)
	if user is None:
		raise HTTPException(status_code=401, detail="Could not validate credentials")
	return user


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme), db: Session = Depends(get_db)) -> Optional[User]:
	if not token:
		return None
	return _resolve_token(token, db)


def require_role(role: str) -> Callable[..., User]:
	if role not in ROLES:
		raise ValueError(f"unknown role {role!r}")

	def _dependency(user: User = Depends(get_current_user)) -> User:
		if user.role != role:
			raise ForbiddenError(f"Forbidden - {role.capitalize()} only")
		return user

	return _dependency


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


@router.post("/logout")
async def logout(token: str = Depends(oauth2_scheme), user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, bool]:
	payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	row = db.get(AuthSession, payload.get("jti"))
	if row is not None:
		db.delete(row)
		db.commit()
	return {"ok": True}


class RegisterRequest(BaseModel):
	username: str
	password: str
	email: Optional[str] = None


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	username = (req.username or "").strip()
	password = req.password or ""
	email = (req.email or "").strip() or None
	if not username or not password:
		raise HTTPException(status_code=400, detail="username and password are required")
	if len(username) < 3 or len(username) > 128:
		raise HTTPException(status_code=400, detail="username must be 3-128 characters")
	if db.get(AuthUser, username) is not None:
		raise HTTPException(status_code=409, detail="username already exists")
	row = AuthUser(
		username=username,
		password_hash=hash_password(password),
		email=email,
		role="student",
		requests_limit=settings.default_requests_limit,
	)
	db.add(row)
	db.commit()
	logger.info("Registered user %s", username)
	return {"ok": True}
