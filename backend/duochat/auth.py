import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .audit import log_event
from .config import Settings
from .deps import get_auth, get_db
from .errors import BadRequest, Conflict, Forbidden, NotFound, Unauthorized
from .schemas import LoginIn, RegisterIn, TokenOut
from .stores import UserStore
from .vault import Vault

logger = logging.getLogger(__name__)

router = APIRouter()
security = HTTPBearer(auto_error=False)


def make_hash(pw: str) -> str:
    return bcrypt.hashpw(pw.encode(), bcrypt.gensalt()).decode()


def verify_hash(pw: str, ph: str) -> bool:
    try:
        return bcrypt.checkpw(pw.encode(), ph.encode())
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def looks_like_bcrypt(value: str) -> bool:
    return len(value) == 60 and value[:4] in ("$2a$", "$2b$", "$2y$")


def create_token(username: str, secret: str, alg: str = "HS256", ttl_hours: int = 24) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": username,
        "iat": now,
        "exp": now + timedelta(hours=ttl_hours),
    }
    return jwt.encode(payload, secret, algorithm=alg)


def decode_token(token: str, secret: str, alg: str = "HS256") -> str:
    data = jwt.decode(token, secret, algorithms=[alg], options={"require": ["sub", "exp"]})
    return data["sub"]


class AuthService:
    """Registration, login and bearer-token verification."""

    def __init__(self, users: UserStore, vault: Vault, settings: Settings):
        self.users = users
        self.vault = vault
        self.settings = settings

    def _secret(self) -> str:
        return self.vault.get_secret(self.settings.jwt_secret_name, generate=True)

    def issue_token(self, username: str) -> str:
        return create_token(username, self._secret(), self.settings.jwt_alg, self.settings.token_ttl_hours)

    def register(self, username: str, hashed_password: Optional[str] = None, password: Optional[str] = None) -> str:
        if (hashed_password is None) == (password is None):
            raise BadRequest("provide exactly one of hashedPassword or password")
        if hashed_password is not None:
            if not looks_like_bcrypt(hashed_password):
                raise BadRequest("hashedPassword must be a bcrypt hash")
            pw_hash = hashed_password
        else:
            if len(password) < 8:
                raise BadRequest("password must be at least 8 characters")
            pw_hash = make_hash(password)

        if not self.users.create_user(username, pw_hash):
            # a profile created by a contact acceptance can still be claimed
            if not self.users.claim_placeholder(username, pw_hash):
                raise Conflict("User already exists")
            logger.info("user %s claimed a placeholder profile", username)
        logger.info("registered user %s", username)
        return self.issue_token(username)

    def login(self, username: str, password: str) -> str:
        user = self.users.get_user(username)
        if user is None:
            raise NotFound("User not found")
        if user.is_placeholder or not verify_hash(password, user.hashedPassword):
            raise Unauthorized("Invalid credentials")
        return self.issue_token(username)

    def verify_token(self, token: Optional[str]) -> str:
        if not token:
            raise Unauthorized("Missing bearer token")
        alg = self.settings.jwt_alg
        try:
            return decode_token(token, self._secret(), alg)
        except jwt.InvalidSignatureError:
            # the secret may have been rotated since it was cached
            self.vault.invalidate(self.settings.jwt_secret_name)
        except jwt.PyJWTError as exc:
            raise Unauthorized(f"Invalid token: {exc}")
        try:
            return decode_token(token, self._secret(), alg)
        except jwt.PyJWTError as exc:
            raise Unauthorized(f"Invalid token: {exc}")


def current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth: AuthService = Depends(get_auth),
) -> str:
    return auth.verify_token(creds.credentials if creds else None)


def require_identity(me: str, user: str) -> None:
    if me != user:
        raise Forbidden(f"Authenticated as {me}, cannot act as {user}")


@router.post("/register", response_model=TokenOut)
def register(data: RegisterIn, auth: AuthService = Depends(get_auth), db=Depends(get_db)):
    token = auth.register(data.user, hashed_password=data.hashedPassword, password=data.password)
    log_event(db, data.user, "USER_REGISTER")
    return TokenOut(message="User registered", token=token)


@router.post("/login", response_model=TokenOut)
def login(data: LoginIn, auth: AuthService = Depends(get_auth), db=Depends(get_db)):
    token = auth.login(data.user, data.password)
    log_event(db, data.user, "USER_LOGIN")
    return TokenOut(message="Login successful", token=token)
