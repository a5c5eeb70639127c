import threading
import time
import requests
from jose import jwt, JWTError
from fastapi import HTTPException, Depends, Request, status
from fastapi.security import OAuth2PasswordBearer
from app.core.logger import setup_logger
from app.schemas.config import ServerSettings

logger = setup_logger("PatchServer.Auth")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login")

JWKS_TIMEOUT = 10


class JWKSCache:
  """Signing keys fetched from a JWKS endpoint, refreshed every refresh_seconds"""

  def __init__(self, url: str, refresh_seconds: float):
    self.url = url
    self.refresh_seconds = refresh_seconds
    self._keys: dict | None = None
    self._fetched_at = 0.0
    self._lock = threading.Lock()

  def get(self) -> dict:
    with self._lock:
      expired = time.monotonic() - self._fetched_at > self.refresh_seconds
      if self._keys is None or expired:
        resp = requests.get(self.url, timeout=JWKS_TIMEOUT)
        resp.raise_for_status()
        self._keys = resp.json()
        self._fetched_at = time.monotonic()
        logger.info(f"Refreshed JWKS from {self.url}")
      return self._keys


def _signing_key(request: Request, settings: ServerSettings):
  jwks: JWKSCache | None = getattr(request.app.state, "jwks", None)
  if jwks is not None:
    try:
      return jwks.get()
    except (requests.RequestException, ValueError) as e:
      logger.error(f"JWKS unavailable: {e}")
      raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication unavailable")
  return settings.secret_key


def verify_token(request: Request, token: str = Depends(oauth2_scheme)) -> dict:
  """Decode the bearer token; the claims are the caller's identity."""
  settings: ServerSettings = request.app.state.settings
  key = _signing_key(request, settings)
  try:
    payload = jwt.decode(token, key, algorithms=[settings.algorithm])
  except JWTError as e:
    raise HTTPException(
      status_code=status.HTTP_401_UNAUTHORIZED,
      detail="Invalid token",
      headers={"WWW-Authenticate": "Bearer"},
    ) from e
  return payload


def token_roles(claims: dict) -> set[str]:
  roles = set()
  role = claims.get("role")
  if isinstance(role, str):
    roles.add(role)
  listed = claims.get("roles")
  if isinstance(listed, (list, tuple)):
    roles.update(r for r in listed if isinstance(r, str))
  return roles


def require_role(role: str | None = None):
  """Dependency factory: the caller must hold `role` (default: settings.admin_role)"""
  def checker(request: Request, claims: dict = Depends(verify_token)) -> dict:
    needed = role or request.app.state.settings.admin_role
    if needed not in token_roles(claims):
      raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
    return claims
  return checker
