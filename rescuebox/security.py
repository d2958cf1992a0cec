from datetime import datetime, timedelta, timezone
import logging
from typing import Optional, List, Iterable

from passlib.context import CryptContext
from jose import jwt, JWTError
from pydantic import BaseModel

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session, select

from rescuebox.config import SECRET_KEY, ACCESS_TOKEN_EXPIRE_MINUTES
from rescuebox.database import get_session
from rescuebox.models import Store

logger = logging.getLogger("rescuebox.security")

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# auto_error=False: la ausencia de token se responde con nuestro propio mensaje
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# Mapeo simple para aceptar etiquetas visuales (es) como alias de las claves internas
ROLE_ALIAS_MAP = {
    "usuario": "user",
    "cliente": "user",
    "tienda": "store",
    "administrador": "admin",
    # mantener mapeo directo por si el valor ya es la key
    "user": "user",
    "store": "store",
    "admin": "admin",
}


class Principal(BaseModel):
    id: int
    email: Optional[str] = None
    role: str
    store_id: Optional[int] = None


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


def _raise_unauthorized(detail: str = "Token inválido o expirado"):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def decode_token_or_401(token: Optional[str]) -> dict:
    if not token:
        _raise_unauthorized("Token no proporcionado")
    payload = decode_access_token(token)
    if not payload:
        _raise_unauthorized("Token inválido o expirado")
    return payload


def canonical_role(role: Optional[str]) -> str:
    raw = str(role or "").strip().lower()
    return ROLE_ALIAS_MAP.get(raw, raw)


def is_role_allowed(principal: Principal, allowed: Iterable[str]) -> bool:
    """Lista vacía = cualquier rol autenticado. Compara case-insensitive y acepta alias."""
    allowed_norm = {canonical_role(r) for r in (allowed or [])}
    if not allowed_norm:
        return True
    return canonical_role(principal.role) in allowed_norm


def get_current_principal(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_session)) -> Principal:
    payload = decode_token_or_401(token)
    try:
        principal = Principal(
            id=int(payload.get("id") or payload.get("sub")),
            email=payload.get("email"),
            role=canonical_role(payload.get("role")),
            store_id=payload.get("store_id"),
        )
    except (TypeError, ValueError):
        _raise_unauthorized("Token inválido o expirado")

    # tokens de tienda emitidos antes de crear el store no traen store_id
    if principal.role == "store" and principal.store_id is None:
        store = db.exec(select(Store).where(Store.user_id == principal.id)).first()
        if store:
            principal.store_id = store.id
    return principal


def require_role(allowed: List[str]):
    """
    Dependency: use as Depends(require_role(["store"]))
    Devuelve el Principal verificado si su rol está permitido.
    """

    def _require(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not is_role_allowed(principal, allowed):
            logger.debug(
                "require_role denied: role=%r allowed=%r user_id=%s",
                principal.role,
                sorted(allowed or []),
                principal.id,
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No tienes permisos")
        return principal

    return _require
