from fastapi import APIRouter, HTTPException, Depends, status
from pydantic import BaseModel, EmailStr
from typing import Dict, Optional
from sqlmodel import Session, select
from sqlalchemy.exc import SQLAlchemyError
import logging

from rescuebox.database import get_session
from rescuebox.models import User, Store
from rescuebox.security import (
    Principal,
    verify_password,
    get_password_hash,
    create_access_token,
    get_current_principal,
)

logger = logging.getLogger("rescuebox.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

# el rol admin solo se crea con scripts/create_admin.py
SELF_SERVICE_ROLES = ("user", "store")


class RegisterIn(BaseModel):
    nombre: Optional[str] = None
    email: EmailStr
    contrasena: str
    rol: Optional[str] = None


class LoginIn(BaseModel):
    email: str
    contrasena: str


class UserInfo(BaseModel):
    id: int
    email: str
    role: str
    store_id: Optional[int] = None
    name: Optional[str] = None


class TokenOut(BaseModel):
    token: str
    user: UserInfo


def _store_id_for(db: Session, user: User) -> Optional[int]:
    if user.rol != "store":
        return None
    store = db.exec(select(Store).where(Store.user_id == user.id)).first()
    return store.id if store else None


def _register_impl(payload: RegisterIn, db: Session):
    rol = payload.rol or "user"
    if rol not in SELF_SERVICE_ROLES:
        raise HTTPException(status_code=400, detail="Rol no permitido")

    exists = db.exec(select(User).where(User.email == payload.email)).first()
    if exists:
        raise HTTPException(status_code=400, detail="El email ya está registrado")

    try:
        user = User(
            nombre=payload.nombre,
            email=payload.email,
            password_hash=get_password_hash(payload.contrasena),
            rol=rol,
        )
        db.add(user)
        db.flush()
        # Si es tienda, crear store vacío por defecto
        if rol == "store":
            db.add(Store(nombre=payload.nombre or "Tienda", user_id=user.id))
        db.commit()
        db.refresh(user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("register failed for %s", payload.email)
        raise HTTPException(status_code=500, detail="Error al registrar usuario")

    return {"id": user.id, "email": user.email, "rol": user.rol}


def _login_impl(payload: LoginIn, db: Session):
    user = db.exec(select(User).where(User.email == payload.email)).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Usuario no encontrado")
    if not verify_password(payload.contrasena, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Contraseña incorrecta")

    store_id = _store_id_for(db, user)
    token = create_access_token(
        {"sub": str(user.id), "id": user.id, "email": user.email, "role": user.rol, "store_id": store_id}
    )
    return {
        "token": token,
        "user": {"id": user.id, "email": user.email, "role": user.rol, "store_id": store_id, "name": user.nombre},
    }


@router.post("/register", response_model=Dict)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    return _register_impl(payload, db)


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_session)):
    return _login_impl(payload, db)


@router.get("/me", response_model=Principal)
def me(principal: Principal = Depends(get_current_principal)):
    return principal
