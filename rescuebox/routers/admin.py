from __future__ import annotations

from typing import Dict, List, Optional, Any
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import Session, select
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
import logging

from rescuebox.database import get_session
from rescuebox.models import User, Store, Box, Reserva
from rescuebox.security import get_password_hash, require_role

logger = logging.getLogger("rescuebox.admin")

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_role(["admin"]))],
)


class StoreCreate(BaseModel):
    nombre_user: Optional[str] = None
    nombre_store: str = Field(..., min_length=1)
    email: EmailStr
    contrasena: str = Field(..., min_length=6)
    direccion: Optional[str] = None
    telefono: Optional[str] = None
    descripcion: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    hora_inicio: Optional[str] = None
    hora_fin: Optional[str] = None


def _store_row(store: Store, user: User) -> Dict[str, Any]:
    return {
        "store_id": store.id,
        "store_nombre": store.nombre,
        "direccion": store.direccion,
        "telefono": store.telefono,
        "descripcion": store.descripcion,
        "hora_inicio": store.hora_inicio,
        "hora_fin": store.hora_fin,
        "user_id": user.id,
        "user_nombre": user.nombre,
        "email": user.email,
    }


@router.get("/users", response_model=List[Dict])
def list_users(db: Session = Depends(get_session)):
    users = db.exec(select(User).order_by(User.id)).all()
    return [
        {"id": u.id, "nombre": u.nombre, "email": u.email, "rol": u.rol, "fecha_registro": u.fecha_registro}
        for u in users
    ]


@router.get("/stores", response_model=List[Dict])
def list_stores(db: Session = Depends(get_session)):
    rows = db.exec(select(Store, User).join(User, User.id == Store.user_id).order_by(Store.id)).all()
    return [_store_row(store, user) for store, user in rows]


@router.get("/stores-with-boxes", response_model=List[Dict])
def list_stores_with_boxes(db: Session = Depends(get_session)):
    """Tiendas con el número de cajas publicadas (publicaciones)."""
    rows = db.exec(
        select(Store, User, func.count(Box.id))
        .join(User, User.id == Store.user_id)
        .join(Box, Box.store_id == Store.id, isouter=True)
        .group_by(Store.id, User.id)
        .order_by(Store.id)
    ).all()
    out = []
    for store, user, publicaciones in rows:
        item = _store_row(store, user)
        item["publicaciones"] = int(publicaciones or 0)
        out.append(item)
    return out


@router.post("/stores", response_model=Dict)
def create_store(payload: StoreCreate, db: Session = Depends(get_session)):
    """
    Crea un usuario con rol "store" y su tienda asociada en una sola transacción.
    """
    existing = db.exec(select(User).where(User.email == payload.email)).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email ya registrado")

    try:
        user = User(
            nombre=payload.nombre_user,
            email=payload.email,
            password_hash=get_password_hash(payload.contrasena),
            rol="store",
        )
        db.add(user)
        db.flush()
        store = Store(
            user_id=user.id,
            nombre=payload.nombre_store,
            direccion=payload.direccion,
            telefono=payload.telefono,
            descripcion=payload.descripcion,
            lat=payload.lat,
            lng=payload.lng,
            hora_inicio=payload.hora_inicio,
            hora_fin=payload.hora_fin,
        )
        db.add(store)
        db.commit()
        db.refresh(user)
        db.refresh(store)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("admin create store failed for %s", payload.email)
        raise HTTPException(status_code=500, detail="Error creando tienda")

    return {
        "userId": user.id,
        "storeId": store.id,
        "message": "Tienda creada correctamente con contraseña protegida",
    }


@router.get("/stats", response_model=Dict)
def admin_stats(db: Session = Depends(get_session)):
    return {
        "users": db.exec(select(func.count(User.id))).one(),
        "stores": db.exec(select(func.count(Store.id))).one(),
        "boxes": db.exec(select(func.count(Box.id))).one(),
        "reservas": db.exec(select(func.count(Reserva.id))).one(),
    }
