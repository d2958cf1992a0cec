from fastapi import APIRouter, HTTPException, Depends, status, BackgroundTasks
from pydantic import BaseModel
from typing import Dict, List, Optional, Any, Tuple
from sqlmodel import Session, select
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
import logging
import time

from rescuebox.database import get_session
from rescuebox.models import (
    Reserva,
    Box,
    Store,
    User,
    ESTADO_PENDIENTE,
    ESTADO_RETIRADO,
    ESTADO_CANCELADO,
)
from rescuebox.security import Principal, require_role
from rescuebox.mailer import send_reservation_confirmation

logger = logging.getLogger("rescuebox.reservas")

router = APIRouter(prefix="/api/reservas", tags=["reservas"])


class ReservaCreate(BaseModel):
    box_id: Optional[int] = None
    franja_horaria: Optional[str] = None


class ReservaCreatedOut(BaseModel):
    id: int
    qr_code: str
    message: str


def _pickup_code(user_id: int, box_id: int) -> str:
    # código corto para mostrar/escanear en la tienda, no es una credencial
    return f"{user_id}-{box_id}-{int(time.time() * 1000)}"


def _take_stock_unit(db: Session, box_id: int) -> bool:
    """UPDATE boxes SET stock = stock - 1 WHERE id = ? AND stock > 0; True si descontó."""
    result = db.exec(
        update(Box)
        .where(Box.id == box_id, Box.stock > 0)
        .values(stock=Box.stock - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _return_stock_unit(db: Session, box_id: int) -> None:
    db.exec(
        update(Box)
        .where(Box.id == box_id)
        .values(stock=Box.stock + 1)
        .execution_options(synchronize_session=False)
    )


def _create_reserva_impl(
    payload: ReservaCreate,
    principal: Principal,
    db: Session,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Dict[str, Any]:
    if not payload.box_id or not (payload.franja_horaria or "").strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Faltan campos obligatorios")

    box = db.get(Box, payload.box_id)
    if not box:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Caja no encontrada")
    if box.stock <= 0:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Sin stock disponible")

    box_id, box_nombre = box.id, box.nombre
    qr_code = _pickup_code(principal.id, box_id)
    try:
        # datos del correo se leen antes del commit: después no se toca la base
        user = db.get(User, principal.id)
        recipient = user.email if user else principal.email

        reserva = Reserva(
            user_id=principal.id,
            box_id=box_id,
            franja_horaria=payload.franja_horaria,
            qr_code=qr_code,
            estado=ESTADO_PENDIENTE,
        )
        db.add(reserva)
        db.flush()
        reserva_id = reserva.id

        # otra reserva concurrente pudo llevarse la última unidad
        if not _take_stock_unit(db, box_id):
            db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Sin stock disponible")

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("create reserva failed user_id=%s box_id=%s", principal.id, payload.box_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error al crear reserva")

    logger.info("Reserva %s created user_id=%s box_id=%s", reserva_id, principal.id, box_id)
    if background_tasks is not None:
        background_tasks.add_task(send_reservation_confirmation, recipient, qr_code, box_nombre, payload.franja_horaria)
    return {"id": reserva_id, "qr_code": qr_code, "message": "Reserva creada correctamente"}


def _find_reserva_with_store(db: Session, reserva_id: int) -> Optional[Tuple[Reserva, int]]:
    return db.exec(
        select(Reserva, Box.store_id)
        .join(Box, Box.id == Reserva.box_id)
        .where(Reserva.id == reserva_id)
    ).first()


def _find_cancelable_reserva(db: Session, reserva_id: int, user_id: int) -> Optional[Reserva]:
    return db.exec(
        select(Reserva).where(
            Reserva.id == reserva_id,
            Reserva.user_id == user_id,
            Reserva.estado == ESTADO_PENDIENTE,
        )
    ).first()


def _validate_reserva_impl(reserva_id: int, principal: Principal, db: Session) -> Dict[str, str]:
    row = _find_reserva_with_store(db, reserva_id)
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reserva no encontrada")

    reserva, box_store_id = row
    if principal.store_id is None or box_store_id != principal.store_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No autorizado para validar esta reserva")
    if reserva.estado == ESTADO_CANCELADO:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="La reserva fue cancelada")

    try:
        # re-validar una reserva ya retirada es idempotente
        result = db.exec(
            update(Reserva)
            .where(Reserva.id == reserva_id, Reserva.estado != ESTADO_CANCELADO)
            .values(estado=ESTADO_RETIRADO)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="La reserva fue cancelada")
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("validate reserva %s failed store_id=%s", reserva_id, principal.store_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error al validar reserva")

    logger.info("Reserva %s picked up at store_id=%s", reserva_id, principal.store_id)
    return {"message": "Reserva validada y marcada como retirada"}


def _cancel_reserva_impl(reserva_id: int, principal: Principal, db: Session) -> Dict[str, str]:
    not_found = HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reserva no encontrada o no cancelable")

    reserva = _find_cancelable_reserva(db, reserva_id, principal.id)
    if not reserva:
        raise not_found
    box_id = reserva.box_id

    try:
        result = db.exec(
            update(Reserva)
            .where(
                Reserva.id == reserva_id,
                Reserva.user_id == principal.id,
                Reserva.estado == ESTADO_PENDIENTE,
            )
            .values(estado=ESTADO_CANCELADO)
            .execution_options(synchronize_session=False)
        )
        # una cancelación o retiro concurrente ganó la carrera
        if result.rowcount != 1:
            db.rollback()
            raise not_found

        _return_stock_unit(db, box_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("cancel reserva %s failed user_id=%s", reserva_id, principal.id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error al cancelar reserva")

    logger.info("Reserva %s cancelled user_id=%s box_id=%s", reserva_id, principal.id, box_id)
    return {"message": "Reserva cancelada correctamente"}


@router.post("", response_model=ReservaCreatedOut)
def create_reserva(
    payload: ReservaCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_role(["user"])),
    db: Session = Depends(get_session),
):
    return _create_reserva_impl(payload, principal, db, background_tasks)


@router.get("/mis", response_model=List[Dict])
def my_reservas(
    principal: Principal = Depends(require_role(["user"])),
    db: Session = Depends(get_session),
):
    try:
        rows = db.exec(
            select(Reserva, Box, Store)
            .join(Box, Box.id == Reserva.box_id)
            .join(Store, Store.id == Box.store_id)
            .where(Reserva.user_id == principal.id)
            .order_by(Reserva.fecha.desc(), Reserva.id.desc())
        ).all()
    except SQLAlchemyError:
        logger.exception("GET /reservas/mis failed user_id=%s", principal.id)
        raise HTTPException(status_code=500, detail="Error al obtener reservas")

    out = []
    for reserva, box, store in rows:
        item = reserva.model_dump()
        item.update({
            "box_nombre": box.nombre,
            "precio_descuento": box.precio_descuento,
            "fecha_vencimiento": box.fecha_vencimiento,
            "stock": box.stock,
            "store_name": store.nombre,
            "direccion": store.direccion,
        })
        out.append(item)
    return out


@router.get("/store", response_model=List[Dict])
def store_reservas(
    principal: Principal = Depends(require_role(["store"])),
    db: Session = Depends(get_session),
):
    if principal.store_id is None:
        return []
    try:
        rows = db.exec(
            select(Reserva, User, Box)
            .join(Box, Box.id == Reserva.box_id)
            .join(User, User.id == Reserva.user_id)
            .where(Box.store_id == principal.store_id)
            .order_by(Reserva.fecha.desc(), Reserva.id.desc())
        ).all()
    except SQLAlchemyError:
        logger.exception("GET /reservas/store failed store_id=%s", principal.store_id)
        raise HTTPException(status_code=500, detail="Error al obtener reservas de la tienda")

    out = []
    for reserva, user, box in rows:
        item = reserva.model_dump()
        item.update({
            "user_nombre": user.nombre,
            "email": user.email,
            "box_nombre": box.nombre,
            "precio_descuento": box.precio_descuento,
        })
        out.append(item)
    return out


@router.post("/{reserva_id}/validar", response_model=Dict[str, str])
def validate_reserva(
    reserva_id: int,
    principal: Principal = Depends(require_role(["store"])),
    db: Session = Depends(get_session),
):
    return _validate_reserva_impl(reserva_id, principal, db)


@router.patch("/{reserva_id}/cancelar", response_model=Dict[str, str])
def cancel_reserva(
    reserva_id: int,
    principal: Principal = Depends(require_role(["user"])),
    db: Session = Depends(get_session),
):
    return _cancel_reserva_impl(reserva_id, principal, db)
