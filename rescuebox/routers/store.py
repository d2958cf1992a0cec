from fastapi import APIRouter, HTTPException, Depends, Form, File, UploadFile
from typing import Dict, List, Optional
from sqlmodel import Session, select
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
import logging

from rescuebox.database import get_session
from rescuebox.models import Box, Reserva, ESTADO_RETIRADO, ESTADO_CANCELADO
from rescuebox.security import Principal, require_role
from rescuebox.routers.products import _list_products_impl, _create_product_impl
from rescuebox.routers.boxes import BoxCreate, _list_boxes_impl, _create_box_impl

logger = logging.getLogger("rescuebox.store")

# rutas de compatibilidad para el panel de tienda
router = APIRouter(
    prefix="/api/store",
    tags=["store"],
    dependencies=[Depends(require_role(["store"]))],
)

NO_STORE = "No se encontró la tienda para este usuario"


@router.get("/products", response_model=List[Dict])
def list_products(principal: Principal = Depends(require_role(["store"])), db: Session = Depends(get_session)):
    if principal.store_id is None:
        return []
    try:
        return _list_products_impl(db, principal.store_id)
    except SQLAlchemyError:
        logger.exception("GET /store/products failed store_id=%s", principal.store_id)
        raise HTTPException(status_code=500, detail="error servidor")


@router.post("/products", response_model=Dict)
def create_product(
    nombre: Optional[str] = Form(None),
    precio: Optional[float] = Form(None),
    stock: Optional[int] = Form(None),
    foto: Optional[UploadFile] = File(None),
    principal: Principal = Depends(require_role(["store"])),
    db: Session = Depends(get_session),
):
    if principal.store_id is None:
        raise HTTPException(status_code=400, detail=NO_STORE)
    return _create_product_impl(db, principal.store_id, nombre, precio, stock, foto)


@router.get("/boxes", response_model=List[Dict])
def list_boxes(principal: Principal = Depends(require_role(["store"])), db: Session = Depends(get_session)):
    if principal.store_id is None:
        return []
    try:
        return _list_boxes_impl(db, principal.store_id)
    except SQLAlchemyError:
        logger.exception("GET /store/boxes failed store_id=%s", principal.store_id)
        raise HTTPException(status_code=500, detail="error servidor")


@router.post("/boxes", response_model=Dict)
def create_box(payload: BoxCreate, principal: Principal = Depends(require_role(["store"])), db: Session = Depends(get_session)):
    if principal.store_id is None:
        raise HTTPException(status_code=400, detail=NO_STORE)
    out = _create_box_impl(payload, db, principal.store_id)
    out["message"] = "Caja creada con productos asociados"
    return out


@router.get("/stats", response_model=Dict)
def store_stats(principal: Principal = Depends(require_role(["store"])), db: Session = Depends(get_session)):
    """
    Resumen de reservas de la tienda.
    ingresos = suma de precio_descuento de las reservas retiradas.
    """
    if principal.store_id is None:
        raise HTTPException(status_code=400, detail=NO_STORE)

    try:
        total = db.exec(
            select(func.count(Reserva.id))
            .join(Box, Box.id == Reserva.box_id)
            .where(Box.store_id == principal.store_id, Reserva.estado != ESTADO_CANCELADO)
        ).one()
        retiradas, ingresos = db.exec(
            select(func.count(Reserva.id), func.sum(Box.precio_descuento))
            .join(Box, Box.id == Reserva.box_id)
            .where(Box.store_id == principal.store_id, Reserva.estado == ESTADO_RETIRADO)
        ).one()
        canceladas = db.exec(
            select(func.count(Reserva.id))
            .join(Box, Box.id == Reserva.box_id)
            .where(Box.store_id == principal.store_id, Reserva.estado == ESTADO_CANCELADO)
        ).one()
    except SQLAlchemyError:
        logger.exception("GET /store/stats failed store_id=%s", principal.store_id)
        raise HTTPException(status_code=500, detail="error servidor")

    return {
        "reservas_total": int(total or 0),
        "retiradas": int(retiradas or 0),
        "canceladas": int(canceladas or 0),
        "ingresos": round(float(ingresos or 0.0), 2),
    }
