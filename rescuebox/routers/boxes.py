from fastapi import APIRouter, HTTPException, Depends, status
from pydantic import BaseModel, field_validator
from typing import Dict, List, Optional, Any, Tuple
from sqlmodel import Session, select, or_
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta, timezone
import json
import logging

from rescuebox import config
from rescuebox.database import get_session
from rescuebox.models import Box, BoxProduct, Product, Store, utcnow
from rescuebox.security import Principal, require_role

logger = logging.getLogger("rescuebox.boxes")

router = APIRouter(prefix="/api", tags=["boxes"])


class BoxProductIn(BaseModel):
    id: Optional[int] = None
    product_id: Optional[int] = None
    cantidad: Optional[int] = None
    fecha_consumo: Optional[datetime] = None

    @property
    def pid(self) -> Optional[int]:
        return self.id if self.id is not None else self.product_id


class BoxCreate(BaseModel):
    nombre: Optional[str] = None
    descripcion: Optional[str] = None
    precio_descuento: Optional[float] = None
    stock: int = 0
    productos: List[BoxProductIn] = []
    fecha_vencimiento: Optional[datetime] = None
    is_flash: bool = False

    @field_validator("productos", mode="before")
    @classmethod
    def _parse_productos(cls, v):
        # desde formularios multipart llega como string JSON
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except ValueError:
                return []
        return v or []

    @field_validator("fecha_vencimiento", mode="before")
    @classmethod
    def _blank_as_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # fechas sin zona horaria se interpretan como UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def calcular_precio_total(db: Session, productos: List[BoxProductIn], store_id: int) -> Tuple[float, List[Dict[str, Any]]]:
    """
    Suma precio * cantidad de las líneas cuyo producto pertenece a la tienda.
    Devuelve (total, detalles) con una línea por producto (cantidades repetidas se acumulan).
    """
    total = 0.0
    detalles: Dict[int, Dict[str, Any]] = {}
    for prod in productos:
        pid = prod.pid
        if not pid:
            continue
        product = db.exec(select(Product).where(Product.id == pid, Product.store_id == store_id)).first()
        if not product:
            continue
        cantidad = prod.cantidad or 1
        precio_unitario = float(product.precio or 0.0)
        total += precio_unitario * cantidad

        d = detalles.get(pid)
        if d:
            d["cantidad"] += cantidad
        else:
            detalles[pid] = {
                "product_id": pid,
                "precio_unitario": precio_unitario,
                "cantidad": cantidad,
                "fecha_consumo": _as_utc(prod.fecha_consumo),
            }
    return total, list(detalles.values())


def calcular_horario_fin(
    ahora: datetime,
    is_flash: bool,
    fecha_vencimiento: Optional[datetime],
    fechas_consumo: List[datetime],
) -> Optional[datetime]:
    if is_flash:
        return ahora + timedelta(hours=config.FLASH_BOX_HOURS)
    if fecha_vencimiento:
        return fecha_vencimiento
    if fechas_consumo:
        return min(fechas_consumo)
    return None


def _enrich_boxes(db: Session, rows: List[Tuple[Box, Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """
    Agrega productos y precio_normal a cada caja.
    Si precio_normal no está cacheado se calcula con los precios actuales y se persiste una sola vez.
    """
    out: List[Dict[str, Any]] = []
    pending: List[Box] = []
    for box, extra in rows:
        lines = db.exec(
            select(BoxProduct, Product)
            .join(Product, Product.id == BoxProduct.product_id)
            .where(BoxProduct.box_id == box.id)
        ).all()
        productos = [
            {
                "product_id": bp.product_id,
                "cantidad": bp.cantidad,
                "fecha_consumo": bp.fecha_consumo,
                "nombre": p.nombre,
                "precio": p.precio,
                "foto": p.foto,
            }
            for bp, p in lines
        ]
        calculado = sum(float(p["precio"] or 0.0) * (p["cantidad"] or 1) for p in productos)

        item = box.model_dump()
        item.update(extra)
        item["productos"] = productos
        if box.precio_normal is None:
            box.precio_normal = calculado
            db.add(box)
            pending.append(box)
            item["precio_normal"] = calculado
        else:
            item["precio_normal"] = float(box.precio_normal)
        out.append(item)

    if pending:
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning("No se pudo actualizar precio_normal para boxes %s", [b.id for b in pending], exc_info=True)
    return out


def _list_boxes_impl(db: Session, store_id: int) -> List[Dict[str, Any]]:
    rows = db.exec(
        select(Box, Store.nombre)
        .join(Store, Store.id == Box.store_id, isouter=True)
        .where(Box.store_id == store_id)
        .order_by(Box.fecha_creacion.desc(), Box.id.desc())
    ).all()
    return _enrich_boxes(db, [(box, {"store_name": store_name}) for box, store_name in rows])


def _create_box_impl(payload: BoxCreate, db: Session, store_id: int) -> Dict[str, Any]:
    if not payload.productos:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Debes agregar al menos un producto")

    precio_normal, detalles = calcular_precio_total(db, payload.productos, store_id)

    ahora = utcnow().replace(microsecond=0)
    fecha_vencimiento = _as_utc(payload.fecha_vencimiento)
    fechas_consumo = [d["fecha_consumo"] for d in detalles if d["fecha_consumo"]]
    horario_fin = calcular_horario_fin(ahora, payload.is_flash, fecha_vencimiento, fechas_consumo)

    try:
        box = Box(
            store_id=store_id,
            nombre=payload.nombre,
            descripcion=payload.descripcion,
            precio_normal=precio_normal,
            precio_descuento=payload.precio_descuento,
            stock=payload.stock or 0,
            horario_inicio=ahora,
            horario_fin=horario_fin,
            fecha_vencimiento=fecha_vencimiento,
            is_flash=payload.is_flash,
        )
        db.add(box)
        db.flush()
        for d in detalles:
            db.add(BoxProduct(box_id=box.id, product_id=d["product_id"], cantidad=d["cantidad"], fecha_consumo=d["fecha_consumo"]))
        db.commit()
        db.refresh(box)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("create box failed store_id=%s", store_id)
        raise HTTPException(status_code=500, detail="Error creando caja")

    return {
        "id": box.id,
        "message": "Caja creada correctamente",
        "precio_normal": precio_normal,
        "horario_inicio": ahora,
        "horario_fin": horario_fin,
        "is_flash": 1 if payload.is_flash else 0,
    }


# =============================
# Cajas públicas (clientes)
# =============================
@router.get("/boxes/public", response_model=List[Dict])
def public_boxes(db: Session = Depends(get_session)):
    try:
        rows = db.exec(
            select(Box, Store.nombre)
            .join(Store, Store.id == Box.store_id, isouter=True)
            .where(Box.stock > 0)
            .where(or_(Box.fecha_vencimiento == None, Box.fecha_vencimiento >= utcnow()))  # noqa: E711
            .order_by(Box.fecha_creacion.desc(), Box.id.desc())
        ).all()
        return _enrich_boxes(db, [(box, {"store_name": store_name}) for box, store_name in rows])
    except SQLAlchemyError:
        logger.exception("GET /boxes/public failed")
        raise HTTPException(status_code=500, detail="Error servidor al obtener cajas públicas")


# =============================
# Cajas de la tienda logueada
# =============================
@router.get("/boxes", response_model=List[Dict])
def store_boxes(principal: Principal = Depends(require_role(["store"])), db: Session = Depends(get_session)):
    if principal.store_id is None:
        return []
    try:
        return _list_boxes_impl(db, principal.store_id)
    except SQLAlchemyError:
        logger.exception("GET /boxes failed store_id=%s", principal.store_id)
        raise HTTPException(status_code=500, detail="Error servidor al obtener cajas")


@router.post("/boxes", response_model=Dict)
def create_box(payload: BoxCreate, principal: Principal = Depends(require_role(["store"])), db: Session = Depends(get_session)):
    if principal.store_id is None:
        raise HTTPException(status_code=400, detail="No se encontró la tienda para este usuario")
    return _create_box_impl(payload, db, principal.store_id)


# =============================
# Obtener caja por ID (pública)
# =============================
@router.get("/boxes/{box_id}", response_model=Dict)
def get_box(box_id: int, db: Session = Depends(get_session)):
    try:
        row = db.exec(
            select(Box, Store)
            .join(Store, Store.id == Box.store_id)
            .where(Box.id == box_id)
        ).first()
        if not row:
            raise HTTPException(status_code=404, detail="Caja no encontrada")
        box, store = row
        return _enrich_boxes(db, [(box, {"store_name": store.nombre, "direccion": store.direccion})])[0]
    except SQLAlchemyError:
        logger.exception("GET /boxes/%s failed", box_id)
        raise HTTPException(status_code=500, detail="Error obteniendo la caja")
