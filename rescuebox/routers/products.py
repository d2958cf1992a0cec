from fastapi import APIRouter, HTTPException, Depends, status, Form, File, UploadFile
from typing import Dict, List, Optional, Any
from sqlmodel import Session, select
from sqlalchemy.exc import SQLAlchemyError
import logging
import os
import shutil
import time
import uuid

from rescuebox import config
from rescuebox.database import get_session
from rescuebox.models import Product, Store
from rescuebox.security import Principal, require_role

logger = logging.getLogger("rescuebox.products")

router = APIRouter(prefix="/api/products", tags=["products"])

ALLOWED_PHOTO_EXT = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


def save_photo(foto: Optional[UploadFile]) -> Optional[str]:
    """Guarda la foto en UPLOAD_DIR y devuelve la ruta pública /uploads/<archivo>."""
    if foto is None or not foto.filename:
        return None
    ext = os.path.splitext(foto.filename)[1].lower()
    if ext not in ALLOWED_PHOTO_EXT:
        raise HTTPException(status_code=400, detail="Formato de imagen no soportado")

    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    filename = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"
    with open(os.path.join(config.UPLOAD_DIR, filename), "wb") as out:
        shutil.copyfileobj(foto.file, out)
    return f"/uploads/{filename}"


def _discard_photo(foto_path: Optional[str]) -> None:
    if not foto_path:
        return
    try:
        os.remove(os.path.join(config.UPLOAD_DIR, os.path.basename(foto_path)))
    except OSError:
        logger.warning("No se pudo eliminar la foto huérfana %s", foto_path, exc_info=True)


def _list_products_impl(db: Session, store_id: int) -> List[Dict[str, Any]]:
    rows = db.exec(
        select(Product, Store.nombre)
        .join(Store, Store.id == Product.store_id, isouter=True)
        .where(Product.store_id == store_id)
    ).all()
    out = []
    for product, store_name in rows:
        item = product.model_dump()
        item["store_name"] = store_name
        out.append(item)
    return out


def _create_product_impl(
    db: Session,
    store_id: int,
    nombre: Optional[str],
    precio: Optional[float],
    stock: Optional[int],
    foto: Optional[UploadFile],
) -> Dict[str, Any]:
    if not nombre or precio is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Faltan campos obligatorios (nombre, precio)")

    foto_path = save_photo(foto)
    try:
        product = Product(store_id=store_id, nombre=nombre, precio=precio, stock=stock or 0, foto=foto_path)
        db.add(product)
        db.commit()
        db.refresh(product)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("create product failed store_id=%s", store_id)
        _discard_photo(foto_path)
        raise HTTPException(status_code=500, detail="Error creando producto")

    return {
        "id": product.id,
        "nombre": product.nombre,
        "precio": product.precio,
        "stock": product.stock,
        "foto": foto_path,
        "message": "Producto creado correctamente",
    }


@router.get("", response_model=List[Dict])
def list_products(principal: Principal = Depends(require_role(["store"])), db: Session = Depends(get_session)):
    if principal.store_id is None:
        return []
    try:
        return _list_products_impl(db, principal.store_id)
    except SQLAlchemyError:
        logger.exception("GET /products failed store_id=%s", principal.store_id)
        raise HTTPException(status_code=500, detail="Error servidor al obtener productos")


@router.post("", response_model=Dict)
def create_product(
    nombre: Optional[str] = Form(None),
    precio: Optional[float] = Form(None),
    stock: Optional[int] = Form(None),
    foto: Optional[UploadFile] = File(None),
    principal: Principal = Depends(require_role(["store"])),
    db: Session = Depends(get_session),
):
    if principal.store_id is None:
        raise HTTPException(status_code=400, detail="No se encontró la tienda para este usuario")
    return _create_product_impl(db, principal.store_id, nombre, precio, stock, foto)
