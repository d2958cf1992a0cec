from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field

# estados de una reserva
ESTADO_PENDIENTE = "pendiente"
ESTADO_RETIRADO = "retirado"
ESTADO_CANCELADO = "cancelado"

ROLES = ("user", "store", "admin")


def utcnow() -> datetime:
    # las fechas se guardan siempre en UTC con zona horaria
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    nombre: Optional[str] = Field(default=None, nullable=True)
    email: str = Field(index=True, unique=True, nullable=False)
    password_hash: str
    rol: str = Field(default="user")
    fecha_registro: datetime = Field(default_factory=utcnow)


class Store(SQLModel, table=True):
    __tablename__ = "stores"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    nombre: Optional[str] = Field(default=None, nullable=True)
    direccion: Optional[str] = Field(default=None, nullable=True)
    telefono: Optional[str] = Field(default=None, nullable=True)
    descripcion: Optional[str] = Field(default=None, nullable=True)
    hora_inicio: Optional[str] = Field(default=None, nullable=True)
    hora_fin: Optional[str] = Field(default=None, nullable=True)
    lat: Optional[float] = Field(default=None, nullable=True)
    lng: Optional[float] = Field(default=None, nullable=True)


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    store_id: int = Field(foreign_key="stores.id", index=True)
    nombre: str
    precio: float
    stock: int = 0
    foto: Optional[str] = Field(default=None, nullable=True)


class Box(SQLModel, table=True):
    """
    Caja con descuento armada con productos de una tienda.
    precio_normal se cachea la primera vez que se calcula y no se recalcula.
    """
    __tablename__ = "boxes"

    id: Optional[int] = Field(default=None, primary_key=True)
    store_id: int = Field(foreign_key="stores.id", index=True)
    nombre: Optional[str] = Field(default=None, nullable=True)
    descripcion: Optional[str] = Field(default=None, nullable=True)
    precio_normal: Optional[float] = Field(default=None, nullable=True)
    precio_descuento: Optional[float] = Field(default=None, nullable=True)
    stock: int = 0
    fecha_creacion: datetime = Field(default_factory=utcnow)
    fecha_vencimiento: Optional[datetime] = Field(default=None, nullable=True)
    is_flash: bool = Field(default=False)
    horario_inicio: Optional[datetime] = Field(default=None, nullable=True)
    horario_fin: Optional[datetime] = Field(default=None, nullable=True)


class BoxProduct(SQLModel, table=True):
    __tablename__ = "box_products"

    box_id: int = Field(foreign_key="boxes.id", primary_key=True)
    product_id: int = Field(foreign_key="products.id", primary_key=True)
    cantidad: int = 1
    fecha_consumo: Optional[datetime] = Field(default=None, nullable=True)


class Reserva(SQLModel, table=True):
    __tablename__ = "reservas"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    box_id: int = Field(foreign_key="boxes.id", index=True)
    franja_horaria: str
    qr_code: str = Field(index=True)
    estado: str = Field(default=ESTADO_PENDIENTE)
    fecha: datetime = Field(default_factory=utcnow)
