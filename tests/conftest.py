from datetime import datetime
from typing import List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine, select

from rescuebox import config
from rescuebox.database import get_session
from rescuebox.main import app
from rescuebox.models import User, Store, Product, Box, BoxProduct, Reserva
from rescuebox.security import create_access_token


class Factory:
    """Crea filas directamente en la base de pruebas y emite tokens sin pasar por bcrypt."""

    def __init__(self, engine):
        self.engine = engine
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def headers(self, user: User, store_id: Optional[int] = None, with_store_id: bool = True) -> dict:
        data = {"sub": str(user.id), "id": user.id, "email": user.email, "role": user.rol}
        if with_store_id:
            data["store_id"] = store_id
        return {"Authorization": f"Bearer {create_access_token(data)}"}

    def user(self, nombre: str = "Cliente", rol: str = "user") -> Tuple[User, dict]:
        with Session(self.engine) as s:
            u = User(nombre=nombre, email=f"{nombre.lower()}{self._next()}@rescuebox.cl", password_hash="x", rol=rol)
            s.add(u)
            s.commit()
            s.refresh(u)
        return u, self.headers(u)

    def store(self, nombre: str = "Panadería", with_store_id: bool = True) -> Tuple[Store, dict]:
        with Session(self.engine) as s:
            u = User(nombre=nombre, email=f"tienda{self._next()}@rescuebox.cl", password_hash="x", rol="store")
            s.add(u)
            s.flush()
            st = Store(user_id=u.id, nombre=nombre, direccion="Av. Siempre Viva 742")
            s.add(st)
            s.commit()
            s.refresh(u)
            s.refresh(st)
        return st, self.headers(u, st.id, with_store_id=with_store_id)

    def product(self, store: Store, precio: float, nombre: str = "Pan") -> Product:
        with Session(self.engine) as s:
            p = Product(store_id=store.id, nombre=nombre, precio=precio, stock=10)
            s.add(p)
            s.commit()
            s.refresh(p)
        return p

    def box(
        self,
        store: Store,
        stock: int = 1,
        lines: Optional[List[Tuple[Product, int]]] = None,
        precio_normal: Optional[float] = None,
        precio_descuento: float = 1990.0,
        fecha_vencimiento: Optional[datetime] = None,
        nombre: str = "Caja sorpresa",
    ) -> Box:
        with Session(self.engine) as s:
            b = Box(
                store_id=store.id,
                nombre=nombre,
                stock=stock,
                precio_normal=precio_normal,
                precio_descuento=precio_descuento,
                fecha_vencimiento=fecha_vencimiento,
            )
            s.add(b)
            s.flush()
            for product, cantidad in lines or []:
                s.add(BoxProduct(box_id=b.id, product_id=product.id, cantidad=cantidad))
            s.commit()
            s.refresh(b)
        return b

    def stock_of(self, box_id: int) -> int:
        with Session(self.engine) as s:
            return s.get(Box, box_id).stock

    def reserva(self, reserva_id: int) -> Optional[Reserva]:
        with Session(self.engine) as s:
            return s.get(Reserva, reserva_id)

    def reservas_for_box(self, box_id: int) -> List[Reserva]:
        with Session(self.engine) as s:
            return s.exec(select(Reserva).where(Reserva.box_id == box_id)).all()


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="client")
def client_fixture(engine, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))

    def _get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="factory")
def factory_fixture(engine):
    return Factory(engine)
