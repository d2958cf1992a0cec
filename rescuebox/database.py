from typing import Generator, Optional

from sqlmodel import SQLModel, create_engine, Session as SQLModelSession
from sqlalchemy.orm import sessionmaker

from rescuebox.config import DATABASE_URL

# solo sqlite necesita check_same_thread
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, echo=False, connect_args={"check_same_thread": False})
else:
    # MySQL: reciclar conexiones muertas del pool
    engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True)

# IMPORTANT: class_=SQLModelSession para que SessionLocal() devuelva sqlmodel.Session (con .exec)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, class_=SQLModelSession)


def init_db() -> None:
    # registra las tablas en SQLModel.metadata
    from rescuebox import models  # noqa: F401

    SQLModel.metadata.create_all(bind=engine)


def get_session() -> Generator[SQLModelSession, None, None]:
    db: Optional[SQLModelSession] = None
    try:
        db = SessionLocal()
        yield db
    finally:
        if db is not None:
            db.close()
