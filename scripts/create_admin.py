import argparse

from sqlmodel import Session, select
from rescuebox.database import engine, init_db
from rescuebox.models import User
from rescuebox.security import get_password_hash


def create_admin(email="admin@rescuebox.cl", password="admin123", nombre="Administrador"):
    init_db()
    with Session(engine) as session:
        exists = session.exec(select(User).where(User.email == email)).first()
        if exists:
            print("User already exists")
            return
        u = User(nombre=nombre, email=email, password_hash=get_password_hash(password), rol="admin")
        session.add(u)
        session.commit()
        print(f"Created {email} / {password}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Crea el usuario administrador")
    parser.add_argument("--email", default="admin@rescuebox.cl")
    parser.add_argument("--password", default="admin123")
    parser.add_argument("--nombre", default="Administrador")
    args = parser.parse_args()
    create_admin(args.email, args.password, args.nombre)
