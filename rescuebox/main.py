from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from fastapi.staticfiles import StaticFiles
import logging
import os

from rescuebox import config
from rescuebox.database import init_db
from rescuebox.routers import auth, products, boxes, store, admin, reservas

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("rescuebox")

app = FastAPI(title="RescueBox API")

# Configurar CORS usando FRONTEND_URL (comma-separated)
if config.FRONTEND_URL:
    origins = [u.strip() for u in config.FRONTEND_URL.split(",") if u.strip()]
else:
    # En desarrollo mantenemos localhost para Vite
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Servir archivos estáticos (fotos de productos)
os.makedirs(config.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")

# Incluir routers
app.include_router(auth.router)
app.include_router(products.router)
app.include_router(boxes.router)
app.include_router(store.router)
app.include_router(admin.router)
app.include_router(reservas.router)


@app.on_event("startup")
def on_startup():
    init_db()
    # imprime rutas para verificar en consola
    for route in app.routes:
        if isinstance(route, APIRoute):
            methods = ",".join(sorted(route.methods))
            logger.info("Route: %s  methods: %s", route.path, methods)
