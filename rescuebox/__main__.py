import uvicorn

from rescuebox.config import PORT

if __name__ == "__main__":
    # Escuchar en todas las interfaces de red
    uvicorn.run("rescuebox.main:app", host="0.0.0.0", port=PORT)
