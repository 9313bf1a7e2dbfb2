import logging
import threading

from fastapi import FastAPI

from .consumer import start_consumer

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = FastAPI(title="Notification Service")


@app.on_event("startup")
def startup():
    threading.Thread(target=start_consumer, daemon=True).start()


@app.get("/health")
def health():
    return {"ok": True}
