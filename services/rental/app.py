# ============================================================
# app.py — Entry point of the Rental Service
# ------------------------------------------------------------
# At startup:
#   1. creates the tables
#   2. starts the payment-signal consumer in a daemon thread
# Business errors (RentalError) become JSON error responses.
# ============================================================
import logging
import threading

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .api import router
from .config import RUN_CONSUMER
from .consumer import start_consumer
from .db import engine, init_db
from .errors import RentalError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = FastAPI(title="Rental Service")


@app.on_event("startup")
def start():
    init_db()
    if RUN_CONSUMER:
        threading.Thread(target=start_consumer, args=(engine,), daemon=True).start()


@app.exception_handler(RentalError)
def rental_error(request: Request, exc: RentalError):
    return JSONResponse(status_code=exc.status, content=jsonable_encoder(exc.to_dict()))


@app.get("/health")
def health():
    return {"ok": True}


app.include_router(router)
