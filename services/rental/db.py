# ============================================================
# db.py — Engine and per-request Session
# ============================================================
from sqlmodel import Session, SQLModel, create_engine

from .config import DATABASE_URL
from . import models  # noqa: F401  (registers the tables)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)


def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)


# FastAPI dependency: one Session per request, closed afterwards
def get_session():
    with Session(engine) as s:
        yield s
