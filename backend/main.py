import logging
import math
import os

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.routing import Match

load_dotenv()

from backend import app_context  # noqa: E402
from backend.app.routes.checkout import router as checkout_router  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("billing")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "checkout_db"),
    user=os.getenv("DB_USER", "checkout_user"),
    password=os.getenv("DB_PASSWORD", "checkout_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)


def get_conn():
    return psycopg2.connect(**DB_CFG)


app = FastAPI(title="Checkout API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkout_router)


def match_app_route(path: str) -> bool:
    """Whether a GET on ``path`` resolves to one of this app's routes."""

    scope = {"type": "http", "method": "GET", "path": path, "root_path": ""}
    for route in app.router.routes:
        match, _ = route.matches(scope)
        if match == Match.FULL:
            return True
    return False


app_context.configure(get_conn=get_conn, route_matcher=match_app_route)


@app.on_event("startup")
def log_startup() -> None:
    logger.info("Checkout API started (db=%s@%s:%s)", DB_CFG["dbname"], DB_CFG["host"], DB_CFG["port"])


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
