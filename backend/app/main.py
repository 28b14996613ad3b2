# ClassLedger backend entrypoint: scheduling, join gating and per-occurrence billing.

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api import availability
from backend.app.api import classes
from backend.app.api import ledger
from backend.app.core.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.app_name, version=settings.api_version)

origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(classes.router)
app.include_router(availability.router)
app.include_router(ledger.router)


@app.get("/")
def read_root():
    return {"app": "ClassLedger backend", "status": "ok"}


@app.get("/health")
def health_check():
    return {"status": "ok"}
