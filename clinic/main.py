# clinic/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinic.core.config import settings
from clinic.core.errors import register_error_handlers
from clinic.core.logging_setup import configure_logging
from clinic.core.middleware import RequireAuthMiddleware
from clinic.db.sql import init_db
from clinic.routers import appointments, auth, doctor, health, payments

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    The lifespan function is used to manage the FastAPI application lifecycle.
    """
    # Create tables if they don't exist
    await init_db()
    logger.info("Clinic API started (%s)", settings.APP_ENV)
    yield


app = FastAPI(
    title="Clinic Appointment & Payment API",
    lifespan=lifespan,
)

# Added last so it runs first: preflight requests never reach the auth gate
app.add_middleware(RequireAuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Routing; each router carries the API prefix
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(doctor.router)
app.include_router(appointments.router)
app.include_router(payments.router)


@app.get("/")
def root():
    return {"message": "Clinic API running successfully"}
