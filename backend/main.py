import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, SessionLocal, engine, ensure_appointment_schema, ensure_quote_schema
from backend.models import appointment, feedback, mechanic, onboarding, user, vehicle  # noqa: F401
from backend.realtime.hub import change_hub, install_change_capture
from backend.routes import (
    appointment_routes,
    auth_routes,
    feedback_routes,
    maintenance_routes,
    maps_routes,
    mechanic_routes,
    onboarding_routes,
    realtime_routes,
)

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

install_change_capture(change_hub, SessionLocal)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_quote_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('shutdown')
def close_realtime_channels() -> None:
    change_hub.close()


@app.get('/')
def root():
    return {'status': 'Mechanic Marketplace API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(mechanic_routes.router, prefix='/mechanic')
app.include_router(realtime_routes.router, prefix='/mechanic')
app.include_router(onboarding_routes.router, prefix='/onboarding')
app.include_router(feedback_routes.router, prefix='/feedback')
app.include_router(maps_routes.router, prefix='/maps')
app.include_router(maintenance_routes.router, prefix='/maintenance')
