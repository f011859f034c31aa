from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studio_bookings.core.logging_config import configure_logging
from studio_bookings.database.db import Base, engine
from studio_bookings.models import Booking, ClassSession, Membership  # noqa: F401
from studio_bookings.routes import bookings, check_in, reports, sessions

configure_logging()

app = FastAPI(title="Studio Bookings")

# Configure CORS
origins = [
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create all tables (in production, use migrations such as Alembic)
Base.metadata.create_all(bind=engine)

# Include the routers
app.include_router(sessions.router)
app.include_router(bookings.router)
app.include_router(check_in.router)
app.include_router(reports.router)
