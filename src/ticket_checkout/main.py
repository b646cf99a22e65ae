from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from ticket_checkout.api.errors import register_exception_handlers
from ticket_checkout.api.routes.bookings import router as bookings_router
from ticket_checkout.api.routes.payments import router as payments_router
from ticket_checkout.api.routes.system import router as system_router
from ticket_checkout.api.routes.tickets import router as tickets_router
from ticket_checkout.application.ticket_codes import TicketCodeSigner
from ticket_checkout.config import Settings
from ticket_checkout.infrastructure.db.models import Base
from ticket_checkout.infrastructure.db.session import build_engine, build_session_factory
from ticket_checkout.infrastructure.payments.gateway import PaymentGateway
from ticket_checkout.infrastructure.payments.razorpay_gateway import RazorpayGateway


logger = logging.getLogger(__name__)


def _wait_for_db(engine: Engine, max_retries: int, retry_delay_seconds: float) -> None:
    # Handles the common case where the API starts before Postgres is ready.
    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL and Postgres status.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    payment_gateway: PaymentGateway | None = None,
) -> FastAPI:
    """
    Builds the application and its service handles.
    Run with: uvicorn ticket_checkout.main:create_app --factory
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = build_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _wait_for_db(
            engine,
            settings.db_connect_max_retries,
            settings.db_connect_retry_delay,
        )
        Base.metadata.create_all(bind=engine)
        yield
        engine.dispose()

    app = FastAPI(title="Ticket Checkout Engine", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.payment_gateway = payment_gateway or RazorpayGateway.from_settings(settings)
    app.state.ticket_signer = TicketCodeSigner(
        settings.ticket_signing_secret,
        ttl_hours=settings.ticket_code_ttl_hours,
    )

    register_exception_handlers(app)
    app.include_router(system_router)
    app.include_router(payments_router)
    app.include_router(bookings_router)
    app.include_router(tickets_router)
    return app
