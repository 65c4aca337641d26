from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feedesk.api.v1.auth.router import router as auth_router
from feedesk.api.v1.fee_structures.router import router as fee_structures_router
from feedesk.api.v1.payments.router import router as payments_router
from feedesk.api.v1.students.router import router as students_router
from feedesk.core.config import settings
from feedesk.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Fee Desk")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(students_router)
    app.include_router(fee_structures_router)
    app.include_router(payments_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
