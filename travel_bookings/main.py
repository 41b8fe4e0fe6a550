from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from travel_bookings import settings
from travel_bookings.routers import booking, listings, notifications, payments, saved
from travel_bookings.scopes import BOOKING_SCOPE_DESCRIPTIONS

TORTOISE_MODULES = {"models": ["travel_bookings.models"]}


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules=TORTOISE_MODULES,
        generate_schemas=settings.generate_schemas,
    ):
        logger.info("travel-bookings started (tz={})", settings.bookings_tz)
        yield


def _openapi_with_scopes(app: FastAPI):
    """
    Document the scopes the gateway forwards in X-User-Scopes. Callers get
    their token from the auth service, never from this one.
    """

    def build() -> dict:
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=app.title, version=app.version, routes=app.routes)
        schema.setdefault("components", {})["securitySchemes"] = {
            "gateway": {
                "type": "oauth2",
                "flows": {
                    "password": {
                        "tokenUrl": settings.token_url,
                        "scopes": {
                            str(scope): text
                            for scope, text in BOOKING_SCOPE_DESCRIPTIONS.items()
                        },
                    }
                },
            }
        }
        app.openapi_schema = schema
        return schema

    return build


def create_app() -> FastAPI:
    app = FastAPI(title="travel-bookings", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(listings.router)
    app.include_router(booking.router)
    app.include_router(payments.router)
    app.include_router(notifications.router)
    app.include_router(saved.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.openapi = _openapi_with_scopes(app)  # type: ignore[method-assign]
    return app


app = create_app()
