from __future__ import annotations

from datetime import datetime

from fastapi import FastAPI

from api.middleware.logging import RequestLoggingMiddleware
from api.routers import admin, cron, flights, subscriptions, user_data
from api.service_container import ServiceContainer


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    app = FastAPI(title="Delay Claim Notifier", version="0.1.0")
    app.add_middleware(RequestLoggingMiddleware)
    app.state.services = services or ServiceContainer()

    api_prefix = "/api/v1"
    app.include_router(subscriptions.router, prefix=api_prefix)
    app.include_router(user_data.router, prefix=api_prefix)
    app.include_router(flights.router, prefix=api_prefix)
    app.include_router(cron.router, prefix=api_prefix)
    app.include_router(admin.router, prefix=api_prefix)

    @app.get("/health")
    async def health():
        services: ServiceContainer = app.state.services
        return {
            "ok": True,
            "service": "delay-claim-notifier",
            "timestamp": datetime.utcnow().isoformat(),
            **services.health(),
        }

    return app


app = create_app()
