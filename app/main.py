from fastapi import FastAPI
from app.api.v1.routes import events, ticket_types, registrations, refunds, payments, admin_maintenance
from app.api.exceptions import register_error_handler
from app.core.middleware.http_ctx import HttpContextMiddleware
from app.core.redis import create_redis


async def lifespan(app: FastAPI):
    r = await create_redis()
    app.state.redis = r
    try:
        yield
    finally:
        await r.aclose()


app = FastAPI(lifespan=lifespan)
app.add_middleware(HttpContextMiddleware, request_id_header="X-Request-ID")
register_error_handler(app)
app.include_router(events.router)
app.include_router(ticket_types.router)
app.include_router(registrations.router)
app.include_router(refunds.router)
app.include_router(payments.router)
app.include_router(admin_maintenance.router)
