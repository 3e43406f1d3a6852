import logging

from fastapi import FastAPI

from centerlms.core.errors import register_exception_handlers
from centerlms.core.logging_middleware import LoggingMiddleware
from centerlms.core.rate_limit import limiter
from centerlms.db.init_db import init_db

# Import routers directly (bulletproof way)
from centerlms.routers.admin import router as admin_router
from centerlms.routers.auth import router as auth_router
from centerlms.routers.centers import router as centers_router
from centerlms.routers.courses import router as courses_router
from centerlms.routers.cron import router as cron_router
from centerlms.routers.enrollments import router as enrollments_router
from centerlms.routers.notifications import router as notifications_router
from centerlms.routers.subscription import router as subscription_router
from centerlms.routers.webhooks import router as webhooks_router

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Center LMS")

# Middleware
app.add_middleware(LoggingMiddleware)

# Rate limiting and domain errors
app.state.limiter = limiter
register_exception_handlers(app)


# Health check
@app.get("/health")
def health():
    return {"status": "ok"}


# Startup event
@app.on_event("startup")
def on_startup():
    init_db()


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
app.include_router(courses_router, prefix="/courses", tags=["courses"])
app.include_router(enrollments_router, prefix="/enrollments", tags=["enrollments"])
app.include_router(subscription_router, prefix="/subscription", tags=["subscription"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
app.include_router(webhooks_router, prefix="/webhook", tags=["webhooks"])
app.include_router(cron_router, prefix="/cron", tags=["cron"])

# centers: routes span /courses/{id}/centers and /centers/{id}, so no prefix
app.include_router(centers_router, tags=["centers"])
