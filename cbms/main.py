import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cbms.config import get_settings
from cbms.exceptions import register_exception_handlers

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _seed_admin_user() -> None:
    """Create the bootstrap admin and the default settings rows if missing."""
    from cbms.database import SessionLocal
    from cbms.models.user import User
    from cbms.services import settings_service
    from cbms.utils.security import hash_password

    db = SessionLocal()
    try:
        admin = db.query(User).filter(User.email == settings.ADMIN_EMAIL).first()
        if admin is None:
            db.add(
                User(
                    name="Administrator",
                    email=settings.ADMIN_EMAIL,
                    password_hash=hash_password(settings.ADMIN_PASSWORD),
                    role="admin",
                    is_active=True,
                )
            )
            db.commit()
            logger.info("Seeded admin user %s", settings.ADMIN_EMAIL)
        added = settings_service.seed_defaults(db)
        if added:
            logger.info("Seeded %d default settings", added)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SEED_ADMIN:
        _seed_admin_user()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

from cbms.routers import auth, users  # noqa: E402

app.include_router(auth.router, prefix="/api/auth")
app.include_router(users.router, prefix="/api/users")

# Master data
from cbms.routers import master_data  # noqa: E402

app.include_router(master_data.departments_router, prefix="/api/departments")
app.include_router(master_data.budget_heads_router, prefix="/api/budget-heads")
app.include_router(master_data.categories_router, prefix="/api/categories")

# Financial years and income
from cbms.routers import financial_years, income  # noqa: E402

app.include_router(financial_years.router, prefix="/api/financial-years")
app.include_router(income.router, prefix="/api/income")

# Planning: proposals, allocations, amendments
from cbms.routers import allocations, proposals  # noqa: E402

app.include_router(proposals.router, prefix="/api/budget-proposals")
app.include_router(allocations.router, prefix="/api/allocations")
app.include_router(allocations.amendments_router, prefix="/api/allocation-amendments")

# Execution: expenditures and budget overrides
from cbms.routers import expenditures  # noqa: E402

app.include_router(expenditures.router, prefix="/api/expenditures")
app.include_router(expenditures.overrides_router, prefix="/api/budget-overrides")

# Reconciliation and workflow table
from cbms.routers import reconciliation, workflow  # noqa: E402

app.include_router(reconciliation.router, prefix="/api/reconciliation")
app.include_router(workflow.router, prefix="/api/workflow")

# Reports and exports
from cbms.routers import reports  # noqa: E402

app.include_router(reports.router, prefix="/api/reports")

# Cross-cutting: settings, audit, notifications, files
from cbms.routers import audit_logs, files, notifications  # noqa: E402
from cbms.routers import settings as settings_router  # noqa: E402

app.include_router(settings_router.router, prefix="/api/settings")
app.include_router(audit_logs.router, prefix="/api/audit-logs")
app.include_router(notifications.router, prefix="/api/notifications")
app.include_router(files.router, prefix="/api/files")
