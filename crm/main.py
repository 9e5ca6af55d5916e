from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.config import settings
from crm.database import init_db, close_db, get_db
from crm.logging_config import setup_logging
from crm.middleware.correlation import CorrelationIdMiddleware
from crm.services.errors import DocumentError, TemplateRenderError

# Import models so they are registered with Base.metadata
import crm.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_crm", env=settings.ENVIRONMENT)
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: normalize all errors to structured format:
# {"error": {"code": "...", "message": "...", "details": ...}}
# ---------------------------------------------------------------------------

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "AUTH_REQUIRED",
    403: "INSUFFICIENT_PERMISSIONS",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
}


def error_body(code: str, message: str, details=None) -> dict:
    return {"error": {"code": code, "message": message, "details": details}}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        error = detail.get("error", detail)
        content = error_body(
            error.get("code", _STATUS_CODES.get(exc.status_code, "HTTP_ERROR")),
            error.get("message", ""),
            error.get("details"),
        )
    else:
        content = error_body(_STATUS_CODES.get(exc.status_code, "HTTP_ERROR"), str(detail))
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder(
            error_body("VALIDATION_ERROR", "Request validation failed", details)
        ),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning("integrity_error", error=str(exc.orig))
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body("CONFLICT", "The request conflicts with existing data"),
    )


@app.exception_handler(DocumentError)
async def document_error_handler(request: Request, exc: DocumentError) -> JSONResponse:
    if isinstance(exc, TemplateRenderError):
        logger.error("template_render_failed", error=str(exc))
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=status_code, content=error_body(exc.code, str(exc)))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", "Internal server error"),
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
    expose_headers=["Content-Disposition", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from crm.routes.auth import router as auth_router  # noqa: E402
from crm.routes.account import router as account_router  # noqa: E402
from crm.routes.users import router as users_router  # noqa: E402
from crm.routes.companies import router as companies_router  # noqa: E402
from crm.routes.contacts import router as contacts_router  # noqa: E402
from crm.routes.sales_opportunities import router as opportunities_router  # noqa: E402
from crm.routes.quotes import router as quotes_router  # noqa: E402
from crm.routes.contracts import router as contracts_router  # noqa: E402
from crm.routes.projects import router as projects_router  # noqa: E402
from crm.routes.equipment import router as equipment_router  # noqa: E402
from crm.routes.work_records import router as work_records_router  # noqa: E402
from crm.routes.document_templates import router as templates_router  # noqa: E402
from crm.routes.documents import router as documents_router  # noqa: E402
from crm.routes.audit_logs import router as audit_logs_router  # noqa: E402

app.include_router(auth_router, prefix="/auth", tags=["Auth"])
app.include_router(account_router, prefix="/api/v1/account", tags=["Account"])
app.include_router(users_router, prefix="/api/v1/users", tags=["Users"])
app.include_router(companies_router, prefix="/api/v1/companies", tags=["Companies"])
app.include_router(contacts_router, prefix="/api/v1/contacts", tags=["Contacts"])
app.include_router(opportunities_router, prefix="/api/v1/sales-opportunities", tags=["Sales Opportunities"])
app.include_router(quotes_router, prefix="/api/v1/sales-opportunities", tags=["Quotes"])
app.include_router(contracts_router, prefix="/api/v1/sales-opportunities", tags=["Contracts"])
app.include_router(projects_router, prefix="/api/v1/projects", tags=["Projects"])
app.include_router(equipment_router, prefix="/api/v1/equipment", tags=["Equipment"])
app.include_router(documents_router, prefix="/api/v1", tags=["Documents"])
app.include_router(work_records_router, prefix="/api/v1/work-records", tags=["Work Records"])
app.include_router(templates_router, prefix="/api/v1/document-templates", tags=["Document Templates"])
app.include_router(audit_logs_router, prefix="/api/v1/audit-logs", tags=["Audit Logs"])
