"""FastAPI entrypoint for the exam portal."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from exam_portal.config import settings
from exam_portal.database import create_db_and_tables, engine
from exam_portal.errors import PortalError
from exam_portal.routers import attempts as attempts_router_module
from exam_portal.routers import auth as auth_router_module
from exam_portal.routers import exams as exams_router_module
from exam_portal.routers import monitoring as monitoring_router_module
from exam_portal.routers import questions as questions_router_module
from exam_portal.routers import students as students_router_module
from exam_portal.routers import submissions as submissions_router_module
from exam_portal.services.identity_service import seed_default_admin

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Online Examination Portal")


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    """Rejected operations carry a machine-readable kind and a message."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Turn request-body/query validation failures into the error envelope."""
    errors_dict = {}
    for error in exc.errors():
        field_path = error.get("loc", [])
        field_name = ".".join(str(part) for part in field_path[1:]) or "body"
        if error.get("type") == "missing":
            errors_dict[field_name] = "This field is required."
        else:
            errors_dict[field_name] = error.get("msg", "Invalid input")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "kind": "validation_error", "errors": errors_dict},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "kind": "internal"},
    )


# Session middleware for cookie-based authentication of browser clients
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

# Routers
app.include_router(auth_router_module.router, prefix="/api", tags=["auth"])
app.include_router(students_router_module.router, prefix="/api", tags=["students"])
app.include_router(questions_router_module.router, prefix="/api", tags=["questions"])
app.include_router(exams_router_module.router, prefix="/api", tags=["exams"])
app.include_router(attempts_router_module.router, prefix="/api", tags=["attempts"])
app.include_router(submissions_router_module.router, prefix="/api", tags=["submissions"])
app.include_router(monitoring_router_module.router, prefix="/api", tags=["monitoring"])


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize database schema and seed the default admin."""
    settings.validate()
    create_db_and_tables()
    with Session(engine) as session:
        seed_default_admin(session)
