import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from gradebook.routes import grades, curriculum, batches

from gradebook.config import settings
from gradebook.exceptions import GradingError
from gradebook.middleware import add_cors_middleware

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="School Grading Engine",
              description="Curriculum-aware grade computation and approval workflow",
              version="1.0.0")
add_cors_middleware(app)


@app.exception_handler(GradingError)
async def grading_error_handler(request: Request, exc: GradingError):
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "errors": exc.errors})


@app.get("/", include_in_schema=False)
async def root():
    """
    Root endpoint that redirects to the API documentation
    """
    return RedirectResponse(url="/docs")

app.include_router(grades.router)
app.include_router(curriculum.router)
app.include_router(batches.router)
