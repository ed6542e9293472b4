import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from crawlkit.errors import CrawlError
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .routes import router
from .schemas import ErrorResponse

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="crawlkit",
    description=(
        "Crawls web pages and whole sites, following redirects under a same-domain policy, "
        "and returns each page's extracted fields, visible text sentences and internal/external links."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# middleware stack: outermost runs first on request, last on response
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(CrawlError)
async def crawl_error_handler(request: Request, exc: CrawlError):
    # contract errors from the engine (bad url, bad selector) are the caller's fault
    logger.info("Rejected %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(detail=str(exc), code=type(exc).__name__).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=str(exc.detail), code=f"http_{exc.status_code}").model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(detail="An unexpected error occurred.", code="internal_error").model_dump(),
    )


app.include_router(router)
