import logging
import logging.config

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from bookpress.routers.bookmarks import router as bookmarks_router
from bookpress.routers.books import limiter, router as books_router

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "root": {"level": "INFO", "handlers": ["console"]},
        "loggers": {
            "httpx": {"level": "WARNING"},
        },
    }
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Bookpress – EPUB to Telegraph publisher",
    description="Splits an EPUB into size-bounded pages and publishes them as a linked series.",
    version="1.0.0",
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(books_router)
app.include_router(bookmarks_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"message": "Hello from Bookpress"}
