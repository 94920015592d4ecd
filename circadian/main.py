import logging
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from circadian.config import LOG_LEVEL
from circadian.errors import QueryError, SourceFetchError, UnsupportedTypeError
from circadian.routes import events, statistics

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(title="Circadian Query API", version="1.0.0")
app.include_router(events.router)
app.include_router(statistics.router)


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError):
    if isinstance(exc, SourceFetchError):
        status_code = 502
    elif isinstance(exc, UnsupportedTypeError):
        status_code = 501
    else:
        status_code = 500
    logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/health")
def health_check():
    return {"status": "ok"}
