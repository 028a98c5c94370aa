import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from funplanet.config.settings import HOST, LOG_LEVEL, PORT, MissingConfigError
from funplanet.middleware.cors import setup_cors
from funplanet.routes import angel, claims, donations, games, uploads, wallet
from funplanet.utils.errors import error_body

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="FUN Planet Rewards API")

setup_cors(app)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, getattr(exc, "extra", None)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content=error_body(f"Invalid {field}: {message}" if field else message))


@app.exception_handler(MissingConfigError)
async def missing_config_handler(request: Request, exc: MissingConfigError):
    logger.error(f"❌ {str(exc)}")
    return JSONResponse(status_code=500, content=error_body("Server configuration error"))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


# Mount routes
app.include_router(claims.router, tags=["claims"])
app.include_router(donations.router, tags=["admin"])
app.include_router(wallet.router, tags=["wallet"])
app.include_router(angel.router, tags=["angel"])
app.include_router(games.router, tags=["games"])
app.include_router(uploads.router, tags=["uploads"])


@app.get("/health")
async def health_check():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
