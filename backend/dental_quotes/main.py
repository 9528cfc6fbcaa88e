import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dental_quotes.core.settings import settings, validate_settings
from dental_quotes.db.session import engine
from dental_quotes.models import Base
from dental_quotes.routers.quotes import patient_router as patient_quotes_router
from dental_quotes.routers.quotes import router as quotes_router

app = FastAPI(title="Dental Quotes API", version="0.1.0")
logger = logging.getLogger("dental_quotes.startup")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)
    logger.info(
        "Quote numbering prefix %s, validity %s days.",
        settings.quote_prefix,
        settings.default_validity_days,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(quotes_router)
app.include_router(patient_quotes_router)
