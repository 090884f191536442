
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from promo_engine.config import LOG_LEVEL
from promo_engine.database import Base, engine
from promo_engine.exceptions import RedemptionError
from promo_engine.models import document  # noqa: F401  registers the documents table
from promo_engine.routers import promo_codes as promo_codes_router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Promo Redemption API",
    description="Validates and redeems promo, referral and salon-referral codes at checkout",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS - keep permissive for demo; restrict in prod
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(promo_codes_router.router)


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.exception_handler(RedemptionError)
async def redemption_error_handler(request: Request, exc: RedemptionError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# Missing/blank code or email is the caller's fault: 400, not FastAPI's default 422
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message.removeprefix("Value error, ")})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("promo_engine.main:app", host="0.0.0.0", port=8000, reload=True)
