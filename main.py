"""
Invoice Assistant - Main Application
"""
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables
load_dotenv()

from invoice_assistant.config import get_settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level, logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Import after env loaded
from invoice_assistant.api.routes import router
from invoice_assistant.errors import InvoiceAssistantError
from invoice_assistant.service import get_assistant


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    logger.info("=" * 60)
    logger.info("Invoice Assistant starting...")
    logger.info("=" * 60)

    assistant = get_assistant()
    assistant.db.create_tables()
    logger.info(f"Database initialized: {assistant.settings.database_url}")
    logger.info(
        f"ERP adapter: {assistant.erp.adapter.kind}, "
        f"PO match threshold: {assistant.settings.po_match_threshold}, "
        f"3-way match policy: {assistant.settings.three_way_match_policy}"
    )
    logger.info("Application ready")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="Invoice Assistant",
    description="""
    ## Invoice matching and reconciliation

    Called step by step by an external workflow orchestrator:

    1. **Intake** - create the invoice from a document extraction record
    2. **Supplier** - resolve the vendor by embedding similarity + geographic boosts
    3. **PO match** - match lines to PO lines, consolidate, evaluate the 3-way match
    4. **Validate** - supplier / amount / PO / 3-way checks
    5. **Approval** - record the approver's decision
    6. **Post** - build the supplier invoice and post it to the ERP
    """,
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvoiceAssistantError)
async def invoice_error_handler(request: Request, exc: InvoiceAssistantError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(router, prefix="/api", tags=["Invoice Assistant"])


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "invoice-assistant"}


if __name__ == "__main__":
    import uvicorn
    print("\n" + "=" * 60)
    print("API Docs: http://localhost:8000/docs")
    print("=" * 60 + "\n")
    uvicorn.run(app, host="127.0.0.1", port=8000)
