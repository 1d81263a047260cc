"""Fleet Import Reconciler - Main Application."""

import logging.config

from fastapi import FastAPI

from fleetrecon.api.routes import agreements, imports, records
from fleetrecon.core.config import settings
from fleetrecon.core.database import Base, SessionLocal, engine
from fleetrecon.core.logging import setup_logging
from fleetrecon.core.logging_config import LOGGING_CONFIG
from fleetrecon.services.assignment.jobs import ImportJobRegistry

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# Create all tables on startup
logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")

# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Imports",
        "description": (
            "Import payment and traffic-fine CSV files (synchronously or as "
            "background jobs), re-submit failed rows, and browse import logs."
        ),
    },
    {
        "name": "Records",
        "description": (
            "Query stored payments and fines, assign unassigned records to an "
            "agreement by hand, and re-run matching over pending records."
        ),
    },
    {
        "name": "Agreements",
        "description": "Agreement balances and the ledger of applied records.",
    },
]


app = FastAPI(
    title="Fleet Import Reconciler",
    description=(
        "## Payment and Traffic-Fine Import API\n\n"
        "This service imports bulk payment exports and traffic-fine feeds for a "
        "vehicle rental fleet, assigns every record to the right rental "
        "agreement, and keeps agreement balances up to date.\n\n"
        "### Assignment Confidence\n"
        "- `exact` - the row carries the agreement number or id\n"
        "- `heuristic` - one agreement matches plate/customer and lease dates\n"
        "- `manual` - assigned by an operator\n"
        "- `none` - left unassigned for review\n\n"
        "### Quick Start\n"
        "```bash\n"
        "# 1. Import a payments file\n"
        "curl -X POST /api/v1/imports/payment -F file=@payments.csv\n\n"
        "# 2. Import a traffic-fines file in the background\n"
        "curl -X POST /api/v1/imports/fine/async -F file=@fines.csv\n\n"
        "# 3. Review what is still unassigned\n"
        "curl '/api/v1/records?assignment_status=unassigned'\n"
        "```\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.import_jobs = ImportJobRegistry(SessionLocal, config=settings)

app.include_router(imports.router, prefix="/api/v1/imports", tags=["Imports"])
app.include_router(records.router, prefix="/api/v1/records", tags=["Records"])
app.include_router(
    agreements.router, prefix="/api/v1/agreements", tags=["Agreements"]
)

logger.info("Fleet Import Reconciler API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint.

    Returns a simple JSON object confirming the service is running.
    Useful for load balancers and monitoring systems.
    """
    return {"status": "healthy", "service": "fleet-import-reconciler"}
