"""
ledgermatch - FastAPI Backend

Bank reconciliation: transaction matching, autonomous resolution and
learning from reviewer decisions.

Run Instructions:
-----------------
1. Install the package:
   pip install -e .

2. Run the app locally with uvicorn:
   uvicorn main:app --host 0.0.0.0 --port 8000 --reload

3. Test /health endpoint:
   curl http://localhost:8000/health

4. Test reconciliation endpoint:
   curl -X POST http://localhost:8000/engine/reconcile \
     -H "Content-Type: application/json" \
     -d '{"transactions": [...], "entries": [...]}'
"""
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ledgermatch import __version__
from ledgermatch.api import engine_router
from ledgermatch.core.engine import get_engine
from ledgermatch.services.errors import LedgerMatchError, to_http_exception
from ledgermatch.services.logging import log_error, log_request

app = FastAPI(
    title="ledgermatch API",
    description="""
    ledgermatch API - Bank Reconciliation

    ## Matching
    - Two-pass matching of bank transactions to ledger entries
    - Conservative, moderate and aggressive strategies

    ## Autonomous Resolution
    - Duplicate entries, value divergences, learned mapping rules
    - Internal movements set aside, orphan transactions get a ledger entry

    ## Learning
    - Every reviewer decision is recorded
    - Recommended configuration derived from the decision log
    """,
    version=__version__,
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_id = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            log_error("request_exception", str(e), {"path": request.url.path, "method": request.method})
            raise

        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=(time.time() - start_time) * 1000,
            client_id=client_id,
        )
        return response


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerMatchError)
async def ledgermatch_exception_handler(request: Request, exc: LedgerMatchError):
    """Handle LedgerMatchErrors that escape a route with structured responses."""
    log_error(exc.code.value, str(exc), exc.context)
    http_exc = to_http_exception(exc)
    return JSONResponse(status_code=http_exc.status_code, content=exc.to_dict())


app.include_router(engine_router)


@app.get(
    "/health",
    tags=["System"],
    summary="Health Check",
    description="Check API health and version",
)
async def health():
    engine = get_engine()
    return {
        "status": "healthy",
        "version": __version__,
        "strategy": engine.reconciliation_config.strategy.value,
        "learner_trained": engine.learner.trained,
    }
