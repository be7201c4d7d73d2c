"""
Fallback HTTP service.

Runs the pipeline in-process when no enclave is available.

POST /process-intent - Start an execution, returns its executionId
GET /status/{executionId} - Execution status, result or bounded error
GET /health - Liveness check
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import AliasChoices, BaseModel, Field

from .codec import build_intent
from .config import PipelineSettings
from .exceptions import ValidationError, truncate_message
from .jobs.exceptions import JobNotFoundError
from .jobs.local_provider import LocalJobProvider
from .models import JobState, validate_address
from .pipeline import PipelineOrchestrator
from .version import __version__

logger = logging.getLogger(__name__)

router = APIRouter()

# Job states as reported to clients of the service
SERVICE_STATUS = {
    JobState.UNSET: "pending",
    JobState.ACTIVE: "processing",
    JobState.REVEALING: "processing",
    JobState.COMPLETED: "completed",
    JobState.FAILED: "failed",
}


# --- Request/Response Models ---

class ProcessIntentRequest(BaseModel):
    """Transfer request; the vault is the service's own"""
    destination: str = Field(..., validation_alias=AliasChoices("destination", "hlDestination"))
    amount: Union[int, float, str]


class ProcessIntentResponse(BaseModel):
    executionId: str


class StatusResponse(BaseModel):
    executionId: str
    status: str
    step: Optional[str] = None
    result: Optional[dict] = None
    error: Optional[str] = None
    failedStep: Optional[str] = None


# --- Routes ---

@router.post("/process-intent", response_model=ProcessIntentResponse)
def process_intent(body: ProcessIntentRequest, request: Request):
    """Validate the request and start an execution"""
    state = request.app.state
    try:
        intent = build_intent(body.destination, body.amount, state.vault_reference)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=truncate_message(e))

    handle = state.provider.submit_intent(intent)
    return ProcessIntentResponse(executionId=handle)


@router.get("/status/{execution_id}", response_model=StatusResponse)
def get_status(execution_id: str, request: Request):
    """Status of one execution"""
    provider: LocalJobProvider = request.app.state.provider
    try:
        job = provider.status(execution_id)
        proof = provider.get_proof(execution_id) if job.state == JobState.COMPLETED else None
    except JobNotFoundError:
        # Also raised when a finished job expires between the two lookups
        raise HTTPException(status_code=404, detail="Unknown executionId")

    response = StatusResponse(
        executionId=execution_id,
        status=SERVICE_STATUS[job.state],
        step=job.current_step.value if job.current_step else None,
    )
    if job.state == JobState.COMPLETED:
        response.result = proof.to_dict() if proof else None
    elif job.state == JobState.FAILED:
        response.error = truncate_message(job.error or "Execution failed")
        response.failedStep = job.failed_step.value if job.failed_step else None
    return response


@router.get("/health")
def health():
    return {"status": "ok", "version": __version__}


def create_app(provider: LocalJobProvider, vault_reference: str) -> FastAPI:
    """
    Build the fallback service around a job provider.

    Args:
        provider: Provider that runs executions in-process
        vault_reference: Vault every execution redistributes from

    Raises:
        ValidationError: If the vault reference is not a valid address
    """
    vault_reference = validate_address(vault_reference, "vault reference")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting HyperSecret fallback service v%s", __version__)
        yield
        logger.info("Shutting down HyperSecret fallback service")
        provider.close()

    app = FastAPI(
        title="HyperSecret",
        version=__version__,
        description="Fallback execution service for anonymizing transfers",
        lifespan=lifespan,
    )
    app.state.provider = provider
    app.state.vault_reference = vault_reference
    app.include_router(router)
    return app


def serve(settings: PipelineSettings, host: str = "127.0.0.1", port: int = 8000, max_workers: int = 4) -> None:
    """Run the fallback service under uvicorn"""
    if not settings.vault_address:
        raise ValueError("vault_address is required (set VAULT_ADDRESS)")
    provider = LocalJobProvider(PipelineOrchestrator.from_settings(settings), max_workers=max_workers)
    app = create_app(provider, settings.vault_address)
    uvicorn.run(app, host=host, port=port, log_level="info")
