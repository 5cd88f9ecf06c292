"""
Secure Mint HTTP front door.

Thin FastAPI adapter over the workflow orchestrator. It holds no logic
beyond mapping a WorkflowResult onto an HTTP status:

    SUCCESS                          200
    MALFORMED_INSTRUCTION            422
    RESERVE_REJECTED / POLICY_...    409
    duplicate in flight              409
    any other infrastructure failure 502
"""

import logging
import threading
from typing import Any, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .baskets import BasketRegistry, JsonFileBasketRegistry
from .config import BASKET_REGISTRY_PATH, is_production, load_workflow_config
from .errors import ConfigurationError, FailureCode
from .workflow import ResultKind, WorkflowOrchestrator, WorkflowResult, build_orchestrator

logger = logging.getLogger(__name__)


def status_for(result: WorkflowResult) -> int:
    if result.kind == ResultKind.SUCCESS:
        return 200
    if result.kind == ResultKind.MALFORMED_INSTRUCTION:
        return 422
    if result.is_business_rejection or result.failure_code == FailureCode.DUPLICATE_IN_FLIGHT:
        return 409
    return 502


def create_app(
    orchestrator: Optional[WorkflowOrchestrator] = None,
    registry: Optional[BasketRegistry] = None
) -> FastAPI:
    """
    Build the HTTP app.

    Without an injected orchestrator, one is built from the workflow
    configuration file on first use.
    """
    app = FastAPI(title="Secure Mint", docs_url=None if is_production() else "/docs")
    state = {"orchestrator": orchestrator, "registry": registry}
    lock = threading.RLock()

    def get_registry() -> BasketRegistry:
        with lock:
            if state["registry"] is None:
                state["registry"] = JsonFileBasketRegistry(BASKET_REGISTRY_PATH)
            return state["registry"]

    def get_orchestrator() -> WorkflowOrchestrator:
        with lock:
            if state["orchestrator"] is None:
                try:
                    config = load_workflow_config()
                    state["orchestrator"] = build_orchestrator(config, registry=get_registry())
                except ConfigurationError as e:
                    logger.error("Workflow not configured: %s", e.message)
                    raise HTTPException(503, "NOT_CONFIGURED")
            return state["orchestrator"]

    @app.get("/health")
    def health():
        return {"status": "ok", "configured": state["orchestrator"] is not None}

    @app.post("/instructions")
    def submit_instruction(payload: Any = Body(...)):
        result = get_orchestrator().run(payload)
        return JSONResponse(status_code=status_for(result), content=result.to_dict())

    @app.get("/baskets")
    def list_baskets():
        return [record.to_dict() for record in get_registry().list()]

    return app


app = create_app()
