"""
Sentry API Dependencies

Dependency injection for DB sessions and the workflow engine. Both come
from the runtime the lifespan handler stores on ``app.state``.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from inventory.ledger import InventoryLedger
from replenishment.engine import ReplenishmentWorkflowEngine
from replenishment.runtime import WorkflowRuntime


def get_runtime(request: Request) -> WorkflowRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return runtime


async def get_db(runtime: WorkflowRuntime = Depends(get_runtime)) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with runtime.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_workflow_engine(runtime: WorkflowRuntime = Depends(get_runtime)) -> ReplenishmentWorkflowEngine:
    return runtime.workflow


def get_ledger(workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine)) -> InventoryLedger:
    return workflow.ledger
