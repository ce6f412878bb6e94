import logging

from fastapi import APIRouter, Depends

from documents_api.dependencies import StorageEngine, get_engine
from documents_api.errors import StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health_check(engine: StorageEngine = Depends(get_engine)):
    """
    Health check endpoint for monitoring API status and component readiness.

    Returns status of API, metadata store and both storage backends along with
    deployment mode. A degraded remote backend does not make the service unready,
    uploads then go to local disk.
    """
    health_status = {
        "status": "ok",
        "deployment_mode": engine.settings.deployment_mode,
        "components": {
            "api": "ready",
            "database": "initializing",
            "local_storage": "initializing",
            "remote_storage": "not configured",
        },
        "ready": False
    }

    # Check database status
    try:
        engine.store.check_connection()
        health_status["components"]["database"] = "ready"
    except StorageError as e:
        health_status["components"]["database"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    local_health = engine.local.health_check()
    if local_health.healthy:
        health_status["components"]["local_storage"] = "ready"
    else:
        health_status["components"]["local_storage"] = f"error: {local_health.reason}"
        health_status["status"] = "degraded"

    if engine.remote is not None:
        remote_health = engine.remote.health_check()
        if remote_health.healthy:
            health_status["components"]["remote_storage"] = "ready"
        else:
            health_status["components"]["remote_storage"] = f"degraded: {remote_health.reason}"
            health_status["status"] = "degraded"

    # Overall ready status
    health_status["ready"] = all(
        health_status["components"][comp] == "ready"
        for comp in ["api", "database", "local_storage"]
    )

    return health_status
