import logging
from textwrap import dedent
from typing import Optional

import pydantic
from fastapi import FastAPI
from fastapi.routing import APIRoute

from documents_api.config.settings import Settings, get_settings
from documents_api.dependencies import StorageEngine, build_engine
from documents_api.errors import (
    StorageError,
    handle_broad_exceptions,
    handle_pydantic_validation_errors,
    handle_storage_errors,
)
from documents_api.routers.documents import router as documents_router
from documents_api.routers.health import router as health_router
from documents_api.routers.storage import router as storage_router

# Set up logging
logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(settings: Optional[Settings] = None, engine: Optional[StorageEngine] = None) -> FastAPI:
    """Create a FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Compliance Documents API",
        summary="Store compliance documents on S3 with local disk fallback",
        version="v1",
        description=dedent(
            """\
        Upload, download and delete employee and location compliance documents.

        | Endpoint group | Notes |
        | --- | --- |
        | `/v1/documents` | Upload, list, download, presigned URLs, delete |
        | `/v1/storage` | Storage status, local to S3 migration, reconciliation |
        | `/health` | Component readiness |
        """
        ),
        docs_url="/",  # its easier to find the docs when they live on the base url
        generate_unique_id_function=custom_generate_unique_id,
    )

    app.state.settings = settings
    logger.info("building storage engine")
    engine = engine or build_engine(settings)
    app.state.engine = engine

    if engine.remote is not None:
        health = engine.remote.health_check()
        if health.healthy:
            logger.info(f"Remote storage ready: {engine.remote.describe()}")
        else:
            logger.warning(f"Remote storage degraded at startup, uploads will use local disk: {health.reason}")

    app.include_router(documents_router, prefix="/v1", tags=["documents"])
    app.include_router(storage_router, prefix="/v1", tags=["storage"])
    app.include_router(health_router, tags=["health"])

    app.add_exception_handler(
        exc_class_or_status_code=StorageError,
        handler=handle_storage_errors,
    )
    app.add_exception_handler(
        exc_class_or_status_code=pydantic.ValidationError,
        handler=handle_pydantic_validation_errors,
    )
    app.middleware("http")(handle_broad_exceptions)

    return app


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    return f"{route.tags[0]}-{route.name}"


if __name__ == "__main__":
    import uvicorn

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
