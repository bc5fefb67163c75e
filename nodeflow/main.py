"""Main FastAPI application for the execution engine."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from nodeflow.api.endpoints import init_dependencies, router, ws_router
from nodeflow.api.websocket_manager import WebSocketManager
from nodeflow.config import AppConfig, get_config, validate_config
from nodeflow.core.execution_engine import ExecutionEngine
from nodeflow.core.logging import clear_logging_context, get_logger, set_logging_context, setup_logging
from nodeflow.core.registry import create_default_registry
from nodeflow.storage.database import create_database_engine, create_tables
from nodeflow.storage.repository import ExecutionStore


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the application; components are created in the lifespan."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        validate_config(config)
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count,
        )
        set_logging_context(service=config.app_name, version=config.app_version)
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} {config.app_version}")

        db_engine = create_database_engine(
            config.database_url,
            echo=config.database_echo,
            connect_args=config.get_database_connect_args(),
        )
        create_tables(db_engine)
        logger.info("Database tables created")

        execution_store = ExecutionStore(sessionmaker(autocommit=False, autoflush=False, bind=db_engine))
        websocket_manager = WebSocketManager()
        execution_engine = ExecutionEngine(
            registry=create_default_registry(config),
            config=config,
            execution_store=execution_store,
        )
        execution_engine.subscribe(websocket_manager.handle_debug_event)

        init_dependencies(
            execution_engine=execution_engine,
            execution_store=execution_store,
            websocket_manager=websocket_manager,
        )
        app.state.execution_engine = execution_engine
        app.state.execution_store = execution_store
        logger.info("Core components initialized")

        yield

        logger.info(f"Shutting down {config.app_name}")
        try:
            await execution_engine.shutdown()
            await websocket_manager.shutdown()
        finally:
            init_dependencies(execution_engine=None)
            db_engine.dispose()
            clear_logging_context()

    app = FastAPI(
        title="nodeflow",
        description="Workflow graph execution engine with breakpoints, timeouts and cancellation",
        version=config.app_version,
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(ws_router)

    @app.get("/")
    async def root():
        return {"message": f"{config.app_name} is running"}

    return app


app = create_app()


def run():
    """Serve the application with uvicorn."""
    import uvicorn
    uvicorn.run("nodeflow.main:app", **get_config().get_uvicorn_config())


if __name__ == "__main__":
    run()
