"""
FastAPI 应用入口

启动时加载会话后端并立即初始化会话；初始化失败则拒绝启动。
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.admin.session import router as admin_session_router
from src.api.public.models import router as models_router
from src.api.public.openai import router as openai_router
from src.config.settings import config
from src.core.exceptions import ProxyException
from src.core.logger import logger, setup_logging
from src.services.session.backend import GenerationBackend, create_backend
from src.services.session.coordinator import SessionCoordinator


async def proxy_exception_handler(request: Request, exc: ProxyException) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_error_body())


def create_app(backend_factory: Optional[Callable[[], GenerationBackend]] = None) -> FastAPI:
    """
    创建应用

    Args:
        backend_factory: 会话后端工厂，默认按 SESSION_BACKEND 加载
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        backend = backend_factory() if backend_factory is not None else create_backend()
        coordinator = SessionCoordinator(backend)
        app.state.coordinator = coordinator
        logger.info("正在初始化会话...")
        await coordinator.initialize()
        logger.info(f"服务已就绪: http://{config.host}:{config.port}")

        yield

        logger.info("正在关闭会话...")
        await coordinator.close()
        app.state.coordinator = None

    app = FastAPI(
        title="WebChat Bridge",
        description="OpenAI-compatible chat completions backed by a browser chat session",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=config.cors_allow_origin_regex,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ProxyException, proxy_exception_handler)

    app.include_router(openai_router)
    app.include_router(models_router)
    app.include_router(admin_session_router)
    return app


app = create_app()


def main() -> None:
    setup_logging()
    uvicorn.run("src.main:app", host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    main()
