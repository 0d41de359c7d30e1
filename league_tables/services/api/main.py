"""
FastAPI 应用入口

功能：
1. 路由注册
2. 中间件配置（CORS、Trace ID、请求耗时）
3. 启动时组装积分榜自动化引擎并启动队列，关闭时优雅停止
4. 健康检查
"""
import logging
import time
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from league_tables.infra.db.session import create_engine, create_session_factory, dispose_engine
from league_tables.services.api.routers import matches, tables
from league_tables.services.runtime import build_automation
from league_tables.shared.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=getattr(logging, settings.service.api.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="League Table Automation API",
    docs_url="/docs" if settings.service.api.enable_docs else None,
    redoc_url="/redoc" if settings.service.api.enable_docs else None,
)


# ============ 中间件 ============

@app.middleware("http")
async def trace_id_middleware(request: Request, call_next) -> Response:
    """
    Trace ID 中间件

    沿用调用方传入的 X-Request-ID（CMS 转发时会带上），否则生成新的；
    响应头回写 X-Request-ID 与 X-Process-Time-Ms。
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    started = time.perf_counter()
    context = {"request_id": request_id, "method": request.method, "path": request.url.path}

    try:
        response = await call_next(request)
    except Exception as e:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.error(
            f"[{request_id}] {request.method} {request.url.path} failed after {elapsed_ms}ms: {e}",
            extra={**context, "duration_ms": elapsed_ms},
            exc_info=True,
        )
        raise

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time-Ms"] = str(elapsed_ms)

    # 健康探针请求频繁，降为 debug
    level = logging.DEBUG if request.url.path in ("/health", "/ready") else logging.INFO
    logger.log(
        level,
        f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
        extra={**context, "status_code": response.status_code, "duration_ms": elapsed_ms},
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.service.api.cors_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Process-Time-Ms"],
)


# ============ 路由 ============

app.include_router(tables.router)
app.include_router(matches.router)


# ============ 健康检查 ============

@app.get("/health")
async def health_check():
    """健康检查端点"""
    return {
        "status": "ok",
        "version": settings.app_version,
        "service": "league-tables-api"
    }


@app.get("/ready")
async def readiness_check(response: Response):
    """就绪检查端点：引擎已组装、数据库可连通"""
    checks = {"api": "ok", "automation": "missing", "database": "unknown"}
    automation = getattr(app.state, "automation", None)

    if automation is not None:
        checks["automation"] = "ok"
        try:
            await automation.repository.ping()
            checks["database"] = "ok"
        except Exception as e:
            logger.error(f"Readiness database check failed: {e}")
            checks["database"] = "error"

    ready = checks["automation"] == "ok" and checks["database"] == "ok"
    if not ready:
        response.status_code = 503
    return {
        "status": "ready" if ready else "not_ready",
        "version": settings.app_version,
        "checks": checks,
    }


# ============ 启动事件 ============

@app.on_event("startup")
async def startup_event():
    """应用启动时组装引擎并启动队列（测试中可预先注入 app.state.automation）"""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    if getattr(app.state, "automation", None) is not None:
        return

    engine = create_engine(settings.db.default)
    app.state.engine = engine
    app.state.automation = build_automation(create_session_factory(engine), settings.automation)
    await app.state.automation.start()


@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭时的清理"""
    logger.info(f"Shutting down {settings.app_name}")
    automation = getattr(app.state, "automation", None)
    if automation is not None:
        await automation.shutdown(timeout=settings.automation.queue.job_timeout_seconds)
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await dispose_engine(engine)


# ============ 直接运行 ============

if __name__ == "__main__":
    import uvicorn
    # 从配置中读取 host 和 port
    uvicorn.run(
        app,
        host=settings.service.api.host,
        port=settings.service.api.port
    )
