"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式、投递 worker 状态、磁盘空间。
"""

import shutil

import structlog
from dgworkos.core.store.sqlite_init import verify_wal_mode
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. wal_mode: journal_mode 为 WAL
    3. delivery: 投递 worker 运行中，附带队列长度与通道模式
    4. disk_space_mb: 磁盘剩余空间
    """
    checks: dict = {}
    all_ok = True

    # 1. SQLite 连通性 + WAL
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
        checks["wal_mode"] = "ok" if await verify_wal_mode(store_group.conn) else "disabled"
    except Exception as e:
        log.warning("ready_check_failed", check="sqlite", error=str(e))
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    # 2. 投递 worker
    dispatcher = getattr(request.app.state, "dispatcher", None)
    config = getattr(request.app.state, "delivery_config", None)
    if dispatcher is not None and dispatcher.running:
        checks["delivery"] = {
            "status": "ok",
            "queue_size": dispatcher.queue_size,
            "dropped": dispatcher.dropped,
            "recent_errors": len(dispatcher.errors),
            "email": "smtp" if config is not None and config.email_enabled else "log",
            "push": "webpush" if config is not None and config.push_enabled else "log",
        }
    else:
        checks["delivery"] = {"status": "stopped"}
        all_ok = False

    # 3. 磁盘空间
    try:
        disk_usage = shutil.disk_usage("/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_ok else "not_ready", "checks": checks},
    )
