"""
FastAPI 应用入口
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from intrigue.config import settings, validate_config
from intrigue.dependencies import get_registry
from intrigue.routers import duel_router

# 创建 FastAPI 应用
app = FastAPI(
    title="Dynasty Intrigue API",
    description="承诺-揭示密谋对决",
    version="0.1.0",
)

# 配置 CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(duel_router, prefix=settings.api_prefix, tags=["Duel"])


@app.on_event("startup")
async def startup_event():
    """应用启动时的初始化"""
    print("=" * 60)
    print("Dynasty Intrigue 启动中...")
    print("=" * 60)

    if validate_config():
        print("✓ 配置验证通过")
    else:
        print("✗ 配置验证失败，请检查环境变量")

    handle = get_registry().backend_handle
    if handle is not None and handle.is_ready:
        print(f"✓ 执行后端: {handle.endpoint}")
    else:
        print("✗ 执行后端不可用，对局以本地模式运行")

    print("✓ API 文档: http://localhost:8000/docs")
    print("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭时的清理"""
    handle = get_registry().backend_handle
    backend = handle.backend if handle else None
    close = getattr(backend, "aclose", None)
    if close is not None:
        await close()


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": "Dynasty Intrigue API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    registry = get_registry()
    handle = registry.backend_handle
    return {
        "status": "healthy",
        "backend": handle.state.value if handle else "unconfigured",
        "sessions": len(registry),
    }
