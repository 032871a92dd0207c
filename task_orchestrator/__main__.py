"""
启动任务编排服务

    python -m task_orchestrator
"""
import sys

from aiohttp import web
from loguru import logger

from config.settings import settings
from .api import create_app


def main() -> None:
    """启动服务器"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=settings.log_level.upper(),
    )

    app = create_app()

    logger.info(f"🚀 Task Orchestrator starting on http://{settings.api_host}:{settings.api_port}")
    logger.info(f"📖 API Documentation:")
    logger.info(f"   - POST /agent            - 统一入口 (PLAN_TASK / GET_WORKER_TASK / EXECUTE_WORKER_TASK / GET_TASK_STATUS)")
    logger.info(f"   - POST /agent            - 旧版单循环 (START / GET_NEXT_STEP / EXECUTE_STEP)")
    logger.info(f"   - GET  /health           - 健康检查")
    logger.info(f"🌐 浏览器服务: {settings.browser_server_url}")

    web.run_app(app, host=settings.api_host, port=settings.api_port, access_log=None)


if __name__ == "__main__":
    main()
