"""
Configuration settings for task orchestrator
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM Configuration（OpenAI 兼容的 /v1/chat/completions 接口）
    llm_api_url: Optional[str] = None
    llm_api_token: Optional[str] = None
    planner_model: str = "gpt-4o"
    worker_model: str = "gpt-4o"
    search_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 60.0
    llm_max_per_minute: int = 20  # 每分钟最多调用 LLM 的次数

    # Browser service Configuration（执行 GOTO / ACT / EXTRACT 等动作的浏览器服务）
    browser_server_url: str = "http://localhost:9222"
    browser_timeout_seconds: float = 120.0

    # Worker loop limits
    max_steps: int = 15  # 单个子任务最多步数
    max_retries: int = 3  # 故障 / 循环检测的重试上限
    loop_history_size: int = 5  # 循环检测记录的最近动作数
    loop_max_duplicates: int = 2  # 同一动作在历史中出现次数达到该值即判定为循环
    retry_pause_seconds: float = 1.0

    # Orchestration
    poll_interval_seconds: float = 1.0
    claim_lease_seconds: float = 600.0  # 认领租约，过期后可重新下发给其他 worker

    # HTTP API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Application Configuration
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
