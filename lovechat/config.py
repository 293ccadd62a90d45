"""应用配置"""
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 应用信息
    APP_NAME: str = "LoveChat"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/lovechat.db"

    # CORS配置
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Supabase 鉴权（只校验 token，不签发）
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    AUTH_TIMEOUT_SEC: float = 10.0

    # 模型供应商默认配置（请求头中的 key 优先）
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    GOOGLE_API_KEY: str = ""
    GOOGLE_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    PROVIDER_TIMEOUT_SEC: float = 60.0

    # 网页搜索（Serper）
    SERPER_API_KEY: str = ""
    SERPER_URL: str = "https://google.serper.dev/search"
    SEARCH_MAX_RESULTS: int = 5

    # 可恢复流
    RESUME_MAX_DURATION_SEC: float = 60.0
    STREAM_STALE_AFTER_SEC: int = 300
    STREAM_SWEEP_INTERVAL_SEC: int = 60
    STREAM_MAX_RESPONSE_CHARS: int = 50000
    STREAM_GUARD_TIMEOUT_SEC: float = 120.0
    STREAM_MAX_REPETITIONS: int = 5
    INTERRUPTION_GRACE_SEC: float = 5.0

    @model_validator(mode="before")
    @classmethod
    def treat_empty_env_as_unset(cls, data):
        """
        将空字符串环境变量按“未配置”处理。
        这样 .env 中留空不会覆盖默认值。
        """
        if not isinstance(data, dict):
            return data

        cleaned = dict(data)
        for field_name, field in cls.model_fields.items():
            # 仅当字段本身有可用默认值时，空字符串才回退到默认值
            if field.default in (None, ""):
                continue
            if cleaned.get(field_name) == "":
                cleaned.pop(field_name, None)

        return cleaned

    @property
    def cors_origins_list(self) -> List[str]:
        """获取CORS允许的源列表"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def auth_enabled(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY)

    class Config:
        env_file = (".env",)
        case_sensitive = True
        extra = "ignore"


# 全局配置实例
settings = Settings()
