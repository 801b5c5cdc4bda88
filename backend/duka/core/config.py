from decimal import Decimal
from typing import List, Union
import logging

from pydantic import AnyHttpUrl, Field, validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    PROJECT_NAME: str = "Duka 零售仓储系统"
    API_V1_STR: str = "/api"
    LOG_LEVEL: str = "INFO"

    # CORS配置
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @validator("BACKEND_CORS_ORIGINS", pre=True)
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # 数据库配置
    SQLITE_DATABASE_URI: str = "sqlite:///./duka.db"

    # 收银默认费率（组织未单独设置时使用，全系统只有这一处来源）
    DEFAULT_TAX_RATE: Decimal = Field(default=Decimal("0.025"), ge=0, le=1, description="默认税率")
    DEFAULT_DISCOUNT_RATE: Decimal = Field(default=Decimal("0.10"), ge=0, le=1, description="默认折扣率")
    DEFAULT_CURRENCY: str = "KES"
    DEFAULT_LOW_STOCK_THRESHOLD: int = 10

    # 文件上传
    UPLOAD_DIR: str = "uploads"
    PUBLIC_BASE_URL: str = "http://127.0.0.1:8000"
    MAX_UPLOAD_SIZE_MB: int = 10

    # M-Pesa 配置（沙箱环境）
    MPESA_BASE_URL: str = "https://sandbox.safaricom.co.ke"
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_PASSKEY: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_CALLBACK_URL: str = ""
    MPESA_CALLBACK_TIMEOUT: int = 90  # 等待回调的秒数
    MPESA_HTTP_TIMEOUT: float = 30.0

    # 定时任务配置
    SCHEDULER_ENABLED: bool = True
    CAPACITY_RECONCILE_HOUR: int = 2  # 每天容量对账时间（小时，0-23）
    CAPACITY_RECONCILE_MINUTE: int = 30
    PENDING_CHECKOUT_EXPIRY_MINUTES: int = 15  # 超时未回调的移动支付视为失败

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
logger.info(f"加载配置: API_V1_STR={settings.API_V1_STR}, CORS={settings.BACKEND_CORS_ORIGINS}")
