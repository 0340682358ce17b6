import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import WorkflowConfig

logger = logging.getLogger("manuscripts.feeds")


class FeedClient:
    """
    Feed 重建触发器（RSS / OAI-PMH 等由外部服务生成）

    中文注释:
    - 未配置 FEED_REGENERATE_URL 时直接跳过。
    - HTTP 失败直接抛出，由通知分发器统一记录日志。
    """

    def __init__(self, config: Optional[WorkflowConfig] = None, *, timeout: float = 10.0):
        self.config = config or WorkflowConfig.from_env()
        self.timeout = timeout

    def regenerate(self, payload: Dict[str, Any]) -> bool:
        url = self.config.feed_regenerate_url
        if not url:
            logger.info("[Feeds] FEED_REGENERATE_URL not configured, skip")
            return False
        response = httpx.post(url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return True
