from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID


def generate_doi(
    *,
    submission_id: str | UUID,
    prefix: str = "10.5555",
    journal_slug: str = "journal",
    year: int | None = None,
) -> str:
    """
    DOI 字符串生成

    规则:
    - 格式: {prefix}/{journal_slug}.{year}.{8_char_uuid}
    - 8_char_uuid 取投稿 UUID 的前 8 位（去掉短横线后）
    - 全局唯一性由 DOI 注册方保证；这里只负责生成确定性的候选值
    """
    year = year or datetime.now(timezone.utc).year
    short = str(submission_id).replace("-", "")[:8].lower() or "unknown"
    slug = (journal_slug or "journal").strip().lower()
    return f"{prefix.rstrip('/')}/{slug}.{year}.{short}"
