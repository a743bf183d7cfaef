"""
爬虫流量识别（只看 User-Agent）

只用于把爬虫事件排除出统计；/init 的分配结果对爬虫不做区别对待。
"""

from __future__ import annotations

import re

BOT_UA_RE = re.compile(
    r"bot|crawler|spider|scraper|googlebot|bingbot|slurp|duckduckbot|baiduspider|"
    r"yandexbot|facebookexternalhit|twitterbot|linkedinbot|whatsapp|telegrambot|"
    r"gptbot|claude-web|anthropic|ccbot|google-extended|perplexitybot|applebot|"
    r"amazonbot|bytespider",
    re.IGNORECASE,
)


def is_bot(user_agent: str | None) -> bool:
    return bool(user_agent) and BOT_UA_RE.search(user_agent) is not None
