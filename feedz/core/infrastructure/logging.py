"""Logging configuration with structlog integration.

提供两种日志记录方式：
1. loguru: 用于一般调试日志（各阶段/各 relay 的失败细节）
2. structlog: 用于关键业务事件的结构化日志（发现、解析、同步）
"""

import sys
from typing import Any

import structlog
from loguru import logger

from feedz.core.config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure application logging with structlog and loguru."""
    # 配置 structlog
    _configure_structlog(settings)

    # 配置 loguru
    _configure_loguru(settings)

    logger.info(f"Logging configured with level: {settings.LOG_LEVEL}")


def _configure_structlog(settings: Settings) -> None:
    """配置 structlog 处理器链。"""
    # 根据环境选择渲染器
    if settings.ENVIRONMENT == "local":
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.CallsiteParameterAdder(
                [
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            ),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _get_log_level_number(settings.LOG_LEVEL)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def _configure_loguru(settings: Settings) -> None:
    """配置 loguru。"""
    logger.remove()

    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    # 非本地环境额外写入按天滚动的文件
    if settings.ENVIRONMENT != "local":
        logger.add(
            "logs/feedz_{time:YYYY-MM-DD}.log",
            rotation="00:00",
            retention="30 days",
            level="INFO",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )


def _get_log_level_number(level: str) -> int:
    """将日志级别字符串转换为数字。"""
    levels = {
        "DEBUG": 10,
        "INFO": 20,
        "WARNING": 30,
        "ERROR": 40,
        "CRITICAL": 50,
    }
    return levels.get(level.upper(), 20)


# ============================================================================
# 业务事件日志记录器
# ============================================================================


def get_business_logger() -> structlog.BoundLogger:
    """获取业务事件日志记录器。

    Usage:
        from feedz.core.infrastructure.logging import get_business_logger

        log = get_business_logger()
        log.info("feed_parsed", feed_url="...", item_count=20)
    """
    return structlog.get_logger("business")


class BusinessEvents:
    """业务事件日志助手类。

    提供统一的业务事件日志记录接口，确保事件格式一致。

    Usage:
        from feedz.core.infrastructure.logging import BusinessEvents

        BusinessEvents.feed_discovered(input_url="...", feed_url="...", stage="direct")
    """

    _log = structlog.get_logger("business.events")

    @classmethod
    def feed_discovered(
        cls,
        input_url: str,
        feed_url: str,
        stage: str,
        kind: str | None = None,
        **extra: Any,
    ) -> None:
        """记录订阅源发现成功事件。"""
        cls._log.info(
            "feed_discovered",
            event_type="discovery",
            input_url=input_url,
            feed_url=feed_url,
            stage=stage,
            kind=kind,
            **extra,
        )

    @classmethod
    def feed_discovery_failed(
        cls,
        input_url: str,
        reason: str,
        **extra: Any,
    ) -> None:
        """记录订阅源发现失败（级联耗尽）事件。"""
        cls._log.warning(
            "feed_discovery_failed",
            event_type="discovery",
            input_url=input_url,
            reason=reason,
            **extra,
        )

    @classmethod
    def feed_parsed(
        cls,
        kind: str,
        item_count: int,
        source_url: str | None = None,
        **extra: Any,
    ) -> None:
        """记录订阅源解析事件。"""
        cls._log.info(
            "feed_parsed",
            event_type="parse",
            kind=kind,
            item_count=item_count,
            source_url=source_url,
            **extra,
        )

    @classmethod
    def relay_endpoint_failed(
        cls,
        relay: str,
        operation: str,
        error: str,
        **extra: Any,
    ) -> None:
        """记录单个 relay 失败事件（不影响整体结果）。"""
        cls._log.warning(
            "relay_endpoint_failed",
            event_type="relay_error",
            relay=relay,
            operation=operation,
            error=error,
            **extra,
        )

    @classmethod
    def relay_query_completed(
        cls,
        relays_total: int,
        relays_responded: int,
        event_count: int,
        latency_ms: int,
        **extra: Any,
    ) -> None:
        """记录 relay 查询完成事件。"""
        cls._log.info(
            "relay_query_completed",
            event_type="relay",
            relays_total=relays_total,
            relays_responded=relays_responded,
            event_count=event_count,
            latency_ms=latency_ms,
            **extra,
        )

    @classmethod
    def relay_publish_completed(
        cls,
        event_id: str,
        success: bool,
        relay: str | None = None,
        **extra: Any,
    ) -> None:
        """记录 relay 发布事件。"""
        level = "info" if success else "warning"
        getattr(cls._log, level)(
            "relay_publish_completed",
            event_type="relay",
            event_id=event_id,
            success=success,
            relay=relay,
            **extra,
        )

    @classmethod
    def subscription_list_published(
        cls,
        event_id: str | None,
        rss_count: int,
        nostr_count: int,
        success: bool,
        **extra: Any,
    ) -> None:
        """记录订阅列表发布事件。"""
        level = "info" if success else "warning"
        getattr(cls._log, level)(
            "subscription_list_published",
            event_type="sync",
            event_id=event_id,
            rss_count=rss_count,
            nostr_count=nostr_count,
            success=success,
            **extra,
        )

    @classmethod
    def subscription_list_fetched(
        cls,
        author: str,
        found: bool,
        created_at: int | None = None,
        **extra: Any,
    ) -> None:
        """记录订阅列表拉取事件。"""
        cls._log.info(
            "subscription_list_fetched",
            event_type="sync",
            author=author,
            found=found,
            created_at=created_at,
            **extra,
        )

    @classmethod
    def subscription_merge_completed(
        cls,
        to_add: int,
        local_only: int,
        **extra: Any,
    ) -> None:
        """记录订阅合并事件。"""
        cls._log.info(
            "subscription_merge_completed",
            event_type="sync",
            to_add=to_add,
            local_only=local_only,
            **extra,
        )

    @classmethod
    def feature_degraded(
        cls,
        feature: str,
        reason: str,
        **extra: Any,
    ) -> None:
        """记录功能降级事件。"""
        cls._log.warning(
            "feature_degraded",
            event_type="degradation",
            feature=feature,
            reason=reason,
            **extra,
        )
