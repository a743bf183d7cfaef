# 依赖注入：按请求组装仓储与服务，测试里通过 dependency_overrides 替换
from fastapi import Depends, Request

from fog.abtest.analytics import (
    AggregationSource,
    AnalyticsEngineClient,
    AnalyticsEventWriter,
    EventSink,
)
from fog.abtest.auto_ramp import AutoRampEvaluator
from fog.abtest.auto_stop import AutoStopEvaluator
from fog.abtest.identity import DailySaltCache, SaltProvider
from fog.abtest.repository import ExperimentRepository, FogKeys, RampCounterRepository
from fog.core.config import settings
from fog.core.redis_client import RedisClient, get_redis_client
from fog.services import AssignmentService, ExperimentService, ResultsService, TrackService


def get_keys() -> FogKeys:
    return FogKeys.with_prefix(settings.FOG_KEY_PREFIX)


def get_experiment_repository(
    redis_client: RedisClient = Depends(get_redis_client),
    keys: FogKeys = Depends(get_keys),
) -> ExperimentRepository:
    return ExperimentRepository(redis_client, keys=keys)


def get_ramp_counter_repository(
    redis_client: RedisClient = Depends(get_redis_client),
    keys: FogKeys = Depends(get_keys),
) -> RampCounterRepository:
    return RampCounterRepository(redis_client, keys=keys)


def get_aggregation_source() -> AggregationSource:
    return AnalyticsEngineClient(
        settings.ANALYTICS_SQL_URL,
        settings.ANALYTICS_API_TOKEN,
        dataset=settings.ANALYTICS_DATASET,
        timeout=settings.ANALYTICS_TIMEOUT_SECONDS,
    )


def get_event_sink() -> EventSink:
    return AnalyticsEventWriter(
        settings.ANALYTICS_WRITE_URL,
        settings.ANALYTICS_API_TOKEN,
        dataset=settings.ANALYTICS_DATASET,
        timeout=settings.ANALYTICS_TIMEOUT_SECONDS,
    )


def get_salt_cache(request: Request) -> DailySaltCache:
    # 缓存对象随应用创建（见 main.py 的 startup），不是模块级全局变量
    return request.app.state.salt_cache


def get_experiment_service(
    repo: ExperimentRepository = Depends(get_experiment_repository),
) -> ExperimentService:
    return ExperimentService(repo)


def get_results_service(
    repo: ExperimentRepository = Depends(get_experiment_repository),
    counters: RampCounterRepository = Depends(get_ramp_counter_repository),
    aggregation: AggregationSource = Depends(get_aggregation_source),
) -> ResultsService:
    return build_results_service(aggregation, repo, counters)


def get_assignment_service(
    redis_client: RedisClient = Depends(get_redis_client),
    repo: ExperimentRepository = Depends(get_experiment_repository),
    keys: FogKeys = Depends(get_keys),
    cache: DailySaltCache = Depends(get_salt_cache),
) -> AssignmentService:
    return AssignmentService(repo, SaltProvider(redis_client, cache, keys))


def get_track_service(
    redis_client: RedisClient = Depends(get_redis_client),
    repo: ExperimentRepository = Depends(get_experiment_repository),
    keys: FogKeys = Depends(get_keys),
    cache: DailySaltCache = Depends(get_salt_cache),
    sink: EventSink = Depends(get_event_sink),
) -> TrackService:
    return TrackService(repo, sink, SaltProvider(redis_client, cache, keys))


def build_results_service(
    aggregation: AggregationSource,
    repo: ExperimentRepository,
    counters: RampCounterRepository,
) -> ResultsService:
    auto_stop = AutoStopEvaluator(
        repo,
        upper=settings.AUTO_STOP_UPPER,
        lower=settings.AUTO_STOP_LOWER,
    )
    auto_ramp = AutoRampEvaluator(
        repo,
        counters,
        threshold=settings.RAMP_THRESHOLD,
        consecutive_required=settings.RAMP_CONSECUTIVE_REQUIRED,
        schedule=settings.RAMP_SCHEDULE,
    )
    return ResultsService(
        aggregation,
        repo,
        auto_stop,
        auto_ramp,
        samples=settings.MONTE_CARLO_SAMPLES,
        timeout_seconds=settings.EVALUATION_TIMEOUT_SECONDS,
    )


def request_ip(request: Request) -> str:
    # 边缘代理透传的真实客户端 IP 优先
    return request.headers.get("CF-Connecting-IP") or (request.client.host if request.client else "")
