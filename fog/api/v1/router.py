# 路由汇总
from fastapi import APIRouter

from fog.api.v1.endpoints import assignments, experiments, results, track

api_router = APIRouter()

# 访客分配 (访问地址: /api/v1/init)
api_router.include_router(assignments.router, prefix="/init", tags=["访客分配"])

# 事件上报 (访问地址: /api/v1/track)
api_router.include_router(track.router, prefix="/track", tags=["事件上报"])

# 实验管理 (访问地址: /api/v1/experiments/...)
api_router.include_router(experiments.router, prefix="/experiments", tags=["实验管理"])

# 实验结果 + 自动决策 (访问地址: /api/v1/results/...)
api_router.include_router(results.router, prefix="/results", tags=["实验结果"])
