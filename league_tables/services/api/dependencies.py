"""FastAPI 依赖注入：从应用状态中取出已组装的引擎组件。"""
from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from league_tables.services.admin import AdminOperationsFacade
from league_tables.services.lifecycle import MatchLifecycleAdapter
from league_tables.services.runtime import TableAutomation


# 引擎在应用启动时组装并挂到 app.state 上
def get_automation(request: Request) -> TableAutomation:
    automation = getattr(request.app.state, "automation", None)
    if automation is None:
        raise HTTPException(status_code=503, detail="Table automation is not initialised")
    return automation


def get_admin_facade(automation: TableAutomation = Depends(get_automation)) -> AdminOperationsFacade:
    return automation.admin


def get_lifecycle_adapter(automation: TableAutomation = Depends(get_automation)) -> MatchLifecycleAdapter:
    return automation.lifecycle
