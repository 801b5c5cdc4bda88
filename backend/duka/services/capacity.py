"""
仓库容量计算

纯计算：输入已查询好的仓库（含库区、存储单元）和分类用量，
输出各节点使用率与状态，不访问数据库、不修改任何对象。
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from duka.schemas.warehouse import CapacityNode, CapacityReport, CategoryUsage

# 使用率阈值（百分比）
ALERT_THRESHOLD = 90
WARNING_THRESHOLD = 70

_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


def utilization(used, capacity) -> Tuple[float, bool, bool]:
    """
    计算使用率

    返回 (使用率百分比, 是否容量未配置, 是否超容)
    容量为 0 或缺失时不抛异常：使用率记为 0 并标记未配置。
    超容时百分比封顶 100。
    """
    capacity = Decimal(str(capacity or 0))
    used = Decimal(str(used or 0))
    if capacity <= 0:
        return 0.0, True, False
    if used <= 0:
        return 0.0, False, False
    over = used > capacity
    percent = min(used / capacity * _HUNDRED, _HUNDRED)
    return float(percent.quantize(_CENT, rounding=ROUND_HALF_UP)), False, over


def status_for(percent: float) -> str:
    """使用率状态：> 90 告警，> 70 预警，否则正常"""
    if percent > ALERT_THRESHOLD:
        return "alert"
    if percent > WARNING_THRESHOLD:
        return "warning"
    return "normal"


def capacity_node(node_id: int, name: str, capacity, used) -> CapacityNode:
    percent, misconfigured, over = utilization(used, capacity)
    return CapacityNode(
        id=node_id,
        name=name,
        capacity=Decimal(str(capacity or 0)),
        used=Decimal(str(used or 0)),
        utilization=percent,
        status=status_for(percent),
        misconfigured=misconfigured,
        over_capacity=over,
    )


def category_usage(rows: Iterable[Tuple[Optional[int], Optional[str], int]]) -> List[CategoryUsage]:
    """
    分类用量占比

    rows: (分类ID, 分类名称, 该分类在仓库中的批次数量合计)
    """
    rows = [(cid, name, int(qty or 0)) for cid, name, qty in rows]
    total = sum(qty for _, _, qty in rows if qty > 0)
    result = []
    for cid, name, qty in rows:
        share = 0.0
        if total > 0 and qty > 0:
            share = float((Decimal(qty) / Decimal(total) * _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP))
        result.append(CategoryUsage(
            category_id=cid,
            category_name=name or "未分类",
            quantity=qty,
            share=share,
        ))
    result.sort(key=lambda c: c.quantity, reverse=True)
    return result


def build_capacity_report(location, category_rows=()) -> CapacityReport:
    """
    仓库容量报告

    location 需已加载 zones 和 units 关系
    """
    return CapacityReport(
        warehouse=capacity_node(location.id, location.name, location.total_capacity, location.capacity_used),
        zones=[capacity_node(z.id, z.name, z.capacity, z.capacity_used) for z in location.zones],
        units=[capacity_node(u.id, u.name, u.capacity, u.capacity_used) for u in location.units],
        categories=category_usage(category_rows),
    )
