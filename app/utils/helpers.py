from datetime import datetime, date, timedelta
from typing import Optional, Tuple

import pytz


def format_timestamp(dt: datetime = None) -> str:
    """格式化时间戳"""
    if not dt:
        dt = datetime.now(pytz.utc)
    return dt.astimezone(pytz.utc).replace(tzinfo=None).isoformat() + "Z"


def compute_percent(completed_count: int, total_count: int) -> int:
    """
    计算完成百分比（四舍五入，0.5向上取整）

    总数为0时返回0，结果不超过100。
    """
    if total_count <= 0:
        return 0
    completed_count = max(0, min(completed_count, total_count))
    return (completed_count * 200 + total_count) // (2 * total_count)


def next_streak(current_streak: int, last_day: Optional[date], today: date) -> Tuple[int, bool]:
    """
    计算连续学习天数

    Returns:
        Tuple[int, bool]: (新的连续天数, 今天是否第一次计入)
    """
    if last_day == today:
        return max(current_streak, 1), False
    if last_day == today - timedelta(days=1):
        return current_streak + 1, True
    return 1, True


def level_for_xp(xp: int, xp_per_level: int) -> int:
    """每 xp_per_level 经验升一级，从1级开始"""
    return 1 + max(0, xp) // xp_per_level
