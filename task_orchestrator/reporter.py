"""
报告生成器 - 用户友好回复

将任务图的执行结果转换为文本报告。
"""
from typing import List

from .models import Subtask, SubtaskStatus, Task, TaskStatus

_STATUS_ICONS = {
    SubtaskStatus.PENDING: "⏸️",
    SubtaskStatus.IN_PROGRESS: "⏳",
    SubtaskStatus.DONE: "✅",
    SubtaskStatus.FAILED: "❌",
}


async def report(task: Task) -> str:
    """
    生成任务执行报告

    Args:
        task: 任务

    Returns:
        str: 首行为整体结论，其后每个子任务一行
    """
    if task.status == TaskStatus.DONE:
        headline = f"✅ 任务已完成：{task.goal}"
    elif task.status == TaskStatus.FAILED:
        headline = f"❌ 任务执行失败：{task.goal}"
    else:
        headline = f"⏳ 任务仍在处理中：{task.goal}"

    lines: List[str] = [headline]
    lines.extend(_format_subtask(s) for s in task.subtasks)
    return "\n".join(lines)


def _format_subtask(subtask: Subtask) -> str:
    line = f"{_STATUS_ICONS[subtask.status]} {subtask.id}: {subtask.goal}"
    result = subtask.result
    if result is None:
        return line
    if subtask.status == SubtaskStatus.FAILED and result.error:
        return f"{line}（{result.error}）"
    if result.extraction is not None:
        return f"{line} → {result.extraction}"
    if result.steps and result.steps[-1].instruction:
        return f"{line} → {result.steps[-1].instruction}"
    return line
