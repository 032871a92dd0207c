"""
执行循环守卫

- RepetitionGuard：记录最近 N 个 (tool, instruction)，同一动作重复出现即判定为循环
- CompletionDetector：决策 LLM 在文本里宣布完成却没有使用 DONE 工具时的补偿判定
- has_possible_loop：给决策 prompt 用的"可能卡住"提示判定

CompletionDetector 是基于短语匹配的启发式，会有误判，可以整体替换成其它判定函数。
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Sequence, Tuple

from .models import Step, Tool

# 完成信号短语（小写匹配）
DEFAULT_COMPLETION_PHRASES: Tuple[str, ...] = (
    "task complete",
    "goal achieved",
    "subtask complete",
)

# "卡住"信号短语
_STUCK_PHRASES: Tuple[str, ...] = (
    "still", "again", "retry", "same", "another attempt", "try once more",
)


@dataclass
class RepetitionGuard:
    """
    动作重复守卫

    每次 check 都会把当前动作记入有界历史；
    若该动作在记录前已出现 max_duplicates 次及以上，返回 True。
    """
    history_size: int = 5
    max_duplicates: int = 2
    _history: Deque[Tuple[Tool, str]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._history = deque(maxlen=self.history_size)

    def check(self, step: Step) -> bool:
        """
        检查并记录动作

        Args:
            step: 决策 LLM 返回的步骤

        Returns:
            bool: 是否判定为重复动作
        """
        key = (step.tool, step.instruction)
        duplicates = sum(1 for item in self._history if item == key)
        self._history.append(key)
        return duplicates >= self.max_duplicates


@dataclass
class CompletionDetector:
    """基于短语匹配的隐式完成判定"""
    phrases: Sequence[str] = DEFAULT_COMPLETION_PHRASES

    def __call__(self, step: Step) -> bool:
        if step.tool == Tool.DONE:
            return False
        text = step.text.lower()
        reasoning = step.reasoning.lower()
        return any(p in text or p in reasoning for p in self.phrases)


def has_possible_loop(steps: Sequence[Step]) -> bool:
    """
    最近 3 步是否像是在原地打转

    同一工具且指令有重复，或文本里出现"again / still / retry"之类的字眼。
    """
    if len(steps) < 3:
        return False

    recent = list(steps)[-3:]
    all_same_tool = all(s.tool == recent[0].tool for s in recent)
    has_repeated_instructions = len({s.instruction for s in recent}) < len(recent)

    contains_stuck_phrases = any(
        phrase in s.text.lower() or phrase in s.reasoning.lower()
        for s in recent
        for phrase in _STUCK_PHRASES
    )
    return (all_same_tool and has_repeated_instructions) or contains_stuck_phrases
