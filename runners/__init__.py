"""Node runners, one per workflow node kind."""

from runners.action import ActionRunner
from runners.ai import AiRunner
from runners.base import NodeExecutionResult, NodeRunner
from runners.condition import ConditionRunner
from runners.http_request import HttpRequestRunner
from runners.loop import LoopRunner
from runners.tool import ToolRunner
from runners.transform import TransformRunner
from runners.trigger import TriggerRunner

__all__ = [
    "ActionRunner",
    "AiRunner",
    "ConditionRunner",
    "HttpRequestRunner",
    "LoopRunner",
    "NodeExecutionResult",
    "NodeRunner",
    "ToolRunner",
    "TransformRunner",
    "TriggerRunner",
]
