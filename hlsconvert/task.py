"""
转换任务数据模型

定义转换任务的数据结构和状态流转规则。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class TaskStatus(Enum):
    """任务状态枚举"""
    PENDING = "pending"        # 已创建，等待规划分辨率
    PROCESSING = "processing"  # 转码中
    COMPLETED = "completed"    # 已完成
    FAILED = "failed"          # 失败

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# 允许的状态流转，终态不能再变化
ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING, TaskStatus.FAILED},
    TaskStatus.PROCESSING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class ConversionTask:
    """转换任务

    只由任务存储持有和修改，转换流程通过 id 引用。
    """

    id: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def __post_init__(self):
        """初始化后处理"""
        if isinstance(self.status, str):
            self.status = TaskStatus(self.status)

    def can_transition_to(self, status: TaskStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（用于持久化和 API 响应）"""
        result = {
            "id": self.id,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "data": self.data,
        }
        if self.error:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversionTask":
        return cls(
            id=str(data["id"]),
            status=TaskStatus(data.get("status", "pending")),
            created_at=data.get("createdAt") or _now(),
            updated_at=data.get("updatedAt") or _now(),
            data=dict(data.get("data") or {}),
            error=data.get("error"),
        )
