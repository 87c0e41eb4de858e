"""
转换任务存储

内存字典 + JSON 文件镜像，每次修改后整体重写文件。
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from .errors import TaskStoreError
from .task import ConversionTask, TaskStatus

logger = logging.getLogger(__name__)


class TaskStoreProtocol(Protocol):
    """任务存储需要实现的接口"""

    def create(self, metadata: Dict[str, Any]) -> str:
        """创建 pending 状态的任务并返回 id。"""

    def set_status(
        self,
        task_id: str,
        status: TaskStatus,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        """更新任务状态，可同时合并 data。非法流转返回 False。"""

    def get(self, task_id: str) -> Optional[ConversionTask]:
        """返回任务副本，不存在返回 None。"""

    def list_by_status(self, status: TaskStatus) -> List[ConversionTask]:
        """返回指定状态的任务。"""

    def list_all(self) -> List[ConversionTask]:
        """返回全部任务。"""


class JsonTaskStore:
    """基于 JSON 文件的任务存储

    写穿透：每次修改后把整个字典写入临时文件再 os.replace，
    崩溃最多丢失最后一次修改，不会破坏已有内容。
    """

    def __init__(self, file_path: str = "data/hls_tasks.json"):
        """初始化任务存储

        Args:
            file_path: JSON 文件路径
        """
        self.file_path = file_path
        self.tasks: Dict[str, ConversionTask] = {}
        self.lock = threading.RLock()
        self._last_id = 0
        self._load()

    def _load(self):
        """加载已有任务，文件损坏时记录错误并从空开始"""
        if not os.path.exists(self.file_path):
            return
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            for task_id, item in (raw or {}).items():
                self.tasks[task_id] = ConversionTask.from_dict(item)
            logger.info(f"Loaded {len(self.tasks)} task(s) from {self.file_path}")
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Error loading tasks from {self.file_path}: {e}")
            self.tasks = {}

        for task_id in self.tasks:
            if task_id.isdigit():
                self._last_id = max(self._last_id, int(task_id))

    def _flush(self, task_id: Optional[str] = None):
        """把内存中的任务整体写入文件

        Raises:
            TaskStoreError: 写入失败
        """
        payload = {key: task.to_dict() for key, task in self.tasks.items()}
        tmp_path = f"{self.file_path}.tmp"
        try:
            directory = os.path.dirname(self.file_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.file_path)
        except (OSError, TypeError, ValueError) as e:
            raise TaskStoreError(f"Failed to save tasks to {self.file_path}: {e}", task_id=task_id)

    def _generate_task_id(self) -> str:
        """生成递增的时间戳 ID"""
        task_id = max(time.time_ns(), self._last_id + 1)
        self._last_id = task_id
        return str(task_id)

    def create(self, metadata: Dict[str, Any]) -> str:
        with self.lock:
            task_id = self._generate_task_id()
            self.tasks[task_id] = ConversionTask(id=task_id, data=copy.deepcopy(metadata or {}))
            self._flush(task_id)
        logger.info(f"Task {task_id} created")
        return task_id

    def set_status(
        self,
        task_id: str,
        status: TaskStatus,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        if not task_id:
            logger.warning("Attempted to update task status with no task id")
            return False

        with self.lock:
            task = self.tasks.get(task_id)
            if task is None:
                logger.warning(f"Task {task_id} not found")
                return False
            if not task.can_transition_to(status):
                logger.warning(f"Task {task_id}: invalid transition {task.status.value} -> {status.value}")
                return False

            task.status = status
            task.updated_at = datetime.now().isoformat()
            if data:
                task.data.update(copy.deepcopy(data))
            if error:
                task.error = error
            self._flush(task_id)

        logger.info(f"Task {task_id} status updated to: {status.value}")
        return True

    def get(self, task_id: str) -> Optional[ConversionTask]:
        with self.lock:
            task = self.tasks.get(task_id)
            return copy.deepcopy(task) if task else None

    def list_by_status(self, status: TaskStatus) -> List[ConversionTask]:
        with self.lock:
            return [copy.deepcopy(t) for t in self.tasks.values() if t.status == status]

    def list_all(self) -> List[ConversionTask]:
        with self.lock:
            return [copy.deepcopy(t) for t in self.tasks.values()]


def get_task_store(file_path: str) -> JsonTaskStore:
    """获取任务存储实例"""
    return JsonTaskStore(file_path)
