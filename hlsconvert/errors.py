"""
HLS 转换异常定义

转换流程中各阶段的错误类型。
"""

from typing import List, Optional


class HlsConversionError(Exception):
    """所有转换相关异常的基类"""


class ValidationError(HlsConversionError):
    """输入路径、资源 ID 或转换选项不合法"""


class ProbeError(HlsConversionError):
    """ffprobe 无法读取源文件"""


class TranscodeError(HlsConversionError):
    """单个分辨率转码失败

    Args:
        resolution: 分辨率名称（如 720p）
        message: 错误信息
        native_stderr: 编码器 stderr 末尾内容
    """

    def __init__(self, resolution: str, message: str, native_stderr: Optional[str] = None):
        super().__init__(f"Error processing {resolution}: {message}")
        self.resolution = resolution
        self.message = message
        self.native_stderr = native_stderr


class ConversionError(HlsConversionError):
    """一次转换中所有分辨率结束后的汇总错误"""

    def __init__(self, message: str, failures: Optional[List[TranscodeError]] = None, stage: str = ""):
        super().__init__(message)
        self.failures = list(failures or [])
        self.stage = stage

    @property
    def failed_resolutions(self) -> List[str]:
        return [f.resolution for f in self.failures]


class PlaylistError(HlsConversionError):
    """播放列表读写错误"""


class InvalidPlaylistError(PlaylistError):
    """目标文件不是合法的 master playlist"""


class TaskStoreError(HlsConversionError):
    """任务记录读写失败

    内存中的修改已经生效时，task_id 为对应任务的 ID。
    """

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id
