"""
HLS 转换数据模型

定义分辨率规格、转码结果和转换结果等数据结构。
"""

import re
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, Tuple

# 码率无法解析时使用的带宽（bits/s）
DEFAULT_BANDWIDTH = 500000

# ffprobe 拿不到码率时使用的码率字符串
DEFAULT_BITRATE = "500k"

_BITRATE_RE = re.compile(r"^\s*(\d{1,12}(?:\.\d{1,6})?)\s*([kKmM]?)\s*$", re.ASCII)
_HEIGHT_LABEL_RE = re.compile(r"^\s*(\d+)[pP]\s*$")
_PIXEL_SIZE_RE = re.compile(r"^\s*(\d+)\s*x\s*(\d+)\s*$")


def compute_bandwidth(bitrate: Optional[str]) -> int:
    """将码率字符串转换为带宽（bits/s）

    "2500k" -> 2500000，"5M" -> 5000000，不带单位的数字按 k 处理。
    无法解析或结果不为正数时返回 DEFAULT_BANDWIDTH。

    Args:
        bitrate: 码率字符串

    Returns:
        带宽（bits/s）
    """
    match = _BITRATE_RE.match(str(bitrate or ""))
    if not match:
        return DEFAULT_BANDWIDTH

    value = float(match.group(1))
    unit = match.group(2).lower()
    multiplier = 1000000 if unit == "m" else 1000
    bandwidth = int(value * multiplier)
    return bandwidth if bandwidth > 0 else DEFAULT_BANDWIDTH


def numeric_height(name: str) -> Optional[int]:
    """从分辨率名称中解析高度（"720p" -> 720）

    只接受 "<数字>p" 形式，"4k" 之类的名称视为非数字，返回 None。
    """
    match = _HEIGHT_LABEL_RE.match(str(name or ""))
    if not match:
        return None
    return int(match.group(1))


def parse_pixel_size(size: str) -> Optional[Tuple[int, int]]:
    """解析 "1280x720" 形式的尺寸，缩放表达式（如 "-2:720"）返回 None"""
    match = _PIXEL_SIZE_RE.match(str(size or ""))
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


@dataclass(frozen=True)
class RenditionSpec:
    """待输出的一个分辨率规格

    创建后不可修改，交给转码 worker 使用。
    """

    name: str
    size: str
    bitrate: str
    is_original: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenditionSpec":
        is_original = data.get("is_original", data.get("isOriginal", False))
        return cls(
            name=str(data["name"]),
            size=str(data["size"]),
            bitrate=str(data["bitrate"]),
            is_original=bool(is_original),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def height(self) -> Optional[int]:
        return numeric_height(self.name)

    @property
    def bandwidth(self) -> int:
        return compute_bandwidth(self.bitrate)


@dataclass
class RenditionResult:
    """单个分辨率转码成功后的结果"""

    name: str
    size: str
    bitrate: str
    bandwidth: int
    playlist_relative_path: str
    is_original: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VideoMetadata:
    """ffprobe 获取到的源视频信息"""

    width: int
    height: int
    bitrate: str
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TranscodeProgress:
    """转码进度事件"""

    resolution: str
    percent: float = 0.0
    out_time: float = 0.0
    speed: str = ""


@dataclass
class MediaTrack:
    """附加到 master playlist 的音频或字幕轨道"""

    lang: str
    name: str
    relative_path: str
    is_default: bool = False
    autoselect: bool = True
    is_forced: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaTrack":
        return cls(
            lang=str(data.get("lang") or data.get("language") or "und"),
            name=str(data["name"]),
            relative_path=str(data.get("relative_path") or data.get("relativePath") or ""),
            is_default=bool(data.get("is_default", data.get("isDefault", False))),
            autoselect=bool(data.get("autoselect", True)),
            is_forced=bool(data.get("is_forced", data.get("isForced", False))),
        )


@dataclass
class ConversionResult:
    """一次完整转换的返回值"""

    message: str
    output_dir: str
    master_playlist_path: str
    master_playlist_url: str
    result: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
