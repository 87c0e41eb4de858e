"""
FFprobe 媒体信息获取模块

使用 ffprobe 获取源视频的尺寸、码率和时长，
转换开始前必须先拿到这些信息才能规划输出分辨率。
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from .errors import ProbeError
from .models import DEFAULT_BITRATE, VideoMetadata

logger = logging.getLogger(__name__)


class FFprobeRunner:
    """FFprobe 运行器

    以协程方式调用 ffprobe 获取媒体信息。
    """

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: int = 30):
        """初始化 FFprobe 运行器

        Args:
            ffprobe_path: ffprobe 可执行文件路径
            timeout: 超时时间（秒）
        """
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_command(self, path: str):
        return [
            self.ffprobe_path,
            "-hide_banner",
            "-loglevel", "error",
            "-show_format",
            "-show_streams",
            "-print_format", "json",
            path,
        ]

    async def _run(self, path: str) -> Dict[str, Any]:
        """执行 ffprobe 并返回解析后的 JSON

        Raises:
            ProbeError: ffprobe 不存在、超时、退出码非 0 或输出无法解析
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.error("ffprobe executable not found")
            raise ProbeError("ffprobe not found")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(f"ffprobe timeout after {self.timeout}s for {path}")
            raise ProbeError(f"ffprobe timeout ({self.timeout}s)")

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="ignore").strip() or "Unknown ffprobe error"
            logger.warning(f"ffprobe error (code {process.returncode}): {error_msg}")
            raise ProbeError(f"ffprobe failed: {error_msg}")

        try:
            return json.loads(stdout.decode("utf-8", errors="ignore") or "{}")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse ffprobe output: {e}")
            raise ProbeError(f"Failed to parse ffprobe output: {e}")

    async def probe(self, path: str) -> VideoMetadata:
        """获取源视频尺寸和码率

        码率优先取视频流的 bit_rate，其次取容器的 bit_rate，都没有时使用默认值。

        Args:
            path: 源视频路径

        Returns:
            VideoMetadata

        Raises:
            ProbeError: ffprobe 出错、没有流信息或缺少带尺寸的视频流
        """
        raw_info = await self._run(path)
        return parse_video_metadata(raw_info, path)

    async def check_media_type(self, path: str) -> str:
        """判断文件是视频还是音频

        同时存在视频流和音频流时视为视频。

        Returns:
            "video"、"audio"、"unknown" 或 "error"
        """
        try:
            raw_info = await self._run(path)
        except ProbeError as e:
            logger.error(f"ffprobe error checking type for {path}: {e}")
            return "error"

        streams = raw_info.get("streams") or []
        if not streams:
            logger.warning(f"ffprobe returned no stream data for {path}")
            return "unknown"

        codec_types = {stream.get("codec_type") for stream in streams}
        if "video" in codec_types:
            return "video"
        if "audio" in codec_types:
            return "audio"
        return "unknown"


def _format_bitrate(value: Any) -> Optional[str]:
    """把 bits/s 数值转换为 "1234k" 形式，无效值返回 None"""
    try:
        bits = float(value)
    except (TypeError, ValueError):
        return None
    if bits <= 0:
        return None
    return f"{round(bits / 1000)}k"


def parse_video_metadata(raw_info: Dict[str, Any], path: str = "") -> VideoMetadata:
    """从 ffprobe 原始输出中提取视频信息

    Args:
        raw_info: ffprobe JSON 输出
        path: 源文件路径（仅用于错误信息）

    Returns:
        VideoMetadata
    """
    streams = raw_info.get("streams") or []
    if not streams:
        raise ProbeError(f"ffprobe returned no stream data for {path}")

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video_stream is None:
        raise ProbeError("No video stream found")

    width = int(video_stream.get("width") or 0)
    height = int(video_stream.get("height") or 0)
    if not width or not height:
        raise ProbeError("Could not determine video dimensions.")

    format_info = raw_info.get("format") or {}
    bitrate = (
        _format_bitrate(video_stream.get("bit_rate"))
        or _format_bitrate(format_info.get("bit_rate"))
        or DEFAULT_BITRATE
    )

    try:
        duration = float(format_info.get("duration") or video_stream.get("duration") or 0.0)
    except (TypeError, ValueError):
        duration = 0.0

    return VideoMetadata(width=width, height=height, bitrate=bitrate, duration=duration)


def get_ffprobe_runner(ffprobe_path: str = "ffprobe", timeout: int = 30) -> FFprobeRunner:
    """获取 FFprobe 运行器实例"""
    return FFprobeRunner(ffprobe_path, timeout=timeout)
