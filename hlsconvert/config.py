"""
HLS 转换配置模块

定义转换选项和服务配置的默认值，并负责合并、校验用户传入的选项。
"""

import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from .errors import ValidationError
from .models import RenditionSpec

BASE_URL = "http://localhost:4000/stream-resource/"

# 驼峰命名（前端/旧配置使用）到字段名的映射
_OPTION_ALIASES = {
    "hlsTime": "hls_time",
    "hlsPlaylistType": "hls_playlist_type",
    "copyCodecsThresholdHeight": "copy_codecs_threshold_height",
    "audioCodec": "audio_codec",
    "audioBitrate": "audio_bitrate",
    "videoCodec": "video_codec",
    "videoProfile": "video_profile",
    "gopSize": "gop_size",
    "proxyBaseUrlTemplate": "proxy_base_url_template",
    "masterPlaylistName": "master_playlist_name",
    "segmentNameTemplate": "segment_name_template",
    "resolutionPlaylistName": "resolution_playlist_name",
    "audioPlaylistName": "audio_playlist_name",
    "audioSegmentNameTemplate": "audio_segment_name_template",
}

PLAYLIST_TYPES = ("vod", "event")

# 分辨率名称同时是输出子目录名
RENDITION_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass
class HlsOptions:
    """HLS 转换选项

    所有字段都有默认值，单次转换可以通过 merged() 覆盖部分字段。
    """

    # 用户定义的分辨率列表
    resolutions: List[RenditionSpec] = field(default_factory=list)

    # HLS 切片参数
    hls_time: int = 10  # 切片时长（秒）
    hls_playlist_type: str = "vod"

    # 原始分辨率不超过该高度时直接复制流，不重新编码
    copy_codecs_threshold_height: int = 720

    # 音频编码参数
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"

    # 视频编码参数
    video_codec: str = "h264"
    video_profile: str = "main"
    crf: int = 20
    gop_size: int = 48

    # 输出命名
    proxy_base_url_template: str = BASE_URL + "{basePath}{assetId}/"
    master_playlist_name: str = "master.m3u8"
    segment_name_template: str = "segment%03d.ts"
    resolution_playlist_name: str = "playlist.m3u8"
    audio_playlist_name: str = "audio.m3u8"
    audio_segment_name_template: str = "segment%03d.aac"

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "HlsOptions":
        """合并覆盖选项，返回新的 HlsOptions（不修改自身）

        Args:
            overrides: 覆盖选项，支持下划线和驼峰两种键名

        Returns:
            合并后的 HlsOptions

        Raises:
            ValidationError: 存在未知选项或取值非法
        """
        if not overrides:
            return replace(self)

        known = {f.name for f in fields(self)}
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown HLS option: {key}")
            if name == "resolutions":
                value = _parse_resolutions(value)
            changes[name] = value

        return replace(self, **changes)

    def validate(self) -> "HlsOptions":
        """校验选项取值，合法时返回自身"""
        if not isinstance(self.hls_time, int) or self.hls_time <= 0:
            raise ValidationError(f"hls_time must be a positive integer, got {self.hls_time!r}")
        if self.hls_playlist_type not in PLAYLIST_TYPES:
            raise ValidationError(f"hls_playlist_type must be one of {PLAYLIST_TYPES}, got {self.hls_playlist_type!r}")
        if not isinstance(self.copy_codecs_threshold_height, int) or self.copy_codecs_threshold_height < 0:
            raise ValidationError("copy_codecs_threshold_height must be a non-negative integer")
        if not isinstance(self.crf, int) or not 0 <= self.crf <= 51:
            raise ValidationError(f"crf must be between 0 and 51, got {self.crf!r}")
        if not isinstance(self.gop_size, int) or self.gop_size <= 0:
            raise ValidationError(f"gop_size must be a positive integer, got {self.gop_size!r}")

        for name in (
            "audio_codec", "audio_bitrate", "video_codec", "video_profile",
            "proxy_base_url_template", "master_playlist_name", "segment_name_template",
            "resolution_playlist_name", "audio_playlist_name", "audio_segment_name_template",
        ):
            if not getattr(self, name):
                raise ValidationError(f"{name} must not be empty")

        seen_names = set()
        for index, spec in enumerate(self.resolutions):
            if not spec.name or not spec.size or not spec.bitrate:
                raise ValidationError(f"Invalid resolution at index {index}")
            if not RENDITION_NAME_RE.fullmatch(spec.name):
                raise ValidationError(f"Invalid resolution name {spec.name!r} at index {index}")
            if spec.name in seen_names:
                raise ValidationError(f"Duplicate resolution name {spec.name!r}")
            seen_names.add(spec.name)
        return self


def _parse_resolutions(value: Any) -> List[RenditionSpec]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("resolutions must be a list")

    specs = []
    for index, item in enumerate(value):
        if isinstance(item, RenditionSpec):
            specs.append(item)
            continue
        if not isinstance(item, dict) or not all(item.get(k) for k in ("name", "size", "bitrate")):
            raise ValidationError(f"Invalid resolution at index {index}")
        specs.append(RenditionSpec.from_dict(item))
    return specs


@dataclass
class ConverterConfig:
    """转换服务配置

    从全局配置的 "hls" 段读取，未配置的项使用默认值。
    """

    # 目录配置
    processed_dir: str = "processed_videos"
    videos_dir: str = "videos"
    tasks_file: str = "data/hls_tasks.json"

    # 外部工具
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout: int = 30  # ffprobe 探测超时时间（秒）
    loglevel: str = "error"  # FFmpeg 日志级别

    # 默认转换选项
    options: HlsOptions = field(default_factory=HlsOptions)

    @classmethod
    def from_app_config(cls, app_config: dict) -> "ConverterConfig":
        """从应用配置创建 ConverterConfig

        Args:
            app_config: 全局配置字典

        Returns:
            ConverterConfig 实例
        """
        hls_config = (app_config or {}).get("hls", {}) or {}

        config = cls()

        if "processed_dir" in hls_config:
            config.processed_dir = hls_config["processed_dir"]
        if "videos_dir" in hls_config:
            config.videos_dir = hls_config["videos_dir"]
        if "tasks_file" in hls_config:
            config.tasks_file = hls_config["tasks_file"]

        if "ffmpeg_path" in hls_config:
            config.ffmpeg_path = hls_config["ffmpeg_path"] or "ffmpeg"
        if "ffprobe_path" in hls_config:
            config.ffprobe_path = hls_config["ffprobe_path"] or "ffprobe"
        if "probe_timeout" in hls_config:
            config.probe_timeout = int(hls_config["probe_timeout"] or 30)
        if "loglevel" in hls_config:
            config.loglevel = hls_config["loglevel"]

        # 转换选项
        option_overrides = hls_config.get("options", {}) or {}
        config.options = HlsOptions().merged(option_overrides).validate()

        return config

    def get_output_dir(self, asset_id: str) -> str:
        """获取资源的输出目录

        Args:
            asset_id: 资源 ID（如 season/episode）

        Returns:
            输出目录路径
        """
        return os.path.join(self.processed_dir, asset_id)


def get_converter_config(app_config: dict) -> ConverterConfig:
    """获取转换服务配置的便捷函数"""
    return ConverterConfig.from_app_config(app_config)
