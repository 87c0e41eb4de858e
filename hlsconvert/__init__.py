"""
HLS 转换服务模块

把上传的视频转换为多码率 HLS，供播放器按网络情况自动切换清晰度。

核心特性：
- 使用 ffprobe 预先获取源视频尺寸和码率
- 源分辨率一定出现在输出中，不超过阈值时直接复制流
- 所有分辨率并发转码，全部结束后统一判断成败
- 按带宽升序生成 master playlist，可事后附加音频/字幕轨道
- 转换任务持久化到 JSON 文件
"""

from .config import ConverterConfig, HlsOptions, get_converter_config
from .errors import (
    ConversionError,
    HlsConversionError,
    InvalidPlaylistError,
    PlaylistError,
    ProbeError,
    TaskStoreError,
    TranscodeError,
    ValidationError,
)
from .models import ConversionResult, MediaTrack, RenditionResult, RenditionSpec
from .task import ConversionTask, TaskStatus
from .store import JsonTaskStore, TaskStoreProtocol
from .playlist import MasterPlaylist, attach_media, parse_master_playlist
from .ffprobe import FFprobeRunner
from .ffmpeg import FFmpegRunner
from .manager import ConversionManager, get_conversion_manager

__all__ = [
    'ConverterConfig',
    'HlsOptions',
    'get_converter_config',
    'HlsConversionError',
    'ValidationError',
    'ProbeError',
    'TranscodeError',
    'ConversionError',
    'PlaylistError',
    'InvalidPlaylistError',
    'TaskStoreError',
    'RenditionSpec',
    'RenditionResult',
    'MediaTrack',
    'ConversionResult',
    'ConversionTask',
    'TaskStatus',
    'TaskStoreProtocol',
    'JsonTaskStore',
    'MasterPlaylist',
    'attach_media',
    'parse_master_playlist',
    'FFprobeRunner',
    'FFmpegRunner',
    'ConversionManager',
    'get_conversion_manager',
]
