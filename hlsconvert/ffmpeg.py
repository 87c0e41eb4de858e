"""
FFmpeg 进程管理模块

负责构建 HLS 切片命令、以协程方式执行 FFmpeg 并解析进度。
"""

import asyncio
import logging
import os
import re
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

from .config import HlsOptions
from .errors import TranscodeError
from .models import (
    RenditionResult,
    RenditionSpec,
    TranscodeProgress,
    compute_bandwidth,
    numeric_height,
    parse_pixel_size,
)

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[TranscodeProgress], None]

_PROGRESS_KV = re.compile(r"^([a-z_]+)=(.*)$")
_OUT_TIME_RE = re.compile(r"^(\d+):(\d+):(\d+(?:\.\d+)?)$")

# 保留的 stderr 行数
STDERR_TAIL_LINES = 50


def scale_filter(spec: RenditionSpec) -> Optional[str]:
    """获取缩放参数

    "1280x720" -> "1280:720"；包含 ":" 的缩放表达式原样使用；
    其他情况按名称中的高度等比缩放，名称无法解析时不缩放。
    """
    pixel_size = parse_pixel_size(spec.size)
    if pixel_size:
        return f"{pixel_size[0]}:{pixel_size[1]}"
    if ":" in spec.size:
        return spec.size
    height = numeric_height(spec.name)
    if height:
        return f"-2:{height}"
    return None


def parse_out_time(value: str) -> float:
    """解析 -progress 输出中的 out_time（HH:MM:SS.micro）"""
    match = _OUT_TIME_RE.match(value.strip())
    if not match:
        return 0.0
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def apply_progress_line(line: str, progress: TranscodeProgress, duration: float) -> bool:
    """解析一行 -progress 输出并更新进度

    Args:
        line: "key=value" 形式的一行
        progress: 进度对象
        duration: 源视频时长（秒），未知时为 0

    Returns:
        是否是一个完整进度块的结束（progress=continue/end）
    """
    match = _PROGRESS_KV.match(line.strip())
    if not match:
        return False

    key, value = match.group(1), match.group(2).strip()
    if key in ("out_time_us", "out_time_ms"):
        # ffmpeg 的 out_time_ms 实际单位也是微秒
        try:
            progress.out_time = max(progress.out_time, int(value) / 1000000)
        except ValueError:
            pass
    elif key == "out_time":
        progress.out_time = max(progress.out_time, parse_out_time(value))
    elif key == "speed":
        progress.speed = value
    elif key == "progress":
        if value == "end":
            progress.percent = 100.0
        elif duration > 0:
            progress.percent = min(99.9, progress.out_time / duration * 100)
        return True
    return False


class FFmpegRunner:
    """FFmpeg 运行器

    只对外提供两种操作：分辨率切片（复制或重新编码）和音频切片。
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", loglevel: str = "error"):
        """初始化 FFmpeg 运行器

        Args:
            ffmpeg_path: ffmpeg 可执行文件路径
            loglevel: FFmpeg 日志级别
        """
        self.ffmpeg_path = ffmpeg_path
        self.loglevel = loglevel

    def _base_command(self, input_path: str) -> List[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.loglevel,
            "-nostats",
            "-progress", "pipe:1",
            "-y",
            "-i", input_path,
        ]

    def _get_copy_params(self) -> List[str]:
        """复制流参数（不重新编码）"""
        return ["-c:v", "copy", "-c:a", "copy"]

    def _get_encode_params(self, spec: RenditionSpec, options: HlsOptions) -> List[str]:
        """获取重新编码参数

        maxrate/bufsize 按目标带宽的 1.2 倍和 1.5 倍计算。
        """
        bandwidth = compute_bandwidth(spec.bitrate)
        params = []

        scale = scale_filter(spec)
        if scale:
            params.extend(["-vf", f"scale={scale}"])

        # 音频编码
        params.extend([
            "-c:a", options.audio_codec,
            "-ar", "48000",
            "-b:a", options.audio_bitrate,
        ])

        # 视频编码
        params.extend([
            "-c:v", options.video_codec,
            "-profile:v", options.video_profile,
            "-crf", str(options.crf),
            "-sc_threshold", "0",
            "-g", str(options.gop_size),
            "-keyint_min", str(options.gop_size),
            "-b:v", f"{bandwidth // 1000}k",
            "-maxrate", f"{int(bandwidth * 1.2) // 1000}k",
            "-bufsize", f"{int(bandwidth * 1.5) // 1000}k",
        ])
        return params

    def _get_hls_params(
        self,
        options: HlsOptions,
        segment_path: str,
        playlist_path: str,
    ) -> List[str]:
        """获取 HLS 输出参数"""
        return [
            "-f", "hls",
            "-hls_time", str(options.hls_time),
            "-hls_playlist_type", options.hls_playlist_type,
            "-hls_list_size", "0",
            "-hls_segment_type", "mpegts",
            "-hls_flags", "independent_segments",
            "-hls_segment_filename", segment_path,
            playlist_path,
        ]

    def build_command(
        self,
        input_path: str,
        output_dir: str,
        spec: RenditionSpec,
        options: HlsOptions,
        copy: bool = False,
    ) -> List[str]:
        """构建单个分辨率的切片命令

        Args:
            input_path: 源视频路径
            output_dir: 资源输出根目录
            spec: 分辨率规格
            options: 转换选项
            copy: 是否直接复制流

        Returns:
            FFmpeg 命令列表
        """
        resolution_dir = os.path.join(output_dir, spec.name)
        cmd = self._base_command(input_path)
        if copy:
            cmd.extend(self._get_copy_params())
        else:
            cmd.extend(self._get_encode_params(spec, options))
        cmd.extend(self._get_hls_params(
            options,
            os.path.join(resolution_dir, options.segment_name_template),
            os.path.join(resolution_dir, options.resolution_playlist_name),
        ))
        return cmd

    def build_audio_command(
        self,
        input_path: str,
        audio_dir: str,
        options: HlsOptions,
    ) -> List[str]:
        """构建纯音频切片命令"""
        cmd = self._base_command(input_path)
        cmd.extend([
            "-vn",
            "-c:a", options.audio_codec,
            "-b:a", options.audio_bitrate,
        ])
        cmd.extend(self._get_hls_params(
            options,
            os.path.join(audio_dir, options.audio_segment_name_template),
            os.path.join(audio_dir, options.audio_playlist_name),
        ))
        return cmd

    async def run(
        self,
        command: List[str],
        label: str,
        duration: float = 0.0,
        on_progress: Optional[ProgressObserver] = None,
    ) -> Tuple[int, str]:
        """执行 FFmpeg 并把进度推送给观察者

        stdout 读取 -progress 输出，stderr 只保留末尾若干行用于报错。

        Args:
            command: FFmpeg 命令
            label: 进度事件中的名称（分辨率名）
            duration: 源视频时长（秒），用于计算百分比
            on_progress: 进度观察者

        Returns:
            (退出码, stderr 末尾内容)
        """
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.debug(f"Started FFmpeg process with PID {process.pid}")

        progress = TranscodeProgress(resolution=label)
        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        async def read_progress():
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="ignore")
                if apply_progress_line(text, progress, duration) and on_progress:
                    try:
                        on_progress(progress)
                    except Exception as e:
                        logger.warning(f"Progress observer error: {e}")

        async def read_stderr():
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                stderr_tail.append(line.decode("utf-8", errors="ignore").rstrip())

        try:
            await asyncio.gather(read_progress(), read_stderr())
            return_code = await process.wait()
        except asyncio.CancelledError:
            logger.warning(f"FFmpeg process {process.pid} cancelled ({label}), killing it")
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise
        return return_code, "\n".join(stderr_tail)

    async def transcode(
        self,
        input_path: str,
        output_dir: str,
        spec: RenditionSpec,
        options: HlsOptions,
        copy: bool = False,
        asset_id: str = "",
        duration: float = 0.0,
        on_progress: Optional[ProgressObserver] = None,
    ) -> RenditionResult:
        """把源视频切片为一个分辨率

        先创建分辨率子目录，再启动 FFmpeg。

        Returns:
            RenditionResult

        Raises:
            TranscodeError: FFmpeg 无法启动或退出码非 0
        """
        resolution_dir = os.path.join(output_dir, spec.name)
        os.makedirs(resolution_dir, exist_ok=True)

        command = self.build_command(input_path, output_dir, spec, options, copy=copy)
        logger.info(f"[{asset_id}] Started processing {spec.name}: {self.get_command_line_string(command)[:200]}")

        try:
            return_code, stderr = await self.run(command, spec.name, duration, on_progress)
        except OSError as e:
            logger.error(f"[{asset_id}] Failed to start FFmpeg for {spec.name}: {e}")
            raise TranscodeError(spec.name, f"Failed to start FFmpeg: {e}")

        if return_code != 0:
            logger.error(f"[{asset_id}] Error processing {spec.name}: FFmpeg exited with code {return_code}")
            logger.error(f"[{asset_id}] FFmpeg stderr: {stderr}")
            raise TranscodeError(spec.name, f"FFmpeg exited with code {return_code}", native_stderr=stderr)

        logger.info(f"[{asset_id}] Finished processing {spec.name}")
        return RenditionResult(
            name=spec.name,
            size=spec.size,
            bitrate=spec.bitrate,
            bandwidth=compute_bandwidth(spec.bitrate),
            playlist_relative_path=f"{spec.name}/{options.resolution_playlist_name}",
            is_original=spec.is_original,
        )

    async def generate_audio_hls(
        self,
        input_path: str,
        output_dir: str,
        options: HlsOptions,
        asset_id: str = "",
        lang: str = "default",
        duration: float = 0.0,
        on_progress: Optional[ProgressObserver] = None,
    ) -> Dict[str, str]:
        """生成纯音频 HLS（audio_<lang>/audio.m3u8）

        Returns:
            {"playlist_path": ..., "playlist_relative_path": ...}

        Raises:
            TranscodeError: FFmpeg 无法启动或退出码非 0
        """
        dir_name = f"audio_{lang}"
        audio_dir = os.path.join(output_dir, dir_name)
        os.makedirs(audio_dir, exist_ok=True)

        command = self.build_audio_command(input_path, audio_dir, options)
        logger.info(f"[{asset_id}] Started audio segmentation ({lang})")

        try:
            return_code, stderr = await self.run(command, dir_name, duration, on_progress)
        except OSError as e:
            raise TranscodeError(dir_name, f"Failed to start FFmpeg: {e}")

        if return_code != 0:
            logger.error(f"[{asset_id}] Error generating audio HLS ({lang}): {stderr}")
            raise TranscodeError(dir_name, f"FFmpeg exited with code {return_code}", native_stderr=stderr)

        return {
            "playlist_path": os.path.join(audio_dir, options.audio_playlist_name),
            "playlist_relative_path": f"{dir_name}/{options.audio_playlist_name}",
        }

    def get_command_line_string(self, command: List[str]) -> str:
        """获取命令行字符串（用于日志记录）"""
        return " ".join(command)


def get_ffmpeg_runner(ffmpeg_path: str = "ffmpeg", loglevel: str = "error") -> FFmpegRunner:
    """获取 FFmpeg 运行器实例"""
    return FFmpegRunner(ffmpeg_path, loglevel=loglevel)
