"""
HLS 转换管理器

负责一次转换的完整流程：
- 校验输入路径和资源 ID
- ffprobe 获取源视频信息并创建任务
- 规划输出分辨率，并发转码所有分辨率
- 所有分辨率结束后生成 master playlist，更新任务状态
"""

import asyncio
import logging
import os
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .config import ConverterConfig, HlsOptions
from .errors import (
    ConversionError,
    ProbeError,
    TaskStoreError,
    TranscodeError,
    ValidationError,
)
from .ffmpeg import FFmpegRunner, ProgressObserver
from .ffprobe import FFprobeRunner
from .models import ConversionResult, MediaTrack, RenditionResult
from .planner import determine_target_resolutions
from .playlist import (
    MasterPlaylist,
    resolve_track_uri,
    attach_media,
    create_master,
    generate_proxy_base_url,
    read_master_playlist,
)
from .store import JsonTaskStore, TaskStoreProtocol
from .task import ConversionTask, TaskStatus
from .worker import ProgressLogger, RenditionWorker

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".mkv", ".webm", ".flv")
AUDIO_EXTENSIONS = (".mp3", ".aac", ".m4a", ".wav", ".flac", ".ogg", ".opus")

_ASSET_ID_RE = re.compile(r"^[a-zA-Z0-9_/-]+$")
_LANG_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


class ConversionStage(Enum):
    """转换流程阶段"""
    VALIDATING = "validating"
    PROBING = "probing"
    PLANNING = "planning"
    ENCODING = "encoding"
    PLAYLISTING = "playlisting"
    COMPLETED = "completed"
    FAILED = "failed"


def validate_video_file_path(file_path: str, extensions=VIDEO_EXTENSIONS) -> None:
    """校验源文件路径和扩展名

    Raises:
        ValidationError: 路径为空或扩展名不支持
    """
    if not file_path or not isinstance(file_path, str):
        raise ValidationError("Invalid video file path")
    if not file_path.lower().endswith(extensions):
        raise ValidationError(f"Unsupported file format: {os.path.basename(file_path)}")


def validate_asset_id(asset_id: str) -> None:
    """校验资源 ID

    只允许字母、数字、下划线、横线和斜杠，且不能以斜杠开头或包含空的路径段。

    Raises:
        ValidationError: 资源 ID 不合法
    """
    if not asset_id or not isinstance(asset_id, str):
        raise ValidationError("Invalid asset ID")
    if not _ASSET_ID_RE.fullmatch(asset_id):
        raise ValidationError("Asset ID contains invalid characters")
    if asset_id.startswith("/") or "//" in asset_id:
        raise ValidationError("Asset ID must be a relative path")


class ConversionManager:
    """HLS 转换管理器

    任务存储、ffprobe 和 ffmpeg 运行器都可以注入，便于替换和测试。
    """

    def __init__(
        self,
        config: ConverterConfig,
        store: Optional[TaskStoreProtocol] = None,
        prober: Optional[FFprobeRunner] = None,
        runner: Optional[FFmpegRunner] = None,
    ):
        """初始化转换管理器

        Args:
            config: 服务配置
            store: 任务存储，默认使用 config.tasks_file 的 JSON 文件
            prober: ffprobe 运行器
            runner: ffmpeg 运行器
        """
        self.config = config
        self.store = store if store is not None else JsonTaskStore(config.tasks_file)
        self.prober = prober or FFprobeRunner(config.ffprobe_path, timeout=config.probe_timeout)
        self.runner = runner or FFmpegRunner(config.ffmpeg_path, loglevel=config.loglevel)
        self.worker = RenditionWorker(self.runner)

    # ------------------------------------------------------------------
    # 任务记录（尽力而为，失败只记录日志）
    # ------------------------------------------------------------------

    def _create_task(self, metadata: Dict[str, Any]) -> Optional[str]:
        try:
            return self.store.create(metadata)
        except TaskStoreError as e:
            logger.error(f"Task store error while creating task: {e}")
            return e.task_id

    def _set_status(
        self,
        task_id: Optional[str],
        status: TaskStatus,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        if task_id is None:
            return
        try:
            self.store.set_status(task_id, status, data=data, error=error)
        except TaskStoreError as e:
            logger.error(f"Task store error while updating task {task_id}: {e}")

    def _enter_stage(self, asset_id: str, stage: ConversionStage) -> ConversionStage:
        logger.info(f"[{asset_id}] Stage: {stage.value}")
        return stage

    def _prepare_options(self, options_override: Optional[Dict[str, Any]]) -> HlsOptions:
        return self.config.options.merged(options_override).validate()

    # ------------------------------------------------------------------
    # 视频转换
    # ------------------------------------------------------------------

    async def convert(
        self,
        input_path: str,
        asset_id: str,
        base_path: str = "",
        options_override: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressObserver] = None,
    ) -> ConversionResult:
        """把源视频转换为 HLS

        Args:
            input_path: 源视频路径
            asset_id: 资源 ID，同时作为输出子目录（如 season1/ep2）
            base_path: URL 模板中的 {basePath}
            options_override: 覆盖默认转换选项
            on_progress: 进度观察者，默认每 10% 记录一次日志

        Returns:
            ConversionResult

        Raises:
            ValidationError: 输入路径、资源 ID 或选项不合法
            ProbeError: 无法读取源视频
            ConversionError: 有分辨率转码失败
            PlaylistError: master playlist 写入失败
        """
        stage = self._enter_stage(asset_id, ConversionStage.VALIDATING)
        task_id: Optional[str] = None

        try:
            validate_video_file_path(input_path)
            validate_asset_id(asset_id)
            options = self._prepare_options(options_override)

            output_dir = self.config.get_output_dir(asset_id)
            os.makedirs(output_dir, exist_ok=True)

            stage = self._enter_stage(asset_id, ConversionStage.PROBING)
            metadata = await self.prober.probe(input_path)
            logger.info(
                f"[{asset_id}] Original resolution: {metadata.width}x{metadata.height}, "
                f"Bitrate: {metadata.bitrate}"
            )

            task_data = {
                "assetId": asset_id,
                "basePath": base_path,
                "outputDir": output_dir,
                "originalWidth": metadata.width,
                "originalHeight": metadata.height,
                "bitrate": metadata.bitrate,
                "duration": metadata.duration,
                "requestedResolutions": [spec.to_dict() for spec in options.resolutions],
            }
            task_id = self._create_task(task_data)

            stage = self._enter_stage(asset_id, ConversionStage.PLANNING)
            targets = determine_target_resolutions(
                metadata.width,
                metadata.height,
                metadata.bitrate,
                options.resolutions,
            )
            logger.info(f"[{asset_id}] Target resolutions: {[spec.name for spec in targets]}")
            self._set_status(task_id, TaskStatus.PROCESSING, data={
                "targetResolutions": [spec.to_dict() for spec in targets],
            })

            stage = self._enter_stage(asset_id, ConversionStage.ENCODING)
            observer = on_progress or ProgressLogger(asset_id)
            outcomes = await asyncio.gather(
                *(
                    self.worker.process(
                        input_path,
                        output_dir,
                        spec,
                        options,
                        asset_id,
                        duration=metadata.duration,
                        on_progress=observer,
                        source_size=f"{metadata.width}x{metadata.height}",
                    )
                    for spec in targets
                ),
                return_exceptions=True,
            )

            successful: List[RenditionResult] = []
            failures: List[TranscodeError] = []
            for spec, outcome in zip(targets, outcomes):
                if isinstance(outcome, RenditionResult):
                    successful.append(outcome)
                    continue
                if not isinstance(outcome, TranscodeError):
                    outcome = TranscodeError(spec.name, str(outcome) or type(outcome).__name__)
                logger.error(f"[{asset_id}] A resolution processing task failed: {outcome}")
                failures.append(outcome)

            if failures:
                raise ConversionError(
                    f"HLS conversion failed for {len(failures)} resolution(s).",
                    failures=failures,
                    stage=stage.value,
                )
            if not successful:
                raise ConversionError("HLS conversion resulted in no successful resolutions.", stage=stage.value)

            stage = self._enter_stage(asset_id, ConversionStage.PLAYLISTING)
            master = create_master(output_dir, successful, options, asset_id, base_path)

            stage = self._enter_stage(asset_id, ConversionStage.COMPLETED)
            final_data = {
                "resolutions": [result.to_dict() for result in successful],
                "masterPlaylistPath": master["path"],
                "masterPlaylistUrl": master["url"],
            }
            self._set_status(task_id, TaskStatus.COMPLETED, data=final_data)

            task = self.store.get(task_id) if task_id else None
            result = task.to_dict() if task else {}
            result.update(final_data)

            logger.info(f"[{asset_id}] HLS conversion completed successfully.")
            return ConversionResult(
                message="HLS conversion successful",
                output_dir=output_dir,
                master_playlist_path=master["path"],
                master_playlist_url=master["url"],
                result=result,
            )

        except Exception as e:
            logger.error(f"[{asset_id}] Error during HLS conversion ({stage.value}): {e}")
            self._enter_stage(asset_id, ConversionStage.FAILED)
            self._set_status(task_id, TaskStatus.FAILED, error=str(e))
            raise

    # ------------------------------------------------------------------
    # 音频/字幕轨道
    # ------------------------------------------------------------------

    def get_master_playlist_path(self, asset_id: str, options: Optional[HlsOptions] = None) -> str:
        options = options or self.config.options
        return os.path.join(self.config.get_output_dir(asset_id), options.master_playlist_name)

    def attach_media(
        self,
        asset_id: str,
        audio_tracks: Iterable[MediaTrack] = (),
        subtitle_tracks: Iterable[MediaTrack] = (),
        base_path: str = "",
    ) -> MasterPlaylist:
        """替换资源 master playlist 中的音频和字幕轨道"""
        validate_asset_id(asset_id)
        return attach_media(
            self.get_master_playlist_path(asset_id),
            asset_id,
            audio_tracks,
            subtitle_tracks,
            options=self.config.options,
            base_path=base_path,
        )

    async def add_audio_track(
        self,
        input_path: str,
        asset_id: str,
        lang: str = "default",
        name: Optional[str] = None,
        is_default: bool = False,
        base_path: str = "",
        options_override: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """为已转换的资源追加一条音频轨道（如配音）

        生成 audio_<lang>/audio.m3u8，并加入 master playlist，
        已有的其他音频和字幕轨道保持不变。

        Returns:
            结果字典（message、outputDir、playlistPath、playlistRelativePath、result）
        """
        task_id: Optional[str] = None

        try:
            validate_video_file_path(input_path, VIDEO_EXTENSIONS + AUDIO_EXTENSIONS)
            validate_asset_id(asset_id)
            if not lang or not _LANG_RE.fullmatch(lang):
                raise ValidationError(f"Invalid language code: {lang!r}")
            options = self._prepare_options(options_override)

            media_type = await self.prober.check_media_type(input_path)
            if media_type == "error":
                raise ProbeError(f"Failed to check media type for {input_path}")
            if media_type not in ("audio", "video"):
                raise ValidationError(f"{input_path} is not a valid audio or video file (type: {media_type})")

            # 先确认 master playlist 存在且合法，再开始切片
            output_dir = self.config.get_output_dir(asset_id)
            master_path = os.path.join(output_dir, options.master_playlist_name)
            playlist = read_master_playlist(master_path)

            task_id = self._create_task({
                "assetId": asset_id,
                "outputType": "audio-hls",
                "inputType": media_type,
                "outputDir": output_dir,
                "lang": lang,
                "targetAudioCodec": options.audio_codec,
                "targetAudioBitrate": options.audio_bitrate,
            })
            self._set_status(task_id, TaskStatus.PROCESSING)

            generated = await self.runner.generate_audio_hls(
                input_path,
                output_dir,
                options,
                asset_id=asset_id,
                lang=lang,
                on_progress=ProgressLogger(asset_id),
            )

            proxy_base_url = generate_proxy_base_url(asset_id, base_path, options.proxy_base_url_template)
            new_uri = resolve_track_uri(proxy_base_url, generated["playlist_relative_path"])
            audio_tracks = []
            for track in playlist.audio_tracks():
                if track.relative_path == new_uri:
                    continue
                if is_default:
                    track.is_default = False
                audio_tracks.append(track)
            audio_tracks.append(MediaTrack(
                lang=lang,
                name=name or lang,
                relative_path=generated["playlist_relative_path"],
                is_default=is_default,
            ))

            attach_media(
                master_path,
                asset_id,
                audio_tracks,
                playlist.subtitle_tracks(),
                options=options,
                base_path=base_path,
            )

            final_data = {
                "playlistPath": generated["playlist_path"],
                "playlistRelativePath": generated["playlist_relative_path"],
            }
            self._set_status(task_id, TaskStatus.COMPLETED, data=final_data)
            task = self.store.get(task_id) if task_id else None
            result = task.to_dict() if task else {}
            result.update(final_data)

            logger.info(f"[{asset_id}] Audio HLS conversion completed successfully ({lang}).")
            return {
                "message": "Audio HLS conversion successful",
                "outputDir": output_dir,
                "playlistPath": generated["playlist_path"],
                "playlistRelativePath": generated["playlist_relative_path"],
                "masterPlaylistPath": master_path,
                "result": result,
            }

        except Exception as e:
            logger.error(f"[{asset_id}] Error during audio HLS conversion: {e}")
            self._set_status(task_id, TaskStatus.FAILED, error=str(e))
            raise

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[ConversionTask]:
        return self.store.get(task_id)

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[ConversionTask]:
        if status is None:
            return self.store.list_all()
        return self.store.list_by_status(status)

    def get_status_summary(self) -> Dict[str, Any]:
        """获取状态摘要

        Returns:
            {"total_tasks": ..., "pending": ..., "processing": ..., ...}
        """
        tasks = self.store.list_all()
        summary: Dict[str, Any] = {"total_tasks": len(tasks)}
        for status in TaskStatus:
            summary[status.value] = sum(1 for t in tasks if t.status == status)
        return summary


def get_conversion_manager(config: ConverterConfig) -> ConversionManager:
    """获取转换管理器实例"""
    return ConversionManager(config)
