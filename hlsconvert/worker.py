"""
单个分辨率的转码 worker

决定复制流还是重新编码，并驱动 FFmpegRunner 完成切片。
"""

import logging
from typing import Optional

from .config import HlsOptions
from .errors import TranscodeError
from .ffmpeg import FFmpegRunner, ProgressObserver
from .models import RenditionResult, RenditionSpec, TranscodeProgress

logger = logging.getLogger(__name__)


def should_copy(spec: RenditionSpec, threshold_height: int, source_size: Optional[str] = None) -> bool:
    """判断是否直接复制流

    只有源分辨率规格、且名称能解析出高度并不超过阈值时才复制，
    "4k" 这类非数字名称永远重新编码。
    给出 source_size 时，规格尺寸还必须与源视频完全一致。
    """
    if not spec.is_original:
        return False
    if source_size is not None and spec.size != source_size:
        return False
    height = spec.height
    return height is not None and height <= threshold_height


class ProgressLogger:
    """默认的进度观察者，每 10% 记录一次日志"""

    def __init__(self, asset_id: str, step: int = 10):
        self.asset_id = asset_id
        self.step = step
        self._last_bucket = {}

    def __call__(self, progress: TranscodeProgress):
        bucket = int(progress.percent) // self.step
        if bucket > self._last_bucket.get(progress.resolution, 0):
            self._last_bucket[progress.resolution] = bucket
            logger.info(f"[{self.asset_id}] Processing {progress.resolution}: {progress.percent:.2f}% done")


class RenditionWorker:
    """分辨率转码 worker"""

    def __init__(self, runner: FFmpegRunner):
        self.runner = runner

    async def process(
        self,
        input_path: str,
        output_dir: str,
        spec: RenditionSpec,
        options: HlsOptions,
        asset_id: str,
        duration: float = 0.0,
        on_progress: Optional[ProgressObserver] = None,
        source_size: Optional[str] = None,
    ) -> RenditionResult:
        """转码一个分辨率

        Args:
            input_path: 源视频路径
            output_dir: 资源输出根目录
            spec: 分辨率规格
            options: 转换选项
            asset_id: 资源 ID
            duration: 源视频时长（秒）
            on_progress: 进度观察者
            source_size: 源视频尺寸（如 "1280x720"）

        Returns:
            RenditionResult

        Raises:
            TranscodeError: 带分辨率名称的转码错误
        """
        copy = should_copy(spec, options.copy_codecs_threshold_height, source_size)
        if copy:
            logger.info(f"[{asset_id}] Segmenting resolution {spec.name} by copying streams.")
        else:
            logger.info(f"[{asset_id}] Re-encoding to {spec.name}.")

        try:
            return await self.runner.transcode(
                input_path,
                output_dir,
                spec,
                options,
                copy=copy,
                asset_id=asset_id,
                duration=duration,
                on_progress=on_progress,
            )
        except TranscodeError:
            raise
        except Exception as e:
            logger.error(f"[{asset_id}] General error processing {spec.name}: {e}")
            raise TranscodeError(spec.name, str(e)) from e
