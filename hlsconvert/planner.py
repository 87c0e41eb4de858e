"""
分辨率规划

根据源视频尺寸和用户定义的分辨率列表，决定最终需要输出的分辨率。
"""

import logging
from dataclasses import replace
from typing import List, Sequence

from .models import RenditionSpec, numeric_height

logger = logging.getLogger(__name__)


def sort_key(spec: RenditionSpec) -> int:
    """排序键：名称中的高度，非数字名称（如 "4k"）按 0 处理"""
    return numeric_height(spec.name) or 0


def determine_target_resolutions(
    original_width: int,
    original_height: int,
    original_bitrate: str,
    user_resolutions: Sequence[RenditionSpec],
) -> List[RenditionSpec]:
    """决定需要输出的分辨率列表

    保证源视频分辨率一定在输出中，且同一像素尺寸不会编码两次：
    - 已有规格的尺寸与源视频完全一致：把它标记为 is_original
    - 已有规格的名称与源视频高度一致（如 1080p）：把它标记为 is_original
      （尺寸可能与源视频不同，这种规格不会走复制流，见 worker.should_copy）
    - 否则追加一个源分辨率规格，并按名称中的高度重新排序

    Args:
        original_width: 源视频宽度
        original_height: 源视频高度
        original_bitrate: 源视频码率字符串
        user_resolutions: 用户定义的分辨率列表

    Returns:
        最终的分辨率列表，恰好有一项 is_original
    """
    original_name = f"{original_height}p"
    original_size = f"{original_width}x{original_height}"

    # 去掉重复尺寸和重复名称（名称即输出子目录），并清除用户传入的 is_original 标记
    targets: List[RenditionSpec] = []
    seen_sizes = set()
    seen_names = set()
    for spec in user_resolutions:
        if spec.size in seen_sizes:
            logger.warning(f"Skipping resolution {spec.name}: size {spec.size} already requested")
            continue
        if spec.name in seen_names:
            logger.warning(f"Skipping resolution {spec.name}: name already requested")
            continue
        seen_sizes.add(spec.size)
        seen_names.add(spec.name)
        targets.append(replace(spec, is_original=False) if spec.is_original else spec)

    for index, spec in enumerate(targets):
        if spec.size == original_size:
            targets[index] = replace(spec, is_original=True)
            return targets

    for index, spec in enumerate(targets):
        if spec.name == original_name:
            targets[index] = replace(spec, is_original=True)
            return targets

    targets.append(RenditionSpec(
        name=original_name,
        size=original_size,
        bitrate=original_bitrate,
        is_original=True,
    ))
    # sorted() 是稳定排序，非数字名称保持原有相对顺序
    return sorted(targets, key=sort_key)
