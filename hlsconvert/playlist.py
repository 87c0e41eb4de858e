"""
HLS master playlist 生成与修改

- 转换完成后按带宽升序生成 master playlist
- 之后可以重新解析 master playlist，附加音频/字幕轨道，而不需要重新转码
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .config import HlsOptions
from .errors import InvalidPlaylistError, PlaylistError
from .models import MediaTrack, RenditionResult, parse_pixel_size

logger = logging.getLogger(__name__)

AUDIO_GROUP_ID = "aac-audio"
SUBTITLE_GROUP_ID = "subs"
AAC_CODEC = "mp4a.40.2"

_ATTRIBUTE_RE = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def generate_proxy_base_url(
    asset_id: str,
    base_path: str = "",
    proxy_base_url_template: str = HlsOptions.proxy_base_url_template,
) -> str:
    """根据模板生成资源的访问前缀

    替换 {assetId} 和 {basePath}，并合并多余的斜杠（协议后的 // 除外）。

    Args:
        asset_id: 资源 ID
        base_path: 基础路径，非空时补全末尾的 /
        proxy_base_url_template: URL 模板

    Returns:
        访问前缀，如 "http://localhost:4000/stream-resource/season1/ep2/"
    """
    asset_id = asset_id or ""
    base_path = base_path or ""
    if base_path and not base_path.endswith("/"):
        base_path += "/"

    url = proxy_base_url_template.replace("{assetId}", asset_id)
    url = url.replace("{basePath}", base_path)
    return re.sub(r"(?<!:)/{2,}", "/", url)


def generate_playlist_url(proxy_base_url: str, playlist_name: str) -> str:
    """拼接访问前缀和播放列表名"""
    if proxy_base_url and not proxy_base_url.endswith("/"):
        proxy_base_url += "/"
    return f"{proxy_base_url}{playlist_name}"


def _parse_attributes(text: str) -> Dict[str, str]:
    """解析属性列表，值保留原始形式（带引号）"""
    return {m.group(1): m.group(2) for m in _ATTRIBUTE_RE.finditer(text)}


def _unquote(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def _yes_no(flag: bool) -> str:
    return "YES" if flag else "NO"


@dataclass
class Rendition:
    """EXT-X-MEDIA 条目"""

    type: str
    group_id: str
    name: str
    language: str = ""
    uri: str = ""
    is_default: bool = False
    autoselect: bool = True
    is_forced: bool = False

    def to_line(self) -> str:
        attrs = [
            f"TYPE={self.type}",
            f'GROUP-ID="{self.group_id}"',
        ]
        if self.language:
            attrs.append(f'LANGUAGE="{self.language}"')
        attrs.append(f'NAME="{self.name}"')
        attrs.append(f"DEFAULT={_yes_no(self.is_default)}")
        attrs.append(f"AUTOSELECT={_yes_no(self.autoselect)}")
        if self.type == "SUBTITLES":
            attrs.append(f"FORCED={_yes_no(self.is_forced)}")
        if self.uri:
            attrs.append(f'URI="{self.uri}"')
        return "#EXT-X-MEDIA:" + ",".join(attrs)

    @classmethod
    def from_attributes(cls, attrs: Dict[str, str]) -> "Rendition":
        return cls(
            type=attrs.get("TYPE", ""),
            group_id=_unquote(attrs.get("GROUP-ID")) or "",
            name=_unquote(attrs.get("NAME")) or "",
            language=_unquote(attrs.get("LANGUAGE")) or "",
            uri=_unquote(attrs.get("URI")) or "",
            is_default=attrs.get("DEFAULT") == "YES",
            autoselect=attrs.get("AUTOSELECT", "YES") == "YES",
            is_forced=attrs.get("FORCED") == "YES",
        )


@dataclass
class Variant:
    """EXT-X-STREAM-INF 条目"""

    uri: str
    bandwidth: int
    width: Optional[int] = None
    height: Optional[int] = None
    codecs: Optional[str] = None
    audio_group: Optional[str] = None
    subtitle_group: Optional[str] = None
    # 其他属性原样保留，如 AVERAGE-BANDWIDTH、FRAME-RATE
    extra: Dict[str, str] = field(default_factory=dict)

    def to_lines(self) -> List[str]:
        attrs = [f"BANDWIDTH={self.bandwidth}"]
        attrs.extend(f"{key}={value}" for key, value in self.extra.items())
        if self.width and self.height:
            attrs.append(f"RESOLUTION={self.width}x{self.height}")
        if self.codecs:
            attrs.append(f'CODECS="{self.codecs}"')
        if self.audio_group:
            attrs.append(f'AUDIO="{self.audio_group}"')
        if self.subtitle_group:
            attrs.append(f'SUBTITLES="{self.subtitle_group}"')
        return ["#EXT-X-STREAM-INF:" + ",".join(attrs), self.uri]

    @classmethod
    def from_attributes(cls, attrs: Dict[str, str], uri: str) -> "Variant":
        attrs = dict(attrs)
        try:
            bandwidth = int(attrs.pop("BANDWIDTH"))
        except (KeyError, ValueError):
            raise ValueError("EXT-X-STREAM-INF without a valid BANDWIDTH")

        width = height = None
        resolution = attrs.pop("RESOLUTION", None)
        if resolution:
            pixel_size = parse_pixel_size(resolution)
            if pixel_size:
                width, height = pixel_size

        return cls(
            uri=uri,
            bandwidth=bandwidth,
            width=width,
            height=height,
            codecs=_unquote(attrs.pop("CODECS", None)),
            audio_group=_unquote(attrs.pop("AUDIO", None)),
            subtitle_group=_unquote(attrs.pop("SUBTITLES", None)),
            extra=attrs,
        )


@dataclass
class MasterPlaylist:
    """master playlist 数据模型"""

    version: int = 3
    variants: List[Variant] = field(default_factory=list)
    renditions: List[Rendition] = field(default_factory=list)
    # 未识别的全局标签（如 #EXT-X-INDEPENDENT-SEGMENTS）
    extra_tags: List[str] = field(default_factory=list)

    def serialize(self) -> str:
        lines = ["#EXTM3U", f"#EXT-X-VERSION:{self.version}"]
        lines.extend(self.extra_tags)
        lines.extend(r.to_line() for r in self.renditions)
        for variant in self.variants:
            lines.extend(variant.to_lines())
        return "\n".join(lines) + "\n"

    def _tracks(self, media_type: str) -> List[MediaTrack]:
        return [
            MediaTrack(
                lang=r.language,
                name=r.name,
                relative_path=r.uri,
                is_default=r.is_default,
                autoselect=r.autoselect,
                is_forced=r.is_forced,
            )
            for r in self.renditions
            if r.type == media_type
        ]

    def audio_tracks(self) -> List[MediaTrack]:
        return self._tracks("AUDIO")

    def subtitle_tracks(self) -> List[MediaTrack]:
        return self._tracks("SUBTITLES")


@dataclass
class PlaylistParseResult:
    """解析结果：成功时 playlist 有值，失败时 error 有值"""

    playlist: Optional[MasterPlaylist] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.playlist is not None


def parse_master_playlist(content: str) -> PlaylistParseResult:
    """解析 master playlist

    Args:
        content: m3u8 文本

    Returns:
        PlaylistParseResult，媒体播放列表或格式错误时 error 有值
    """
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    if not lines or lines[0] != "#EXTM3U":
        return PlaylistParseResult(error="Missing #EXTM3U header")

    playlist = MasterPlaylist()
    pending_attrs: Optional[Dict[str, str]] = None

    for line in lines[1:]:
        if pending_attrs is not None:
            if line.startswith("#"):
                return PlaylistParseResult(error=f"Expected variant URI, got {line!r}")
            try:
                playlist.variants.append(Variant.from_attributes(pending_attrs, line))
            except ValueError as e:
                return PlaylistParseResult(error=str(e))
            pending_attrs = None
        elif line.startswith("#EXTINF") or line.startswith("#EXT-X-TARGETDURATION"):
            return PlaylistParseResult(error="Media playlist given where a master playlist is expected")
        elif line.startswith("#EXT-X-VERSION:"):
            try:
                playlist.version = int(line.split(":", 1)[1])
            except ValueError:
                return PlaylistParseResult(error=f"Invalid version tag {line!r}")
        elif line.startswith("#EXT-X-STREAM-INF:"):
            pending_attrs = _parse_attributes(line.split(":", 1)[1])
        elif line.startswith("#EXT-X-MEDIA:"):
            playlist.renditions.append(Rendition.from_attributes(_parse_attributes(line.split(":", 1)[1])))
        elif line.startswith("#"):
            playlist.extra_tags.append(line)
        else:
            return PlaylistParseResult(error=f"Unexpected URI line {line!r}")

    if pending_attrs is not None:
        return PlaylistParseResult(error="EXT-X-STREAM-INF without URI")
    if not playlist.variants:
        return PlaylistParseResult(error="No variant streams found")
    return PlaylistParseResult(playlist=playlist)


def build_master_playlist(results: Sequence[RenditionResult], proxy_base_url: str) -> MasterPlaylist:
    """按带宽升序生成 master playlist 模型"""
    playlist = MasterPlaylist(version=3)
    for result in sorted(results, key=lambda r: r.bandwidth):
        pixel_size = parse_pixel_size(result.size)
        width, height = pixel_size if pixel_size else (None, None)
        playlist.variants.append(Variant(
            uri=f"{proxy_base_url}{result.playlist_relative_path}",
            bandwidth=result.bandwidth,
            width=width,
            height=height,
        ))
    return playlist


def create_master(
    output_dir: str,
    results: Sequence[RenditionResult],
    options: HlsOptions,
    asset_id: str,
    base_path: str = "",
) -> Dict[str, str]:
    """生成并写入 master playlist

    Args:
        output_dir: 资源输出根目录
        results: 转码成功的分辨率结果
        options: 转换选项
        asset_id: 资源 ID
        base_path: 基础路径

    Returns:
        {"path": 文件路径, "url": 访问 URL}
    """
    proxy_base_url = generate_proxy_base_url(asset_id, base_path, options.proxy_base_url_template)
    playlist = build_master_playlist(results, proxy_base_url)

    master_path = os.path.join(output_dir, options.master_playlist_name)
    try:
        with open(master_path, "w", encoding="utf-8") as f:
            f.write(playlist.serialize())
    except OSError as e:
        raise PlaylistError(f"Failed to write master playlist {master_path}: {e}")

    logger.info(f"[{asset_id}] Master playlist created successfully: {master_path}")
    return {
        "path": master_path,
        "url": f"{proxy_base_url}{options.master_playlist_name}",
    }


def read_master_playlist(master_path: str) -> MasterPlaylist:
    """读取并解析 master playlist

    Raises:
        PlaylistError: 文件无法读取
        InvalidPlaylistError: 文件不是 master playlist
    """
    try:
        with open(master_path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise PlaylistError(f"Failed to read master playlist {master_path}: {e}")

    parsed = parse_master_playlist(content)
    if not parsed.ok:
        raise InvalidPlaylistError(f"{master_path} is not a valid master playlist: {parsed.error}")
    return parsed.playlist


def resolve_track_uri(proxy_base_url: str, relative_path: str) -> str:
    # 已经是完整地址的轨道（重新读取 master 时）原样保留
    if _SCHEME_RE.match(relative_path) or (proxy_base_url and relative_path.startswith(proxy_base_url)):
        return relative_path
    return f"{proxy_base_url}{relative_path}"


def attach_media(
    master_path: str,
    asset_id: str,
    audio_tracks: Iterable[MediaTrack] = (),
    subtitle_tracks: Iterable[MediaTrack] = (),
    options: Optional[HlsOptions] = None,
    base_path: str = "",
) -> MasterPlaylist:
    """为已有的 master playlist 附加音频和字幕轨道

    先清除所有旧的音频/字幕关联，再按传入的轨道重新添加，
    因此同样的参数调用多次结果不变。

    Args:
        master_path: master playlist 文件路径或其所在目录
        asset_id: 资源 ID
        audio_tracks: 音频轨道
        subtitle_tracks: 字幕轨道
        options: 转换选项（提供 URL 模板和文件名）
        base_path: 基础路径

    Returns:
        修改后的 MasterPlaylist

    Raises:
        InvalidPlaylistError: 目标文件不是 master playlist
    """
    options = options or HlsOptions()
    audio_tracks = list(audio_tracks)
    subtitle_tracks = list(subtitle_tracks)

    if not master_path.endswith(options.master_playlist_name):
        master_path = os.path.join(master_path, options.master_playlist_name)

    playlist = read_master_playlist(master_path)
    proxy_base_url = generate_proxy_base_url(asset_id, base_path, options.proxy_base_url_template)

    # 清除旧的音频/字幕
    playlist.renditions = [r for r in playlist.renditions if r.type not in ("AUDIO", "SUBTITLES")]
    for variant in playlist.variants:
        variant.audio_group = None
        variant.subtitle_group = None

    for track in audio_tracks:
        playlist.renditions.append(Rendition(
            type="AUDIO",
            group_id=AUDIO_GROUP_ID,
            name=track.name,
            language=track.lang,
            uri=resolve_track_uri(proxy_base_url, track.relative_path),
            is_default=track.is_default,
            autoselect=track.autoselect,
        ))

    for track in subtitle_tracks:
        playlist.renditions.append(Rendition(
            type="SUBTITLES",
            group_id=SUBTITLE_GROUP_ID,
            name=track.name,
            language=track.lang,
            uri=resolve_track_uri(proxy_base_url, track.relative_path),
            is_default=track.is_default,
            autoselect=track.autoselect,
            is_forced=track.is_forced,
        ))

    has_default_audio = any(t.is_default for t in audio_tracks)
    for variant in playlist.variants:
        if audio_tracks:
            variant.audio_group = AUDIO_GROUP_ID
        if subtitle_tracks:
            variant.subtitle_group = SUBTITLE_GROUP_ID
        if has_default_audio and variant.codecs and "mp4a" not in variant.codecs:
            variant.codecs += f",{AAC_CODEC}"

    try:
        with open(master_path, "w", encoding="utf-8") as f:
            f.write(playlist.serialize())
    except OSError as e:
        raise PlaylistError(f"Failed to write master playlist {master_path}: {e}")

    logger.info(
        f"[{asset_id}] Master playlist updated with {len(audio_tracks)} audio and "
        f"{len(subtitle_tracks)} subtitle track(s)"
    )
    return playlist
