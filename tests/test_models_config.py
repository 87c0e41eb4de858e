"""Tests for bitrate helpers, option merging and service configuration."""

import pytest
from hypothesis import given, strategies as st

from hlsconvert.config import BASE_URL, ConverterConfig, HlsOptions
from hlsconvert.errors import ValidationError
from hlsconvert.models import (
    DEFAULT_BANDWIDTH,
    MediaTrack,
    RenditionSpec,
    compute_bandwidth,
    numeric_height,
    parse_pixel_size,
)


@pytest.mark.parametrize("bitrate,expected", [
    ("2500k", 2500000),
    ("2500K", 2500000),
    ("5M", 5000000),
    ("1.5m", 1500000),
    ("800", 800000),
    ("abc", DEFAULT_BANDWIDTH),
    ("0k", DEFAULT_BANDWIDTH),
    ("", DEFAULT_BANDWIDTH),
    (None, DEFAULT_BANDWIDTH),
])
def test_compute_bandwidth(bitrate, expected):
    assert compute_bandwidth(bitrate) == expected


@given(st.text())
def test_compute_bandwidth_is_always_positive(text):
    assert compute_bandwidth(text) > 0


@pytest.mark.parametrize("name,expected", [
    ("720p", 720),
    ("1080P", 1080),
    ("4k", None),
    ("hd", None),
    ("720", None),
    ("", None),
])
def test_numeric_height(name, expected):
    assert numeric_height(name) == expected


def test_parse_pixel_size():
    assert parse_pixel_size("1280x720") == (1280, 720)
    assert parse_pixel_size("-2:720") is None


def test_rendition_spec_from_camel_case_dict():
    spec = RenditionSpec.from_dict({"name": "720p", "size": "1280x720", "bitrate": "2800k", "isOriginal": True})

    assert spec.is_original
    assert spec.height == 720
    assert spec.bandwidth == 2800000


def test_media_track_from_camel_case_dict():
    track = MediaTrack.from_dict({"lang": "es", "name": "Español", "relativePath": "audio_es/audio.m3u8", "isDefault": True})

    assert track.relative_path == "audio_es/audio.m3u8"
    assert track.is_default
    assert track.autoselect


def test_default_options():
    options = HlsOptions()

    assert options.hls_time == 10
    assert options.hls_playlist_type == "vod"
    assert options.copy_codecs_threshold_height == 720
    assert (options.audio_codec, options.audio_bitrate) == ("aac", "128k")
    assert (options.video_codec, options.video_profile, options.crf, options.gop_size) == ("h264", "main", 20, 48)
    assert options.proxy_base_url_template == BASE_URL + "{basePath}{assetId}/"
    assert options.master_playlist_name == "master.m3u8"


def test_merged_accepts_camel_case_and_leaves_original_untouched():
    defaults = HlsOptions()

    merged = defaults.merged({
        "hlsTime": 6,
        "crf": 23,
        "resolutions": [{"name": "360p", "size": "640x360", "bitrate": "800k"}],
    })

    assert merged.hls_time == 6
    assert merged.crf == 23
    assert merged.resolutions == [RenditionSpec(name="360p", size="640x360", bitrate="800k")]
    assert defaults.hls_time == 10
    assert defaults.resolutions == []


def test_merged_rejects_unknown_option():
    with pytest.raises(ValidationError, match="bogus"):
        HlsOptions().merged({"bogus": 1})


def test_merged_rejects_incomplete_resolution():
    with pytest.raises(ValidationError):
        HlsOptions().merged({"resolutions": [{"name": "360p", "size": "640x360"}]})


@pytest.mark.parametrize("overrides", [
    {"hls_time": 0},
    {"crf": 60},
    {"hls_playlist_type": "live"},
    {"gop_size": -1},
    {"master_playlist_name": ""},
    {"resolutions": [{"name": "../../../escape", "size": "640x360", "bitrate": "800k"}]},
    {"resolutions": [{"name": "720p/x", "size": "640x360", "bitrate": "800k"}]},
    {"resolutions": [{"name": "720p\n", "size": "640x360", "bitrate": "800k"}]},
    {"resolutions": [
        {"name": "720p", "size": "1280x720", "bitrate": "2800k"},
        {"name": "720p", "size": "960x720", "bitrate": "2000k"},
    ]},
])
def test_validate_rejects_bad_values(overrides):
    with pytest.raises(ValidationError):
        HlsOptions().merged(overrides).validate()


def test_converter_config_from_app_config():
    config = ConverterConfig.from_app_config({
        "hls": {
            "processed_dir": "/srv/hls",
            "ffmpeg_path": "/usr/local/bin/ffmpeg",
            "probe_timeout": 10,
            "options": {"copyCodecsThresholdHeight": 1080},
        }
    })

    assert config.processed_dir == "/srv/hls"
    assert config.ffmpeg_path == "/usr/local/bin/ffmpeg"
    assert config.ffprobe_path == "ffprobe"
    assert config.probe_timeout == 10
    assert config.options.copy_codecs_threshold_height == 1080
    assert config.get_output_dir("1/2").endswith("1/2")


def test_converter_config_defaults_without_hls_section():
    config = ConverterConfig.from_app_config({})

    assert config.processed_dir == "processed_videos"
    assert config.tasks_file == "data/hls_tasks.json"
    assert config.options == HlsOptions()
