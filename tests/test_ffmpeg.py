"""Tests for FFmpeg command building, progress parsing and process handling."""

import asyncio
import os

import pytest

from hlsconvert.config import HlsOptions
from hlsconvert.errors import TranscodeError
from hlsconvert.ffmpeg import (
    FFmpegRunner,
    apply_progress_line,
    parse_out_time,
    scale_filter,
)
from hlsconvert.models import RenditionSpec, TranscodeProgress


class FakeProcess:
    """Minimal asyncio subprocess with scripted stdout/stderr."""

    def __init__(self, stdout=b"", stderr=b"", returncode=0):
        self.pid = 4242
        self.returncode = returncode
        self.stdout = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()

    async def wait(self):
        return self.returncode


@pytest.fixture
def spawned(monkeypatch):
    """Replace process creation; configure the next process via spawned['process']."""
    state = {"commands": [], "process": None}

    async def fake_exec(*command, **kwargs):
        state["commands"].append(list(command))
        return state["process"]()

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    return state


SPEC_720 = RenditionSpec(name="720p", size="1280x720", bitrate="2500k")


def test_scale_filter():
    assert scale_filter(SPEC_720) == "1280:720"
    assert scale_filter(RenditionSpec(name="720p", size="-2:720", bitrate="1k")) == "-2:720"
    assert scale_filter(RenditionSpec(name="480p", size="auto", bitrate="1k")) == "-2:480"
    assert scale_filter(RenditionSpec(name="4k", size="auto", bitrate="1k")) is None


def test_encode_command():
    runner = FFmpegRunner("/usr/bin/ffmpeg")

    cmd = runner.build_command("in.mp4", "out", SPEC_720, HlsOptions())
    line = runner.get_command_line_string(cmd)

    assert cmd[0] == "/usr/bin/ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "in.mp4"
    assert "-vf scale=1280:720" in line
    assert "-c:v h264 -profile:v main -crf 20" in line
    assert "-g 48 -keyint_min 48" in line
    assert "-b:v 2500k -maxrate 3000k -bufsize 3750k" in line
    assert "-c:a aac -ar 48000 -b:a 128k" in line
    assert "-hls_time 10 -hls_playlist_type vod" in line
    assert cmd[cmd.index("-hls_segment_filename") + 1] == os.path.join("out", "720p", "segment%03d.ts")
    assert cmd[-1] == os.path.join("out", "720p", "playlist.m3u8")


def test_copy_command_has_no_encode_flags():
    cmd = FFmpegRunner().build_command("in.mp4", "out", SPEC_720, HlsOptions(), copy=True)

    assert cmd[cmd.index("-c:v") + 1] == "copy"
    assert cmd[cmd.index("-c:a") + 1] == "copy"
    assert "-vf" not in cmd
    assert "-crf" not in cmd


def test_audio_command():
    cmd = FFmpegRunner().build_audio_command("dub.mp3", "out/audio_es", HlsOptions())

    assert "-vn" in cmd
    assert cmd[cmd.index("-hls_segment_filename") + 1] == os.path.join("out/audio_es", "segment%03d.aac")
    assert cmd[-1] == os.path.join("out/audio_es", "audio.m3u8")


def test_parse_out_time():
    assert parse_out_time("00:01:30.500000") == pytest.approx(90.5)
    assert parse_out_time("N/A") == 0.0


def test_apply_progress_lines():
    progress = TranscodeProgress(resolution="720p")

    assert not apply_progress_line("out_time_us=30000000", progress, 60.0)
    assert not apply_progress_line("speed=2.5x", progress, 60.0)
    assert apply_progress_line("progress=continue", progress, 60.0)
    assert progress.percent == pytest.approx(50.0)
    assert progress.speed == "2.5x"

    assert apply_progress_line("progress=end", progress, 60.0)
    assert progress.percent == 100.0


def test_progress_without_duration_stays_at_zero():
    progress = TranscodeProgress(resolution="720p")

    apply_progress_line("out_time=00:00:10.000000", progress, 0.0)
    apply_progress_line("progress=continue", progress, 0.0)

    assert progress.percent == 0.0
    assert progress.out_time == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_transcode_success_reports_progress(tmp_path, spawned):
    stdout = b"out_time_us=5000000\nprogress=continue\nout_time_us=10000000\nprogress=end\n"
    spawned["process"] = lambda: FakeProcess(stdout=stdout)
    events = []

    result = await FFmpegRunner().transcode(
        "in.mp4", str(tmp_path), SPEC_720, HlsOptions(),
        asset_id="1/2", duration=10.0, on_progress=lambda p: events.append(p.percent),
    )

    assert os.path.isdir(tmp_path / "720p")
    assert result.playlist_relative_path == "720p/playlist.m3u8"
    assert result.bandwidth == 2500000
    assert events == [pytest.approx(50.0), 100.0]
    assert "-progress" in spawned["commands"][0]


@pytest.mark.asyncio
async def test_transcode_failure_keeps_stderr_tail(tmp_path, spawned):
    stderr = "".join(f"line {i}\n" for i in range(80)).encode()
    spawned["process"] = lambda: FakeProcess(stderr=stderr, returncode=1)

    with pytest.raises(TranscodeError) as excinfo:
        await FFmpegRunner().transcode("in.mp4", str(tmp_path), SPEC_720, HlsOptions())

    error = excinfo.value
    assert error.resolution == "720p"
    assert "code 1" in str(error)
    assert error.native_stderr.splitlines()[0] == "line 30"
    assert error.native_stderr.splitlines()[-1] == "line 79"


@pytest.mark.asyncio
async def test_transcode_missing_binary(tmp_path, monkeypatch):
    async def fake_exec(*command, **kwargs):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(TranscodeError, match="Failed to start FFmpeg"):
        await FFmpegRunner("/nope/ffmpeg").transcode("in.mp4", str(tmp_path), SPEC_720, HlsOptions())


@pytest.mark.asyncio
async def test_observer_errors_do_not_break_transcode(tmp_path, spawned):
    spawned["process"] = lambda: FakeProcess(stdout=b"progress=end\n")

    def broken_observer(progress):
        raise RuntimeError("observer")

    result = await FFmpegRunner().transcode(
        "in.mp4", str(tmp_path), SPEC_720, HlsOptions(), on_progress=broken_observer,
    )

    assert result.name == "720p"


@pytest.mark.asyncio
async def test_generate_audio_hls(tmp_path, spawned):
    spawned["process"] = lambda: FakeProcess(stdout=b"progress=end\n")

    generated = await FFmpegRunner().generate_audio_hls("dub.mp3", str(tmp_path), HlsOptions(), lang="es")

    assert os.path.isdir(tmp_path / "audio_es")
    assert generated["playlist_relative_path"] == "audio_es/audio.m3u8"
    assert generated["playlist_path"] == os.path.join(str(tmp_path), "audio_es", "audio.m3u8")


class HangingProcess:
    """Process whose output never ends until it is killed."""

    def __init__(self):
        self.pid = 4343
        self.returncode = None
        self.killed = False
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()

    def kill(self):
        self.killed = True
        self.returncode = -9
        self.stdout.feed_eof()
        self.stderr.feed_eof()

    async def wait(self):
        return self.returncode


@pytest.mark.asyncio
async def test_cancelled_run_kills_ffmpeg(spawned):
    process = HangingProcess()
    spawned["process"] = lambda: process

    task = asyncio.ensure_future(FFmpegRunner().run(["ffmpeg"], "720p"))
    for _ in range(5):
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert process.killed
