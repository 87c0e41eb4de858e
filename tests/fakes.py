"""Fake encoder runners and a store that records status changes."""

import os

from hlsconvert.errors import ProbeError, TranscodeError
from hlsconvert.models import (
    RenditionResult,
    TranscodeProgress,
    VideoMetadata,
    compute_bandwidth,
)
from hlsconvert.store import JsonTaskStore
from hlsconvert.task import TaskStatus


class FakeProber:
    """Stands in for FFprobeRunner."""

    def __init__(self, metadata=None, media_type="video", error=None):
        self.metadata = metadata or VideoMetadata(width=1920, height=1080, bitrate="5000k", duration=60.0)
        self.media_type = media_type
        self.error = error
        self.probed = []

    async def probe(self, path):
        self.probed.append(path)
        if self.error:
            raise ProbeError(self.error)
        return self.metadata

    async def check_media_type(self, path):
        return self.media_type


class FakeRunner:
    """Stands in for FFmpegRunner; writes a playlist and one segment per rendition."""

    def __init__(self, fail_names=()):
        self.fail_names = set(fail_names)
        self.calls = []

    async def transcode(
        self,
        input_path,
        output_dir,
        spec,
        options,
        copy=False,
        asset_id="",
        duration=0.0,
        on_progress=None,
    ):
        self.calls.append((spec.name, copy))
        resolution_dir = os.path.join(output_dir, spec.name)
        os.makedirs(resolution_dir, exist_ok=True)

        if spec.name in self.fail_names:
            raise TranscodeError(spec.name, "FFmpeg exited with code 1", native_stderr="Conversion failed!")

        with open(os.path.join(resolution_dir, options.resolution_playlist_name), "w") as f:
            f.write("#EXTM3U\n#EXT-X-ENDLIST\n")
        with open(os.path.join(resolution_dir, "segment000.ts"), "wb") as f:
            f.write(b"\x47")

        if on_progress:
            on_progress(TranscodeProgress(resolution=spec.name, percent=100.0))

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
        input_path,
        output_dir,
        options,
        asset_id="",
        lang="default",
        duration=0.0,
        on_progress=None,
    ):
        self.calls.append((f"audio_{lang}", False))
        audio_dir = os.path.join(output_dir, f"audio_{lang}")
        os.makedirs(audio_dir, exist_ok=True)
        playlist_path = os.path.join(audio_dir, options.audio_playlist_name)
        with open(playlist_path, "w") as f:
            f.write("#EXTM3U\n#EXT-X-ENDLIST\n")
        return {
            "playlist_path": playlist_path,
            "playlist_relative_path": f"audio_{lang}/{options.audio_playlist_name}",
        }


class RecordingStore(JsonTaskStore):
    """JsonTaskStore that remembers every accepted status."""

    def __init__(self, file_path):
        super().__init__(file_path)
        self.history = []

    def create(self, metadata):
        task_id = super().create(metadata)
        self.history.append(TaskStatus.PENDING)
        return task_id

    def set_status(self, task_id, status, data=None, error=None):
        accepted = super().set_status(task_id, status, data=data, error=error)
        if accepted:
            self.history.append(status)
        return accepted
