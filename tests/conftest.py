"""Shared fixtures."""

import pytest

from hlsconvert.config import ConverterConfig, HlsOptions
from hlsconvert.models import RenditionSpec

from fakes import RecordingStore


@pytest.fixture
def converter_config(tmp_path):
    return ConverterConfig(
        processed_dir=str(tmp_path / "processed"),
        videos_dir=str(tmp_path / "videos"),
        tasks_file=str(tmp_path / "data" / "tasks.json"),
        options=HlsOptions(resolutions=[
            RenditionSpec(name="480p", size="854x480", bitrate="1400k"),
            RenditionSpec(name="720p", size="1280x720", bitrate="2800k"),
        ]),
    )


@pytest.fixture
def recording_store(converter_config):
    return RecordingStore(converter_config.tasks_file)
