"""
Tests for the Track Extractor module.
"""

import pytest

from conftest import SAMPLE_SRT, FakeRunner
from sidechannel.errors import ErrorKind, ToolCancelledError, ToolTimeoutError
from sidechannel.extractor import TrackExtractor
from sidechannel.tools import ToolResult


def srt_handler(cmd):
    with open(cmd[-1], "w", encoding="utf-8") as f:
        f.write(SAMPLE_SRT)
    return ToolResult(0)


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "tmp"
    path.mkdir()
    return path


def make_extractor(handler, temp_dir, ffmpeg="ffmpeg"):
    runner = FakeRunner(handler)
    return TrackExtractor(ffmpeg, runner, temp_dir=temp_dir), runner


class TestCommand:

    def test_build_command(self, temp_dir):
        extractor, _ = make_extractor(None, temp_dir)
        out = temp_dir / "out.srt"
        assert extractor.build_command("movie.mkv", 2, out) == [
            "ffmpeg", "-y", "-i", "movie.mkv", "-map", "0:s:2",
            "-c:s", "srt", "-loglevel", "error", str(out),
        ]


class TestExtract:
    """Test extraction outcomes and temp file cleanup."""

    def test_extracts_cues(self, video_file, temp_dir):
        extractor, runner = make_extractor(srt_handler, temp_dir)
        result = extractor.extract_result(str(video_file), 1)
        assert result.is_ok
        assert len(result.value) == 5
        assert "0:s:1" in runner.calls[0]

    def test_temp_file_removed(self, video_file, temp_dir):
        extractor, _ = make_extractor(srt_handler, temp_dir)
        extractor.extract_track(str(video_file), 0)
        assert list(temp_dir.iterdir()) == []

    def test_temp_file_removed_on_timeout(self, video_file, temp_dir):
        def slow(cmd):
            srt_handler(cmd)
            raise ToolTimeoutError("ffmpeg timed out after 30.0s")

        extractor, _ = make_extractor(slow, temp_dir)
        result = extractor.extract_result(str(video_file), 0)
        assert result.error is ErrorKind.TIMEOUT
        assert list(temp_dir.iterdir()) == []

    def test_cancelled(self, video_file, temp_dir):
        def cancelled(cmd):
            raise ToolCancelledError("ffmpeg cancelled")

        extractor, _ = make_extractor(cancelled, temp_dir)
        assert extractor.extract_result(str(video_file), 0).error is ErrorKind.CANCELLED
        assert extractor.extract_track(str(video_file), 0) == []

    def test_no_output_written(self, video_file, temp_dir):
        extractor, _ = make_extractor(lambda cmd: ToolResult(1, b"", b"Stream map matches no streams"), temp_dir)
        result = extractor.extract_result(str(video_file), 9)
        assert result.error is ErrorKind.MALFORMED_INPUT
        assert extractor.extract_track(str(video_file), 9) == []

    def test_missing_video(self, tmp_path, temp_dir):
        extractor, runner = make_extractor(srt_handler, temp_dir)
        result = extractor.extract_result(str(tmp_path / "gone.mkv"), 0)
        assert result.error is ErrorKind.NOT_READY
        assert runner.calls == []

    def test_no_ffmpeg(self, video_file, temp_dir):
        extractor, runner = make_extractor(srt_handler, temp_dir, ffmpeg=None)
        assert not extractor.available
        assert extractor.extract_result(str(video_file), 0).error is ErrorKind.TOOL_UNAVAILABLE
        assert runner.calls == []

    def test_empty_track(self, video_file, temp_dir):
        def empty(cmd):
            open(cmd[-1], "w").close()
            return ToolResult(0)

        extractor, _ = make_extractor(empty, temp_dir)
        result = extractor.extract_result(str(video_file), 0)
        assert result.is_ok
        assert result.value == []
