"""
Tests for the Thumbnail Cache + Generator module.
"""

import threading
import time

import numpy as np
import pytest

from config import ThumbnailConfig
from conftest import FakeRunner, jpeg_handler, wait_until, write_jpeg
from sidechannel.errors import ErrorKind
from sidechannel.thumbnails import (
    Thumbnail,
    ThumbnailCache,
    ThumbnailGenerator,
    ThumbnailService,
    bucket_key,
)
from sidechannel.tools import ToolResult


def is_combined(cmd):
    return cmd[1] == "-ss"


def make_thumb(key):
    return Thumbnail(key, np.zeros((112, 200, 3), dtype=np.uint8))


@pytest.fixture
def thumb_config(thumb_dir):
    return ThumbnailConfig(temp_dir=str(thumb_dir))


def make_service(handler, config, video=None, duration_ms=600_000):
    runner = FakeRunner(handler)
    service = ThumbnailService("ffmpeg", runner, config)
    if video is not None:
        service.set_video(str(video), duration_ms)
    return service, runner


class TestBucketKey:

    def test_quantization(self):
        assert bucket_key(125_000, 10_000) == 120_000
        assert bucket_key(119_999, 10_000) == 110_000

    def test_exact_boundary(self):
        assert bucket_key(300_000) == 300_000
        assert bucket_key(0) == 0


class TestThumbnailCache:

    def test_put_if_absent(self):
        cache = ThumbnailCache()
        first, second = make_thumb(10_000), make_thumb(10_000)
        assert cache.put_if_absent(first)
        assert not cache.put_if_absent(second)
        assert cache.get(10_000) is first

    def test_bounded_not_lru(self):
        cache = ThumbnailCache(max_size=2)
        cache.put_if_absent(make_thumb(0))
        cache.put_if_absent(make_thumb(10_000))
        assert not cache.put_if_absent(make_thumb(20_000))
        assert cache.keys() == [0, 10_000]
        assert len(cache) == 2

    def test_thumbnails_compare_by_identity(self):
        first, second = make_thumb(0), make_thumb(0)
        assert first == first
        assert first != second
        assert len({first, second}) == 2

    def test_clear(self):
        cache = ThumbnailCache()
        cache.put_if_absent(make_thumb(0))
        cache.clear()
        assert not cache.has(0)


class TestGenerator:
    """Test seek strategies."""

    def test_combined_seek_command(self, thumb_dir):
        gen = ThumbnailGenerator("ffmpeg", FakeRunner(), thumb_dir)
        cmd = gen.build_command("movie.mkv", 300_000, thumb_dir / "t.jpg", combined=True)
        assert cmd == [
            "ffmpeg", "-ss", "00:04:45.000", "-i", "movie.mkv", "-ss", "00:00:15.000",
            "-vframes", "1", "-s", "200x112", "-q:v", "5", "-loglevel", "error",
            "-y", str(thumb_dir / "t.jpg"),
        ]

    def test_output_seek_command(self, thumb_dir):
        gen = ThumbnailGenerator("ffmpeg", FakeRunner(), thumb_dir)
        cmd = gen.build_command("movie.mkv", 5_000, thumb_dir / "t.jpg", combined=False)
        assert cmd[1:5] == ["-i", "movie.mkv", "-ss", "00:00:05.000"]

    def test_falls_back_to_output_seek(self, thumb_dir):
        def combined_fails(cmd):
            if not is_combined(cmd):
                write_jpeg(cmd[-1])
            return ToolResult(0)

        runner = FakeRunner(combined_fails)
        gen = ThumbnailGenerator("ffmpeg", runner, thumb_dir)
        frame = gen.generate("movie.mkv", 300_000, timeout=3.0)
        assert frame is not None
        assert frame.shape == (112, 200, 3)
        assert [is_combined(c) for c in runner.calls] == [True, False]

    def test_short_target_uses_output_seek_only(self, thumb_dir):
        runner = FakeRunner(jpeg_handler)
        gen = ThumbnailGenerator("ffmpeg", runner, thumb_dir)
        assert gen.generate("movie.mkv", 10_000, timeout=3.0) is not None
        assert [is_combined(c) for c in runner.calls] == [False]

    def test_no_frame_from_either(self, thumb_dir):
        runner = FakeRunner()
        gen = ThumbnailGenerator("ffmpeg", runner, thumb_dir)
        assert gen.generate("movie.mkv", 300_000, timeout=3.0) is None
        assert runner.call_count == 2

    def test_corrupt_output_ignored(self, thumb_dir):
        def garbage(cmd):
            with open(cmd[-1], "wb") as f:
                f.write(b"not a jpeg")
            return ToolResult(0)

        gen = ThumbnailGenerator("ffmpeg", FakeRunner(garbage), thumb_dir)
        assert gen.generate("movie.mkv", 300_000, timeout=3.0) is None

    def test_temp_files_removed(self, thumb_dir):
        gen = ThumbnailGenerator("ffmpeg", FakeRunner(jpeg_handler), thumb_dir)
        gen.generate("movie.mkv", 300_000, timeout=3.0)
        assert list(thumb_dir.glob("thumb_*.jpg")) == []


class TestThumbnailService:
    """Test the request state machine."""

    def test_generates_and_caches(self, video_file, thumb_config):
        service, runner = make_service(jpeg_handler, thumb_config, video_file)
        thumb = service.get_thumbnail(304_000)
        assert thumb.bucket_key == 300_000
        assert (thumb.width, thumb.height) == (200, 112)
        assert service.cache.has(300_000)

    def test_same_bucket_decodes_once(self, video_file, thumb_config):
        service, runner = make_service(jpeg_handler, thumb_config, video_file)
        first = service.get_thumbnail(300_000)
        second = service.get_thumbnail(309_999)
        assert second is first
        assert runner.call_count == 1

    def test_frame_is_read_only(self, video_file, thumb_config):
        service, _ = make_service(jpeg_handler, thumb_config, video_file)
        thumb = service.get_thumbnail(0)
        assert not thumb.image.flags.writeable
        with pytest.raises(ValueError):
            thumb.image[0, 0, 0] = 1

    def test_no_video(self, thumb_config):
        service, runner = make_service(jpeg_handler, thumb_config)
        assert service.get_thumbnail_result(1000).error is ErrorKind.NOT_READY
        assert runner.calls == []

    def test_unknown_duration(self, video_file, thumb_config):
        service, runner = make_service(jpeg_handler, thumb_config, video_file, duration_ms=0)
        assert service.get_thumbnail_result(1000).error is ErrorKind.NOT_READY
        assert runner.calls == []

    def test_no_ffmpeg(self, video_file, thumb_config):
        service = ThumbnailService(None, FakeRunner(), thumb_config)
        service.set_video(str(video_file), 600_000)
        assert not service.is_enabled
        assert service.get_thumbnail_result(1000).error is ErrorKind.TOOL_UNAVAILABLE

    def test_disabled_clears_cache(self, video_file, thumb_config):
        service, _ = make_service(jpeg_handler, thumb_config, video_file)
        service.get_thumbnail(0)
        service.set_enabled(False)
        assert len(service.cache) == 0
        assert service.get_thumbnail(0) is None

    def test_disabled_from_config(self, video_file, thumb_dir):
        config = ThumbnailConfig(enabled=False, temp_dir=str(thumb_dir))
        service, runner = make_service(jpeg_handler, config, video_file)
        assert service.get_thumbnail(0) is None
        assert runner.calls == []

    def test_cache_limit(self, video_file, thumb_dir):
        config = ThumbnailConfig(max_cache_size=2, temp_dir=str(thumb_dir))
        service, runner = make_service(jpeg_handler, config, video_file)
        for t in (0, 10_000, 20_000):
            assert service.get_thumbnail(t) is not None
        assert service.cache.keys() == [0, 10_000]
        service.get_thumbnail(20_000)
        assert runner.call_count == 4

    def test_busy_returns_quickly(self, video_file, thumb_config):
        started, release = threading.Event(), threading.Event()

        def slow(cmd):
            started.set()
            release.wait(5.0)
            return jpeg_handler(cmd)

        service, runner = make_service(slow, thumb_config, video_file)
        worker = threading.Thread(target=service.get_thumbnail, args=(300_000,))
        worker.start()
        try:
            assert started.wait(2.0)
            t0 = time.monotonic()
            result = service.get_thumbnail_result(500_000)
            elapsed = time.monotonic() - t0
            assert result.error is ErrorKind.BUSY
            assert elapsed < 0.5
        finally:
            release.set()
            worker.join(5.0)
        assert runner.call_count == 1

    def test_video_switch_discards_in_flight(self, video_file, tmp_path, thumb_config):
        started, release = threading.Event(), threading.Event()

        def slow(cmd):
            started.set()
            release.wait(5.0)
            return jpeg_handler(cmd)

        service, _ = make_service(slow, thumb_config, video_file)
        results = []
        worker = threading.Thread(
            target=lambda: results.append(service.get_thumbnail_result(300_000))
        )
        worker.start()
        assert started.wait(2.0)

        other = tmp_path / "other.mkv"
        other.write_bytes(b"x")
        service.set_video(str(other), 120_000)
        release.set()
        worker.join(5.0)

        assert results[0].error is ErrorKind.CANCELLED
        assert len(service.cache) == 0

    def test_video_switch_clears_cache(self, video_file, tmp_path, thumb_config):
        service, _ = make_service(jpeg_handler, thumb_config, video_file)
        service.get_thumbnail(0)
        other = tmp_path / "other.mkv"
        other.write_bytes(b"x")
        service.set_video(str(other), 120_000)
        assert len(service.cache) == 0

    def test_duration_update_keeps_cache(self, video_file, thumb_config):
        service, _ = make_service(jpeg_handler, thumb_config, video_file)
        service.get_thumbnail(0)
        service.set_video(str(video_file), 700_000)
        assert service.cache.has(0)

    def test_cancelled_request(self, video_file, thumb_config):
        service, runner = make_service(jpeg_handler, thumb_config, video_file)
        cancel = threading.Event()
        cancel.set()
        assert service.get_thumbnail_result(0, cancel).error is ErrorKind.CANCELLED
        assert runner.calls == []

    def test_dispose_removes_leftovers(self, video_file, thumb_dir, thumb_config):
        service, _ = make_service(jpeg_handler, thumb_config, video_file)
        write_jpeg(thumb_dir / "thumb_leftover.jpg")
        service.dispose()
        assert list(thumb_dir.glob("thumb_*.jpg")) == []
        assert service.get_thumbnail_result(0).error is ErrorKind.NOT_READY

    def test_concurrent_requests_single_decoder(self, video_file, thumb_config):
        def slowish(cmd):
            time.sleep(0.1)
            return jpeg_handler(cmd)

        service, runner = make_service(slowish, thumb_config, video_file)
        threads = [
            threading.Thread(target=service.get_thumbnail, args=(300_000 + i,))
            for i in range(5)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5.0)
        assert wait_until(lambda: service.cache.has(300_000))
        assert runner.call_count == 1
