"""
Shared fixtures: a fake tool runner and sample media files.
"""

import json
import threading
import time

import pytest
from PIL import Image

from sidechannel.tools import ToolResult

SAMPLE_SRT = """1
00:00:01,000 --> 00:00:03,000
Hello everyone.

2
00:00:05,000 --> 00:00:07,000
<i>Welcome</i> to the show.

3
00:00:10,000 --> 00:00:14,000
(Door slams)

4
00:00:20,000 --> 00:00:22,500
Line one
Line two

5
00:01:05,500 --> 00:01:07,000
The end.
"""


FFPROBE_JSON = json.dumps({
    "streams": [
        {
            "index": 2,
            "codec_name": "subrip",
            "codec_type": "subtitle",
            "disposition": {"default": 1, "forced": 0},
            "tags": {"language": "eng", "title": "English"},
        },
        {
            "index": 3,
            "codec_name": "ass",
            "codec_type": "subtitle",
            "tags": {"language": "fre"},
        },
        {
            "index": 4,
            "codec_name": "hdmv_pgs_subtitle",
            "codec_type": "subtitle",
        },
    ]
})

FFMPEG_STDERR = """Input #0, matroska,webm, from 'movie.mkv':
  Metadata:
    title           : Some Movie
  Duration: 00:10:00.00, start: 0.000000, bitrate: 1000 kb/s
  Stream #0:0: Video: h264 (High), yuv420p, 1920x1080
  Stream #0:1(eng): Audio: aac (LC), 48000 Hz, stereo, fltp (default)
  Stream #0:2(eng): Subtitle: subrip (default)
    Metadata:
      title           : English [SDH]
      BPS-eng         : 120
  Stream #0:3[0x1201](rus): Subtitle: ass
  Stream #0:4: Subtitle: hdmv_pgs_subtitle
At least one output file must be specified
"""


class FakeRunner:
    """
    Drop-in for ToolRunner: records every command and hands it to
    `handler(cmd) -> ToolResult`, which may write output files.
    """

    def __init__(self, handler=None):
        self.handler = handler
        self.calls = []
        self._lock = threading.Lock()

    def run(self, cmd, timeout, cancel=None):
        cmd = [str(c) for c in cmd]
        with self._lock:
            self.calls.append(cmd)
        if self.handler is None:
            return ToolResult(0)
        return self.handler(cmd)

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)


def write_jpeg(path, size=(200, 112), color=(200, 30, 30)):
    Image.new("RGB", size, color).save(path, "JPEG")


def jpeg_handler(cmd):
    """ffmpeg stand-in that always produces a frame."""
    write_jpeg(cmd[-1])
    return ToolResult(0)


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "movie.mkv"
    path.write_bytes(b"\x1a\x45\xdf\xa3 matroska-ish bytes")
    return path


@pytest.fixture
def thumb_dir(tmp_path):
    path = tmp_path / "thumbs"
    path.mkdir()
    return path
