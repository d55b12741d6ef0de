"""
Tests for the ffmpeg encoder adapter.
"""

import asyncio
import json

import pytest

from app.services.encoder import (
    VERTICAL_FILTER,
    BitrateTier,
    EncoderAdapter,
    EncoderUnavailable,
    EncodingFailure,
    EncodingTimeout,
    build_compress_args,
    build_extract_audio_args,
    build_segment_args,
)


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, returncode=0, stdout=b"", stderr=b"", hang=False, exited_before_kill=False):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.hang = hang
        self.exited_before_kill = exited_before_kill
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(3600)
        return self.stdout, self.stderr

    def kill(self):
        self.killed = True
        if self.exited_before_kill:
            raise ProcessLookupError(3, "No such process")

    async def wait(self):
        return -9


@pytest.fixture
def spawn(mocker):
    """Patch subprocess creation; returns a setter for the fake process."""

    def _spawn(process=None, side_effect=None):
        return mocker.patch(
            "app.services.encoder.asyncio.create_subprocess_exec",
            new=mocker.AsyncMock(return_value=process, side_effect=side_effect),
        )

    return _spawn


class TestArgumentBuilders:
    """Tests for the ffmpeg option lists."""

    def test_compress_args(self):
        args = build_compress_args("in.mov", "out.mp4")
        assert args[0] == "-y"
        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-crf") + 1] == "28"
        assert args[args.index("-movflags") + 1] == "+faststart"
        assert args[-1] == "out.mp4"

    def test_extract_audio_args_drop_video(self):
        args = build_extract_audio_args("in.mp4", "out.mp3")
        assert "-vn" in args
        assert args[args.index("-c:a") + 1] == "libmp3lame"
        assert args[-1] == "out.mp3"

    def test_segment_args_seek_before_input(self):
        args = build_segment_args("in.mp4", "out.mp4", 60.0, 10.0)
        assert args.index("-ss") < args.index("-i")
        assert args[args.index("-ss") + 1] == "60.000"
        assert args[args.index("-t") + 1] == "10.000"
        assert args[args.index("-vf") + 1] == VERTICAL_FILTER
        assert args[args.index("-pix_fmt") + 1] == "yuv420p"

    def test_segment_args_follow_tier(self):
        normal = build_segment_args("in.mp4", "out.mp4", 0, 30, BitrateTier.NORMAL)
        reduced = build_segment_args("in.mp4", "out.mp4", 0, 30, BitrateTier.REDUCED)
        assert normal[normal.index("-b:v") + 1] == "4000k"
        assert reduced[reduced.index("-b:v") + 1] == "2500k"
        assert reduced[reduced.index("-b:a") + 1] == "96k"
        assert reduced[reduced.index("-bufsize") + 1] == "5000k"


class TestSubprocessHandling:
    """Tests for timeouts and exit codes."""

    def test_timeout_kills_process(self, spawn):
        process = FakeProcess(hang=True)
        spawn(process)
        encoder = EncoderAdapter()

        with pytest.raises(EncodingTimeout):
            asyncio.run(encoder._run(["ffmpeg", "-i", "x"], 0.05, "compression"))

        assert process.killed

    def test_timeout_tolerates_process_already_gone(self, spawn):
        """A process that exits right as the timeout fires still yields EncodingTimeout."""
        process = FakeProcess(hang=True, exited_before_kill=True)
        spawn(process)
        encoder = EncoderAdapter()

        with pytest.raises(EncodingTimeout):
            asyncio.run(encoder._run(["ffmpeg", "-i", "x"], 0.05, "compression"))

        assert process.killed

    def test_spawn_os_error_is_encoding_failure(self, spawn):
        spawn(side_effect=OSError(24, "Too many open files"))
        encoder = EncoderAdapter()

        with pytest.raises(EncodingFailure, match="Too many open files"):
            asyncio.run(encoder._run(["ffmpeg", "-i", "x"], 5, "compression"))

    def test_spawn_os_error_during_audio_extraction_returns_none(self, spawn, tmp_path):
        spawn(side_effect=OSError(24, "Too many open files"))
        encoder = EncoderAdapter()
        encoder._available = True

        assert asyncio.run(encoder.extract_audio("in.mp4", str(tmp_path / "a.mp3"))) is None

    def test_audio_extraction_timeout_with_exited_process_returns_none(self, spawn, tmp_path):
        spawn(FakeProcess(hang=True, exited_before_kill=True))
        encoder = EncoderAdapter()
        encoder._available = True
        encoder.extraction_timeout = 0.05

        assert asyncio.run(encoder.extract_audio("in.mp4", str(tmp_path / "a.mp3"))) is None

    def test_non_zero_exit_raises_failure_with_stderr(self, spawn):
        spawn(FakeProcess(returncode=1, stderr=b"Invalid data found when processing input"))
        encoder = EncoderAdapter()

        with pytest.raises(EncodingFailure, match="Invalid data"):
            asyncio.run(encoder._run(["ffmpeg"], 5, "compression"))

    def test_missing_binary_is_unavailable(self, spawn):
        spawn(side_effect=FileNotFoundError("ffmpeg"))
        encoder = EncoderAdapter()

        with pytest.raises(EncoderUnavailable):
            asyncio.run(encoder.ensure_available())

    def test_failed_version_probe_is_unavailable(self, spawn):
        spawn(FakeProcess(returncode=127))
        encoder = EncoderAdapter()

        with pytest.raises(EncoderUnavailable):
            asyncio.run(encoder.ensure_available())

    def test_availability_is_cached(self, spawn):
        create = spawn(FakeProcess(stdout=b"ffmpeg version 6.1"))
        encoder = EncoderAdapter()

        asyncio.run(encoder.ensure_available())
        asyncio.run(encoder.ensure_available())

        assert create.await_count == 1


class TestEncodingOperations:
    """Tests for compress, extract_audio and probe_duration."""

    def _encoder_writing(self, mocker, size):
        """Encoder whose ffmpeg run writes `size` bytes to the last argument."""
        encoder = EncoderAdapter()
        encoder._available = True

        async def fake_run(cmd, timeout, operation):
            with open(cmd[-1], "wb") as f:
                f.write(b"x" * size)
            return b""

        mocker.patch.object(encoder, "_run", side_effect=fake_run)
        return encoder

    def test_compress_keeps_smaller_output(self, mocker, tmp_path):
        source = tmp_path / "in.mov"
        source.write_bytes(b"v" * 1000)
        encoder = self._encoder_writing(mocker, 400)

        result = asyncio.run(encoder.compress(str(source), str(tmp_path / "out.mp4")))

        assert not result.use_original
        assert result.output_size_bytes == 400

    def test_compress_never_forwards_larger_output(self, mocker, tmp_path):
        source = tmp_path / "in.mp4"
        source.write_bytes(b"v" * 1000)
        encoder = self._encoder_writing(mocker, 1500)

        result = asyncio.run(encoder.compress(str(source), str(tmp_path / "out.mp4")))

        assert result.use_original
        assert result.input_size_bytes == 1000

    def test_extract_audio_failure_returns_none(self, mocker, tmp_path):
        encoder = EncoderAdapter()
        encoder._available = True
        mocker.patch.object(encoder, "_run", side_effect=EncodingFailure("no audio stream"))

        assert asyncio.run(encoder.extract_audio("in.mp4", str(tmp_path / "a.mp3"))) is None

    def test_extract_audio_returns_path(self, mocker, tmp_path):
        encoder = self._encoder_writing(mocker, 10)
        output = str(tmp_path / "a.mp3")

        assert asyncio.run(encoder.extract_audio("in.mp4", output)) == output

    def test_probe_duration_parses_ffprobe_json(self, spawn):
        spawn(FakeProcess(stdout=json.dumps({"format": {"duration": "130.52"}}).encode()))

        assert asyncio.run(EncoderAdapter().probe_duration("in.mp4")) == pytest.approx(130.52)

    def test_probe_duration_rejects_garbage(self, spawn):
        spawn(FakeProcess(stdout=b"not json"))

        with pytest.raises(EncodingFailure):
            asyncio.run(EncoderAdapter().probe_duration("in.mp4"))
