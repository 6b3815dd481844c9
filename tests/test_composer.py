"""
Render composer tests.

The encoder is a fake process; assets are data URLs, local uploads or
MockTransport downloads, so neither ffmpeg nor the network is needed.
TestRealEncode is the exception and only runs where ffmpeg is installed.
"""

import asyncio
import json
import shutil
import subprocess
from pathlib import Path

import httpx
import pytest

from core.errors import AssetFetchError, GenerationCancelled, InvalidRequest, RenderEncodeError
from services.rendering import RenderComposer, RenderJobManager, RenderRequest, RenderScene
from services.rendering.composer import STAGE_WEIGHTS, parse_progress_line
from services.storage import encode_data_url
from services.streaming import EventType, ProgressTracker

from conftest import FakeProcess, make_process_factory

VIDEO = encode_data_url(b"\x00\x00\x00\x18ftypmp42", "video/mp4")
AUDIO = encode_data_url(b"ID3\x03\x00audio", "audio/mpeg")


def two_scenes():
    return [
        RenderScene(id="s1", duration_seconds=4, video_url=VIDEO, audio_url=AUDIO, narration_text="First line."),
        RenderScene(id="s2", duration_seconds=2, audio_url=AUDIO, narration_text="Second line."),
    ]


async def encoder_started(factory, timeout: float = 2.0):
    """Wait until the fake encoder has been launched."""
    loop = asyncio.get_event_loop()
    deadline = loop.time() + timeout
    while not factory.calls:
        assert loop.time() < deadline, "encoder never started"
        await asyncio.sleep(0.01)


def job_dirs(config):
    root = Path(config.render.jobs_dir)
    return list(root.iterdir()) if root.exists() else []


class TestRender:

    @pytest.mark.asyncio
    async def test_successful_render(self, config):
        process = FakeProcess(stdout=[b"frame=10\n", b"out_time_us=3000000\n", b"progress=end\n"])
        factory = make_process_factory(process)
        composer = RenderComposer(config, process_factory=factory)
        tracker = ProgressTracker("job-a", stage_weights=STAGE_WEIGHTS)

        result = await composer.render(RenderRequest(scenes=two_scenes()), tracker=tracker, job_id="job-a")

        data = result.to_dict()
        assert data["success"] is True
        assert data["jobId"] == "job-a"
        assert data["videoUrl"] == "/uploads/render_jobs/job-a/final_job-a.mp4"
        assert data["durationSeconds"] == 6
        assert data["segmentCount"] == 2
        assert data["placeholderScenes"] == [1]

        # Intermediates are purged, the output stays
        job_dir = Path(config.render.jobs_dir) / "job-a"
        assert [p.name for p in job_dir.iterdir()] == ["final_job-a.mp4"]

        cmd, kwargs = factory.calls[0]
        assert kwargs["cwd"] == str(job_dir.resolve())
        assert "color=c=black" in cmd[cmd.index("-filter_complex") + 1]

        history = tracker.get_history()
        assert history[-1].event_type == EventType.COMPLETED
        assert history[-1].progress_percent == 100
        encode_progress = [e for e in history if e.event_type == EventType.PROGRESS]
        assert encode_progress and encode_progress[0].message == "Encoded 3.0s of 6.0s"
        percents = [e.progress_percent for e in history]
        assert percents == sorted(percents)

    @pytest.mark.asyncio
    async def test_requested_dimensions_and_auto_subtitles(self, config):
        factory = make_process_factory(FakeProcess())
        config.render.purge_intermediates_on_success = False
        composer = RenderComposer(config, process_factory=factory)

        result = await composer.render(
            RenderRequest(scenes=two_scenes(), auto_subtitles=True, width=720, height=1280),
            job_id="job-b",
        )

        cmd, _ = factory.calls[0]
        graph = cmd[cmd.index("-filter_complex") + 1]
        assert "scale=720:1280" in graph
        assert "subtitles='subtitles.srt'" in graph
        srt = (Path(config.render.jobs_dir) / "job-b" / "subtitles.srt").read_text()
        assert "00:00:04,000 --> 00:00:06,000\nSecond line." in srt
        assert result.segment_count == 2

    @pytest.mark.asyncio
    async def test_downloads_remote_assets(self, config):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            if request.url.path.endswith(".mp3"):
                return httpx.Response(404)
            return httpx.Response(200, content=b"clip-bytes")

        composer = RenderComposer(
            config,
            transport=httpx.MockTransport(handler),
            process_factory=make_process_factory(FakeProcess()),
        )
        scenes = [RenderScene(id="s1", duration_seconds=3, video_url="https://cdn.test/c.mp4",
                              audio_url="https://cdn.test/missing.mp3")]

        result = await composer.render(RenderRequest(scenes=scenes))

        assert sorted(requested) == ["https://cdn.test/c.mp4", "https://cdn.test/missing.mp3"]
        assert result.placeholder_scenes == [0]
        assert len(result.warnings) == 1
        assert "audio" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_local_upload_assets(self, config):
        media_dir = Path(config.storage.uploads_dir) / "media"
        media_dir.mkdir(parents=True)
        (media_dir / "still.png").write_bytes(b"png")
        factory = make_process_factory(FakeProcess())
        composer = RenderComposer(config, process_factory=factory)

        result = await composer.render(RenderRequest(scenes=[
            RenderScene(id="s1", duration_seconds=2, image_url="/uploads/media/still.png", audio_url=AUDIO),
        ]))

        cmd, _ = factory.calls[0]
        assert str((media_dir / "still.png").resolve()) in cmd
        assert result.placeholder_scenes == []
        assert (media_dir / "still.png").exists()

    @pytest.mark.asyncio
    async def test_strict_assets_abort(self, config):
        config.render.strict_assets = True
        factory = make_process_factory(FakeProcess())
        composer = RenderComposer(config, process_factory=factory)
        scenes = two_scenes()
        scenes[1].audio_url = "data:audio/mpeg;base64,@@@"

        with pytest.raises(AssetFetchError) as exc_info:
            await composer.render(RenderRequest(scenes=scenes))

        assert exc_info.value.scene_index == 1
        assert exc_info.value.job_id
        assert factory.calls == []

    @pytest.mark.asyncio
    async def test_encoder_failure_names_the_scene(self, config):
        process = FakeProcess(returncode=1, stderr=[b"Error while decoding stream #2:0: Invalid data\n"])
        composer = RenderComposer(config, process_factory=make_process_factory(process, write_output=False))
        scenes = [
            RenderScene(id="s1", duration_seconds=2, video_url=VIDEO, audio_url=AUDIO),
            RenderScene(id="s2", duration_seconds=2, video_url=VIDEO),
        ]
        tracker = ProgressTracker("job-c")

        with pytest.raises(RenderEncodeError) as exc_info:
            await composer.render(RenderRequest(scenes=scenes), tracker=tracker, job_id="job-c")

        error = exc_info.value
        assert error.job_id == "job-c"
        assert error.scene_index == 1
        assert "Invalid data" in error.stderr_tail
        assert "scene=1" in str(error)
        assert tracker.get_history()[-1].event_type == EventType.FAILED
        # Kept for inspection
        assert (Path(config.render.jobs_dir) / "job-c").exists()

    @pytest.mark.asyncio
    async def test_failed_job_removed_when_not_kept(self, config):
        config.render.keep_failed_jobs = False
        composer = RenderComposer(config, process_factory=make_process_factory(FakeProcess(returncode=1), write_output=False))

        with pytest.raises(RenderEncodeError):
            await composer.render(RenderRequest(scenes=two_scenes()), job_id="job-d")

        assert not (Path(config.render.jobs_dir) / "job-d").exists()

    @pytest.mark.asyncio
    async def test_missing_output_is_an_error(self, config):
        composer = RenderComposer(config, process_factory=make_process_factory(FakeProcess(), write_output=False))

        with pytest.raises(RenderEncodeError) as exc_info:
            await composer.render(RenderRequest(scenes=two_scenes()))

        assert "no output" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_ffmpeg_binary(self, config):
        async def factory(*cmd, **kwargs):
            raise FileNotFoundError("ffmpeg")

        composer = RenderComposer(config, process_factory=factory)

        with pytest.raises(RenderEncodeError) as exc_info:
            await composer.render(RenderRequest(scenes=two_scenes()))

        assert "Could not start ffmpeg" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cancel_kills_the_encoder(self, config):
        process = FakeProcess(hang=True)
        factory = make_process_factory(process)
        composer = RenderComposer(config, process_factory=factory)
        cancel = asyncio.Event()
        tracker = ProgressTracker("job-e")

        task = asyncio.ensure_future(
            composer.render(RenderRequest(scenes=two_scenes()), tracker=tracker, cancel_event=cancel, job_id="job-e")
        )
        await encoder_started(factory)
        cancel.set()

        with pytest.raises(GenerationCancelled):
            await asyncio.wait_for(task, timeout=2)

        assert process.killed
        assert tracker.get_history()[-1].event_type == EventType.CANCELLED
        assert not (Path(config.render.jobs_dir) / "job-e").exists()

    @pytest.mark.asyncio
    async def test_encode_timeout(self, config):
        config.render.encode_timeout_seconds = 0.05
        process = FakeProcess(hang=True)
        composer = RenderComposer(config, process_factory=make_process_factory(process))

        with pytest.raises(RenderEncodeError) as exc_info:
            await composer.render(RenderRequest(scenes=two_scenes()))

        assert "timed out" in str(exc_info.value)
        assert process.killed


class TestValidation:

    @pytest.mark.asyncio
    async def test_no_scenes(self, config):
        composer = RenderComposer(config, process_factory=make_process_factory(FakeProcess()))

        with pytest.raises(InvalidRequest) as exc_info:
            await composer.render(RenderRequest(scenes=[]))

        assert str(exc_info.value) == "No scenes provided"
        assert job_dirs(config) == []

    @pytest.mark.parametrize("request_kwargs", [
        {"scenes": [RenderScene(id="s", duration_seconds=0)]},
        {"scenes": [RenderScene(id="s", duration_seconds=-1)]},
        {"scenes": [RenderScene(id="s", duration_seconds=2)], "width": 721},
        {"scenes": [RenderScene(id="s", duration_seconds=2)], "height": 0},
    ])
    def test_invalid_requests(self, config, request_kwargs):
        with pytest.raises(InvalidRequest):
            RenderComposer(config).validate(RenderRequest(**request_kwargs))


class TestRenderJobManager:

    @pytest.mark.asyncio
    async def test_background_render_completes(self, config):
        manager = RenderJobManager(RenderComposer(config, process_factory=make_process_factory(FakeProcess())))

        job = manager.start(RenderRequest(scenes=two_scenes()))
        queue = job.tracker.subscribe()
        await job.task

        assert job.status == "completed"
        assert job.to_dict()["result"]["videoUrl"].endswith(".mp4")
        assert job.to_dict()["progress"] == 100

        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        assert events[0].event_type == EventType.STARTED
        assert events[-1].event_type == EventType.COMPLETED

    @pytest.mark.asyncio
    async def test_background_failure_is_recorded(self, config):
        manager = RenderJobManager(RenderComposer(
            config, process_factory=make_process_factory(FakeProcess(returncode=1), write_output=False),
        ))

        job = manager.start(RenderRequest(scenes=two_scenes()))
        await job.task

        assert job.status == "failed"
        data = job.to_dict()
        assert data["errorCode"] == "ENCODE_FAILED"
        assert manager.cancel(job.job_id) is False

    @pytest.mark.asyncio
    async def test_cancel_background_render(self, config):
        process = FakeProcess(hang=True)
        factory = make_process_factory(process)
        manager = RenderJobManager(RenderComposer(config, process_factory=factory))

        job = manager.start(RenderRequest(scenes=two_scenes()))
        await encoder_started(factory)

        assert manager.cancel(job.job_id) is True
        await asyncio.wait_for(job.task, timeout=2)

        assert job.status == "cancelled"
        assert process.killed

    def test_invalid_request_rejected_up_front(self, config):
        manager = RenderJobManager(RenderComposer(config))

        with pytest.raises(InvalidRequest):
            manager.start(RenderRequest(scenes=[]))
        assert not manager._jobs

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self, config):
        process = FakeProcess(hang=True)
        factory = make_process_factory(process)
        manager = RenderJobManager(RenderComposer(config, process_factory=factory))
        job = manager.start(RenderRequest(scenes=two_scenes()))
        await encoder_started(factory)

        await asyncio.wait_for(manager.shutdown(), timeout=2)

        assert job.status == "cancelled"


@pytest.mark.parametrize("line, seconds", [
    ("out_time_us=2500000", 2.5),
    ("out_time_ms=1000000", 1.0),
    ("out_time=00:00:01.000000", None),
    ("out_time_us=N/A", None),
    ("progress=continue", None),
])
def test_parse_progress_line(line, seconds):
    assert parse_progress_line(line) == seconds


def _has_ffmpeg_filter(name: str) -> bool:
    if shutil.which("ffmpeg") is None:
        return False
    listing = subprocess.run(["ffmpeg", "-hide_banner", "-filters"], capture_output=True, text=True).stdout
    return any(line.split()[1:2] == [name] for line in listing.splitlines())


def _lavfi(source: str, output: Path, *codec: str):
    subprocess.run(
        ["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", "-f", "lavfi", "-i", source, *codec, str(output)],
        check=True,
    )


def _stream_durations(path: str) -> dict:
    report = subprocess.run(
        ["ffprobe", "-v", "error", "-show_entries", "stream=codec_type,duration", "-of", "json", path],
        capture_output=True, text=True, check=True,
    ).stdout
    return {s["codec_type"]: float(s["duration"]) for s in json.loads(report)["streams"]}


@pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg and ffprobe are required",
)
class TestRealEncode:
    """
    Renders with the real ffmpeg binary.

    Scenes of 4s, 3s and 5s: the first has a short voice track, the middle
    one has no media at all, the last has a voice track longer than the
    scene. Both output streams must come out at 12s.
    """

    @pytest.fixture
    def scenes(self, config):
        media = Path(config.storage.uploads_dir) / "media"
        media.mkdir(parents=True)
        _lavfi("testsrc=size=320x240:rate=25:duration=4", media / "a.mp4", "-pix_fmt", "yuv420p")
        _lavfi("testsrc2=size=320x240:rate=30:duration=5", media / "b.mp4", "-pix_fmt", "yuv420p")
        _lavfi("sine=frequency=440:duration=3", media / "a.wav")
        _lavfi("sine=frequency=660:duration=6", media / "b.wav")
        return [
            RenderScene(id="s1", duration_seconds=4, video_url="/uploads/media/a.mp4",
                        audio_url="/uploads/media/a.wav", narration_text="Opening shot."),
            RenderScene(id="s2", duration_seconds=3, narration_text="Nothing generated here."),
            RenderScene(id="s3", duration_seconds=5, video_url="/uploads/media/b.mp4",
                        audio_url="/uploads/media/b.wav", narration_text="Closing shot."),
        ]

    @pytest.mark.asyncio
    async def test_streams_match_timeline(self, config, scenes):
        result = await RenderComposer(config).render(RenderRequest(scenes=scenes, width=320, height=240))

        assert result.duration_seconds == 12
        assert result.placeholder_scenes == [1]
        durations = _stream_durations(result.output_path)
        assert durations["video"] == pytest.approx(12, abs=0.15)
        assert durations["audio"] == pytest.approx(12, abs=0.15)

    @pytest.mark.asyncio
    @pytest.mark.skipif(not _has_ffmpeg_filter("subtitles"), reason="ffmpeg built without libass")
    async def test_burned_subtitles_keep_timeline(self, config, scenes):
        request = RenderRequest(scenes=scenes, auto_subtitles=True, width=320, height=240)

        result = await RenderComposer(config).render(request)

        durations = _stream_durations(result.output_path)
        assert durations["video"] == pytest.approx(12, abs=0.15)
        assert durations["audio"] == pytest.approx(12, abs=0.15)
