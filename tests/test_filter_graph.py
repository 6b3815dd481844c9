"""
Filter graph and ffmpeg command construction (pure functions, no ffmpeg).
"""

from pathlib import Path

import pytest

from services.rendering.assets import SceneAssets
from services.rendering.filter_graph import OutputFormat, build_ffmpeg_command, build_filter_graph, format_seconds

FMT = OutputFormat(width=1080, height=1920, fps=30, sample_rate=44100, channel_layout="stereo", filler_color="black")


def scene(index, duration, video=None, audio=None, image=None):
    return SceneAssets(
        index=index,
        scene_id=f"s{index}",
        duration_seconds=duration,
        video_path=Path(video) if video else None,
        audio_path=Path(audio) if audio else None,
        image_path=Path(image) if image else None,
    )


class TestBuildFilterGraph:

    def test_full_scenes(self):
        graph = build_filter_graph([
            scene(0, 4, video="scene_0_video.mp4", audio="scene_0_audio.mp3"),
            scene(1, 2.5, video="scene_1_video.mp4", audio="scene_1_audio.mp3"),
        ], FMT)

        assert graph.input_args == [
            "-i", "scene_0_video.mp4", "-i", "scene_0_audio.mp3",
            "-i", "scene_1_video.mp4", "-i", "scene_1_audio.mp3",
        ]
        assert graph.segment_count == 2
        assert graph.total_duration == 6.5
        assert graph.placeholder_scenes == []
        assert graph.input_scenes == {0: 0, 1: 0, 2: 1, 3: 1}

        video0, audio0, video1, audio1, concat = graph.filters
        assert video0.startswith("[0:v]scale=1080:1920:force_original_aspect_ratio=decrease,pad=1080:1920")
        assert "tpad=stop_mode=clone:stop_duration=4,trim=duration=4" in video0
        assert video0.endswith("[v0]")
        assert audio0.startswith("[1:a]aformat=sample_rates=44100:channel_layouts=stereo")
        assert "apad=whole_dur=4,atrim=duration=4" in audio0
        assert "trim=duration=2.5" in video1
        assert audio1.startswith("[3:a]")
        assert concat == "[v0][a0][v1][a1]concat=n=2:v=1:a=1[outv][outa]"
        assert graph.video_label == "outv"

    def test_missing_tracks_become_placeholders(self):
        graph = build_filter_graph([
            scene(0, 3, video="v.mp4"),
            scene(1, 2, audio="a.mp3"),
        ], FMT)

        assert graph.input_args == ["-i", "v.mp4", "-i", "a.mp3"]
        assert graph.placeholder_scenes == [0, 1]
        assert "anullsrc=r=44100:cl=stereo,atrim=duration=3" in graph.filters[1]
        assert graph.filters[2] == "color=c=black:s=1080x1920:r=30:d=2,format=yuv420p,setsar=1[v1]"
        assert graph.filters[3].startswith("[1:a]")

    def test_still_image_scene(self):
        graph = build_filter_graph([scene(0, 5, image="still.png", audio="a.mp3")], FMT)

        assert graph.input_args[:6] == ["-loop", "1", "-t", "5", "-i", "still.png"]
        assert "trim=duration=5" in graph.filters[0]
        assert graph.placeholder_scenes == []

    def test_subtitles_burn_onto_concatenated_stream(self):
        graph = build_filter_graph(
            [scene(0, 2, video="v.mp4", audio="a.mp3")],
            FMT,
            subtitle_file="subtitles.srt",
            subtitle_style="FontSize=24",
        )

        assert graph.filters[-1] == "[outv]subtitles='subtitles.srt':force_style='FontSize=24'[burnedv]"
        assert graph.video_label == "burnedv"

    def test_empty_scene_list(self):
        with pytest.raises(ValueError):
            build_filter_graph([], FMT)

    def test_non_positive_duration(self):
        with pytest.raises(ValueError):
            build_filter_graph([scene(0, 0, video="v.mp4")], FMT)


class TestBuildCommand:

    def test_command_shape(self):
        graph = build_filter_graph([scene(0, 2, video="v.mp4", audio="a.mp3")], FMT, subtitle_file="subtitles.srt")

        cmd = build_ffmpeg_command(graph, Path("/jobs/j1/final_j1.mp4"), FMT, binary="/usr/bin/ffmpeg")

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[-1] == "/jobs/j1/final_j1.mp4"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[cmd.index("-filter_complex") + 1] == graph.filter_complex
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[burnedv]", "[outa]"]
        assert cmd[cmd.index("-r") + 1] == "30"
        assert cmd[cmd.index("-ar") + 1] == "44100"

    def test_without_progress(self):
        graph = build_filter_graph([scene(0, 2)], FMT)

        cmd = build_ffmpeg_command(graph, Path("out.mp4"), FMT, report_progress=False)

        assert "-progress" not in cmd
        assert graph.input_args == []


@pytest.mark.parametrize("value, text", [(4, "4"), (4.0, "4"), (2.5, "2.5"), (1 / 3, "0.333"), (0, "0")])
def test_format_seconds(value, text):
    assert format_seconds(value) == text
