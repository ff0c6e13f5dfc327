import math

import pytest

from reelsmith.video_assembly.errors import InvalidTimelineAllocation
from reelsmith.video_assembly.timeline_builder import TimelineBuilder
from reelsmith.video_assembly.video_models import (
    EffectType, ScriptSections, SectionImages, SectionType, TransitionStyle, TransitionType
)
from reelsmith.utils.config import TimelineConfig


def test_scenario_proportional_sections_with_two_images_each(script, make_images):
    timeline = TimelineBuilder().build_timeline(script, make_images(2, 2, 2), 30.0)

    assert [s.type for s in timeline] == [SectionType.HOOK, SectionType.BODY, SectionType.CTA]
    assert [s.duration for s in timeline] == pytest.approx([6.0, 18.0, 6.0])

    clips = [clip for section in timeline for clip in section.images]
    assert len(clips) == 6
    assert {clip.effect.type for clip in clips} == {
        EffectType.ZOOM_IN, EffectType.ZOOM_OUT, EffectType.PAN_LEFT, EffectType.PAN_RIGHT
    }


def test_effects_cycle_across_sections(script, make_images):
    timeline = TimelineBuilder().build_timeline(script, make_images(2, 2, 2), 30.0)
    effects = [clip.effect.type for section in timeline for clip in section.images]
    assert effects == [
        EffectType.ZOOM_IN, EffectType.ZOOM_OUT, EffectType.PAN_LEFT,
        EffectType.PAN_RIGHT, EffectType.ZOOM_IN, EffectType.ZOOM_OUT,
    ]


def test_cursor_reset_between_builds(script, make_images):
    builder = TimelineBuilder()
    images = make_images(1, 1, 1)
    first = builder.build_timeline(script, images, 30.0)
    second = builder.build_timeline(script, images, 30.0)
    assert first[0].images[0].effect.type == EffectType.ZOOM_IN
    assert second[0].images[0].effect.type == EffectType.ZOOM_IN


@pytest.mark.parametrize("duration", [0.5, 1.0, 5.9, 7.3, 30.0, 61.3, 599.99])
@pytest.mark.parametrize("texts", [("a", "b", "c"), ("short", "x" * 400, "end"), ("", "", ""), ("x" * 50, "", "")])
def test_sections_sum_to_audio_duration(duration, texts):
    script = ScriptSections(hook=texts[0], body=texts[1], cta=texts[2])
    timeline = TimelineBuilder().build_timeline(script, SectionImages(), duration)

    assert abs(sum(s.duration for s in timeline) - duration) < 1e-3
    assert timeline[0].start_time == 0.0
    for previous, current in zip(timeline, timeline[1:]):
        assert current.start_time == pytest.approx(previous.end_time)
    assert all(s.duration > 0 for s in timeline)


def test_empty_text_gives_equal_thirds():
    timeline = TimelineBuilder().build_timeline(ScriptSections(), SectionImages(), 30.0)
    assert [s.duration for s in timeline] == pytest.approx([10.0, 10.0, 10.0])


def test_section_floor_applies_before_scaling():
    script = ScriptSections(hook="x", body="x" * 98, cta="x")
    timeline = TimelineBuilder().build_timeline(script, SectionImages(), 20.0)
    hook, body, cta = (s.duration for s in timeline)
    assert hook == pytest.approx(cta)
    assert hook > 20.0 * 1 / 100
    assert hook + body + cta == pytest.approx(20.0)


def test_short_audio_scales_every_section(script, caplog):
    timeline = TimelineBuilder().build_timeline(script, SectionImages(), 3.0)
    assert [s.duration for s in timeline] == pytest.approx([1.0, 1.0, 1.0])
    assert "shorter than the section floors" in caplog.text


@pytest.mark.parametrize("duration", [0.0, -1.0, math.nan, math.inf])
def test_invalid_audio_duration_rejected(script, duration):
    with pytest.raises(InvalidTimelineAllocation):
        TimelineBuilder().build_timeline(script, SectionImages(), duration)


def test_section_without_images_keeps_time_span(script, make_images):
    timeline = TimelineBuilder().build_timeline(script, make_images(2, 0, 2), 30.0)
    body = timeline[1]
    assert body.images == []
    assert body.duration == pytest.approx(18.0)


def test_clip_durations_fill_section(script, make_images):
    timeline = TimelineBuilder().build_timeline(script, make_images(3, 4, 1), 30.0)
    for section in timeline:
        assert sum(clip.duration for clip in section.images) == pytest.approx(section.duration)
        for previous, current in zip(section.images, section.images[1:]):
            assert current.start_time == pytest.approx(previous.end_time)
        assert all(clip.duration > 0 for clip in section.images)


def test_clip_duration_clamped_to_maximum(script, make_images):
    # body is 18s with 2 images: first clip capped at 5s, last takes the rest
    timeline = TimelineBuilder().build_timeline(script, make_images(1, 2, 1), 30.0)
    body = timeline[1].images
    assert body[0].duration == pytest.approx(5.0)
    assert body[1].duration == pytest.approx(13.0)


def test_extra_images_are_dropped_when_section_too_short(script, make_images, caplog):
    timeline = TimelineBuilder().build_timeline(script, make_images(10, 1, 1), 30.0)
    hook = timeline[0]
    assert len(hook.images) == 3
    assert [clip.duration for clip in hook.images] == pytest.approx([2.0, 2.0, 2.0])
    assert "keeping the first 3" in caplog.text


def test_single_image_in_tiny_section_gets_whole_section(script, make_images):
    timeline = TimelineBuilder().build_timeline(script, make_images(3, 3, 3), 3.0)
    for section in timeline:
        assert len(section.images) == 1
        assert section.images[0].duration == pytest.approx(section.duration)


def test_only_first_clip_of_timeline_has_no_transition(script, make_images):
    timeline = TimelineBuilder().build_timeline(script, make_images(0, 2, 2), 30.0)
    clips = [clip for section in timeline for clip in section.images]
    assert clips[0].transition.type == TransitionType.NONE
    assert all(clip.transition.type == TransitionType.DISSOLVE for clip in clips[1:])
    assert all(clip.transition.duration == pytest.approx(0.5) for clip in clips[1:])


def test_transition_style_presets(script, make_images):
    builder = TimelineBuilder(transition_style=TransitionStyle.DYNAMIC)
    clips = [c for s in builder.build_timeline(script, make_images(), 30.0) for c in s.images]
    assert clips[1].transition.type == TransitionType.SWIPE
    assert clips[1].transition.duration == pytest.approx(0.3)

    builder = TimelineBuilder(transition_style=TransitionStyle.CUT)
    clips = [c for s in builder.build_timeline(script, make_images(), 30.0) for c in s.images]
    assert clips[1].transition.type == TransitionType.CUT


def test_ken_burns_disabled(script, make_images):
    builder = TimelineBuilder(ken_burns_enabled=False)
    clips = [c for s in builder.build_timeline(script, make_images(), 30.0) for c in s.images]
    assert all(clip.effect.type == EffectType.NONE for clip in clips)


def test_from_config_applies_overrides():
    timeline_config = TimelineConfig(transition_style=TransitionStyle.MINIMAL, ken_burns_enabled=True)
    builder = TimelineBuilder.from_config(timeline_config, ken_burns_enabled=False)
    assert builder.transition.type == TransitionType.FADE
    assert builder.cursor.enabled is False

    builder = TimelineBuilder.from_config(timeline_config, transition_style=TransitionStyle.CUT)
    assert builder.transition.type == TransitionType.CUT


def test_min_image_duration_must_not_exceed_max():
    with pytest.raises(ValueError):
        TimelineBuilder(min_image_duration=6.0, max_image_duration=5.0)
