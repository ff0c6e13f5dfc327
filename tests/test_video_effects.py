import pytest

from reelsmith.video_assembly.video_effects import (
    EFFECT_CYCLE, EffectCursor, transition_for_style, xfade_name, zoompan_params
)
from reelsmith.video_assembly.video_models import Effect, EffectType, TransitionStyle, TransitionType


@pytest.mark.parametrize("style,kind,duration", [
    (TransitionStyle.SMOOTH, TransitionType.DISSOLVE, 0.5),
    (TransitionStyle.DYNAMIC, TransitionType.SWIPE, 0.3),
    (TransitionStyle.MINIMAL, TransitionType.FADE, 0.2),
    (TransitionStyle.CUT, TransitionType.CUT, 0.0),
])
def test_transition_presets(style, kind, duration):
    transition = transition_for_style(style)
    assert transition.type == kind
    assert transition.duration == pytest.approx(duration)


def test_xfade_names():
    assert xfade_name(TransitionType.DISSOLVE) == "dissolve"
    assert xfade_name(TransitionType.SWIPE) == "wipeleft"
    with pytest.raises(ValueError):
        xfade_name(TransitionType.CUT)


def test_cursor_cycles_and_resets():
    cursor = EffectCursor(intensity=0.2)
    effects = [cursor.next() for _ in range(5)]
    assert [e.type for e in effects] == list(EFFECT_CYCLE) + [EffectType.ZOOM_IN]
    assert all(e.intensity == pytest.approx(0.2) for e in effects)
    assert cursor.position == 5

    cursor.reset()
    assert cursor.next().type == EffectType.ZOOM_IN


def test_disabled_cursor_yields_no_effect():
    cursor = EffectCursor(enabled=False)
    assert cursor.next().type == EffectType.NONE
    assert cursor.position == 0


def test_cursor_rejects_bad_intensity():
    with pytest.raises(ValueError):
        EffectCursor(intensity=1.5)


def test_zoompan_params():
    params = zoompan_params(Effect(type=EffectType.ZOOM_IN, intensity=0.1), 90, 1080, 1920, 30)
    assert params["z"] == "'1+0.1*min(on/90,1)'"
    assert params["d"] == 1
    assert params["s"] == "1080x1920"
    assert params["fps"] == 30

    pan = zoompan_params(Effect(type=EffectType.PAN_RIGHT, intensity=0.1), 0, 1080, 1920, 30)
    assert pan["x"] == "'(iw-iw/zoom)*min(on/1,1)'"

    with pytest.raises(ValueError):
        zoompan_params(Effect(), 90, 1080, 1920, 30)
