"""
Video Effects Catalog

Static lookup tables for the visual treatment of image clips:
- Ken Burns effects (slow zoom/pan), cycled round-robin across a timeline
- Transition presets per global transition style
- FFmpeg zoompan parameters for each effect

Pure data plus a small job-scoped cursor; nothing here is shared between jobs.
"""

from typing import Dict, Any, Tuple

from .video_models import Effect, EffectType, Transition, TransitionStyle, TransitionType

# Order matters: clips cycle through these across the whole timeline
EFFECT_CYCLE: Tuple[EffectType, ...] = (
    EffectType.ZOOM_IN,
    EffectType.ZOOM_OUT,
    EffectType.PAN_LEFT,
    EffectType.PAN_RIGHT,
)

DEFAULT_KEN_BURNS_INTENSITY = 0.1  # 10% zoom/pan

NO_EFFECT = Effect(type=EffectType.NONE, intensity=0.0)
NO_TRANSITION = Transition(type=TransitionType.NONE, duration=0.0)

TRANSITION_PRESETS: Dict[TransitionStyle, Transition] = {
    TransitionStyle.SMOOTH: Transition(type=TransitionType.DISSOLVE, duration=0.5),
    TransitionStyle.DYNAMIC: Transition(type=TransitionType.SWIPE, duration=0.3),
    TransitionStyle.MINIMAL: Transition(type=TransitionType.FADE, duration=0.2),
    TransitionStyle.CUT: Transition(type=TransitionType.CUT, duration=0.0),
}

# FFmpeg xfade transition names for blending transitions
XFADE_NAMES: Dict[TransitionType, str] = {
    TransitionType.FADE: "fade",
    TransitionType.DISSOLVE: "dissolve",
    TransitionType.SWIPE: "wipeleft",
}


def transition_for_style(style: TransitionStyle) -> Transition:
    """Transition applied at every clip boundary for a global style"""
    return TRANSITION_PRESETS[TransitionStyle(style)]


def xfade_name(transition_type: TransitionType) -> str:
    try:
        return XFADE_NAMES[transition_type]
    except KeyError:
        raise ValueError(f"Transition '{transition_type.value}' is not a blend transition")


class EffectCursor:
    """
    Round-robin effect assignment.

    One cursor is shared by every clip of a timeline so the cycle continues
    across sections instead of restarting; reset() re-seeds it for a new job.
    """

    def __init__(self, intensity: float = DEFAULT_KEN_BURNS_INTENSITY, enabled: bool = True):
        if not 0.0 <= intensity <= 1.0:
            raise ValueError(f"Effect intensity must be within [0, 1], got {intensity}")
        self.intensity = intensity
        self.enabled = enabled
        self._index = 0

    @property
    def position(self) -> int:
        return self._index

    def reset(self) -> None:
        self._index = 0

    def next(self) -> Effect:
        if not self.enabled:
            return NO_EFFECT
        effect_type = EFFECT_CYCLE[self._index % len(EFFECT_CYCLE)]
        self._index += 1
        return Effect(type=effect_type, intensity=self.intensity)


def zoompan_params(effect: Effect, frame_count: int, width: int, height: int, fps: int) -> Dict[str, Any]:
    """
    Build zoompan arguments for a Ken Burns effect.

    The still is fed as a looped input, so zoompan emits one frame per input
    frame (d=1) and the motion is driven by the output frame number `on`.

    Args:
        effect: Effect to apply (must not be NONE)
        frame_count: Frames over which the motion completes
        width: Output width
        height: Output height
        fps: Output frame rate

    Returns:
        Ordered zoompan parameters
    """
    if effect.type == EffectType.NONE:
        raise ValueError("zoompan is not used for clips without an effect")

    frames = max(1, frame_count)
    intensity = effect.intensity
    max_zoom = 1.0 + intensity
    progress = f"min(on/{frames},1)"
    center_x = "iw/2-(iw/zoom/2)"
    center_y = "ih/2-(ih/zoom/2)"

    if effect.type == EffectType.ZOOM_IN:
        zoom, x, y = f"1+{intensity}*{progress}", center_x, center_y
    elif effect.type == EffectType.ZOOM_OUT:
        zoom, x, y = f"{max_zoom}-{intensity}*{progress}", center_x, center_y
    elif effect.type == EffectType.PAN_LEFT:
        zoom, x, y = f"{max_zoom}", f"(iw-iw/zoom)*(1-{progress})", center_y
    elif effect.type == EffectType.PAN_RIGHT:
        zoom, x, y = f"{max_zoom}", f"(iw-iw/zoom)*{progress}", center_y
    else:
        raise ValueError(f"Unsupported effect: {effect.type}")

    return {
        "z": f"'{zoom}'",
        "x": f"'{x}'",
        "y": f"'{y}'",
        "d": 1,
        "s": f"{width}x{height}",
        "fps": fps,
    }
