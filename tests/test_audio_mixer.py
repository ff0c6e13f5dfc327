import pytest

from reelsmith.video_assembly.audio_mixer import AudioMixer, fade_filter, normalization_params
from reelsmith.video_assembly.composition_planner import validate_label_graph
from reelsmith.video_assembly.errors import MissingAudioAsset
from reelsmith.video_assembly.video_models import AudioMixOptions


@pytest.fixture
def mixer():
    return AudioMixer(asset_retry_wait=0)


def test_voiceover_only_is_single_normalize_stage(mixer, voiceover):
    plan = mixer.plan(voiceover)

    assert len(plan.stages) == 1
    stage = plan.stages[0]
    assert stage.name == "loudnorm"
    assert stage.inputs == ["1:a"]
    assert stage.outputs == ["audio_out"]
    assert stage.params == {"I": -16.0, "TP": -1.5, "LRA": 11.0}
    assert plan.output_label == "audio_out"
    assert plan.background_music_path is None
    assert plan.ducking_enabled is False


def test_voiceover_only_without_normalization(mixer, voiceover):
    plan = mixer.plan(voiceover, options=AudioMixOptions(normalize=False))
    assert plan.stages == []
    assert plan.output_label == "1:a"


def test_background_without_ducking(mixer, voiceover, music):
    options = AudioMixOptions(enable_ducking=False)
    plan = mixer.plan(voiceover, music, options=options, total_duration=30.0)

    assert [s.name for s in plan.stages] == ["loudnorm", "afade", "afade", "volume", "amix"]
    mix = plan.stages[-1]
    assert mix.inputs == ["voice_norm", "bg_vol"]
    assert mix.params["duration"] == "first"
    assert mix.params["dropout_transition"] == 2
    assert plan.stages[1].inputs == ["2:a"]
    assert plan.stages[2].params["st"] == pytest.approx(29.5)
    assert plan.stages[3].params["volume"] == pytest.approx(0.15)
    assert plan.output_label == "audio_mixed"
    assert plan.ducking_enabled is False


def test_background_with_ducking_keeps_stage_order(mixer, voiceover, music):
    plan = mixer.plan(voiceover, music, total_duration=30.0)

    assert [s.name for s in plan.stages] == [
        "loudnorm", "asplit", "afade", "afade", "volume", "sidechaincompress", "amix"
    ]
    split = plan.stages[1]
    assert split.inputs == ["voice_loud"]
    assert split.outputs == ["voice_norm", "voice_key"]

    duck = next(s for s in plan.stages if s.name == "sidechaincompress")
    assert duck.inputs == ["bg_vol", "voice_key"]
    assert duck.params["mix"] == pytest.approx(0.7)
    assert duck.params["attack"] == pytest.approx(50.0)
    assert duck.params["release"] == pytest.approx(500.0)

    assert plan.stages[-1].inputs == ["voice_norm", "bg_ducked"]
    assert plan.ducking_enabled is True
    assert plan.background_input_index == 2


def test_fade_out_skipped_without_known_duration(mixer, voiceover, music):
    plan = mixer.plan(voiceover, music)
    assert [s.name for s in plan.stages].count("afade") == 1


@pytest.mark.parametrize("with_background", [False, True])
def test_every_stage_input_is_defined_earlier(mixer, voiceover, music, with_background):
    plan = mixer.plan(voiceover, music if with_background else None, total_duration=12.0)
    validate_label_graph(plan.stages, 3, [plan.output_label])


def test_missing_background_fails_naming_path(mixer, voiceover, tmp_path):
    missing = tmp_path / "audio" / "missing_music.mp3"
    with pytest.raises(MissingAudioAsset) as excinfo:
        mixer.plan(voiceover, missing)
    assert excinfo.value.path == missing
    assert str(missing) in str(excinfo.value)
    assert isinstance(excinfo.value, FileNotFoundError)


def test_missing_voiceover_fails(mixer, tmp_path):
    missing = tmp_path / "nope.wav"
    with pytest.raises(MissingAudioAsset) as excinfo:
        mixer.plan(missing)
    assert excinfo.value.role == "voiceover"


def test_asset_check_retries_once(voiceover, tmp_path, monkeypatch):
    mixer = AudioMixer(asset_check_attempts=2, asset_retry_wait=0)
    calls = []
    original = AudioMixer._check_exists

    def flaky(path, role):
        calls.append(role)
        if len(calls) == 1:
            raise MissingAudioAsset(path, role)
        original(path, role)

    monkeypatch.setattr(AudioMixer, "_check_exists", staticmethod(flaky))
    plan = mixer.plan(voiceover)
    assert len(plan.stages) == 1
    assert calls == ["voiceover", "voiceover"]


def test_remap_inputs_rewrites_raw_references_only(mixer, voiceover, music):
    plan = mixer.plan(voiceover, music, total_duration=20.0)
    remapped = plan.remap_inputs({1: 5, 2: 6})

    assert remapped.stages[0].inputs == ["5:a"]
    assert next(s for s in remapped.stages if s.name == "afade").inputs == ["6:a"]
    assert [s.outputs for s in remapped.stages] == [s.outputs for s in plan.stages]
    assert remapped.voice_input_index == 5
    assert remapped.background_input_index == 6
    # original unchanged
    assert plan.stages[0].inputs == ["1:a"]


def test_helpers():
    assert normalization_params(-14) == {"I": -14.0, "TP": -1.5, "LRA": 11.0}
    assert fade_filter(True, True, 0.5, 10.0) == "afade=t=in:d=0.5,afade=t=out:st=9.5:d=0.5"
    assert fade_filter(True, True, 0.5) == "afade=t=in:d=0.5"
