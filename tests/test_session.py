import numpy as np
import pytest

from mastering_engine import export
from mastering_engine.analyzer import AudioStats, TrackAnalysis
from mastering_engine.errors import AnalysisFailure, DecodeFailure, RenderFailure
from mastering_engine.session import MasteringSession
from mastering_engine.system_utils import StabilityChecks
from mastering_engine.track import Track

SR = 44100


class StubAnalyzer:
    """Fixed analysis so session tests do not depend on the estimators."""

    def __init__(self, stats=None, bpm=128, key="A"):
        self.stats = stats or AudioStats(rms=-18.0, peak=-3.0, crest_factor=15.0, stereo_correlation=0.8)
        self.bpm = bpm
        self.key = key
        self.calls = []

    def analyze(self, track):
        self.calls.append(track)
        return TrackAnalysis(stats=self.stats, score=100, bpm=self.bpm, key=self.key)


@pytest.fixture()
def track():
    return Track.from_array(StabilityChecks.generate_example(sr=SR, seconds=1.0), SR, name="example")


@pytest.fixture()
def session(track):
    s = MasteringSession(analyzer=StubAnalyzer())
    s.load_track(track)
    yield s
    s.close()


def _drain(session, block=1024, limit=1000):
    out = []
    for _ in range(limit):
        if not session.is_playing:
            break
        out.append(session.render_live_block(block))
    return np.concatenate(out)


def test_load_seeds_settings_from_stats(session):
    settings = session.settings
    assert settings.input_gain == 0.0
    assert (settings.mb_low_threshold, settings.mb_mid_threshold, settings.mb_high_threshold) == (-20.0, -18.0, -17.0)
    assert session.analysis.bpm == 128
    assert not session.is_playing


def test_play_requires_a_track():
    with pytest.raises(RuntimeError):
        MasteringSession(analyzer=StubAnalyzer()).play()


def test_live_playback_matches_export(session, track):
    session.play()
    live = _drain(session)[: track.frames]
    exported = session.export()
    np.testing.assert_array_equal(live.astype(np.float32), exported.samples)
    assert not session.is_playing
    assert session.position == pytest.approx(track.duration)


def test_stopped_session_outputs_silence_and_resets_meter(session):
    session.play()
    session.render_live_block(2048)
    assert session.poll_meter(now=0.0).rms_db > -100.0
    session.stop()
    assert not session.render_live_block(256).any()
    assert session.poll_meter().rms_db == -100.0
    assert session.position == pytest.approx(2048 / SR)


def test_play_resumes_from_stopped_position(session):
    session.play()
    session.render_live_block(4096)
    session.stop()
    session.play()
    assert session.live.position_frame == 4096


def test_seek_while_playing_replaces_the_handle(session):
    session.play()
    first = session.live
    assert session.seek(0.5) == 0.5
    assert first.closed
    assert session.live is not first
    assert session.live.position_frame == SR // 2
    assert not first.render(64).any()


def test_seek_is_clamped(session, track):
    assert session.seek(-3.0) == 0.0
    assert session.seek(99.0) == pytest.approx(track.duration)


def test_bypass_routes_raw_track(session, track):
    session.play()
    session.set_bypass(True)
    assert session.transport.bypass
    assert session.live.graph is None
    block = session.render_live_block(512)
    np.testing.assert_array_equal(block, track.samples[:512])

    session.set_bypass(False)
    assert session.live.graph is not None
    assert session.live.position_frame == 512


def test_setting_changes_reach_the_live_graph(session):
    session.play()
    session.set_setting("stereoWidth", 150)
    session.render_live_block(256)
    assert session.live.graph.settings.stereo_width == 150.0
    assert session.get_setting("stereo_width") == 150.0


def test_presets(session):
    settings = session.apply_preset("Mono Safe")
    assert settings.stereo_width == 60.0
    assert settings.limiter_ceiling == -1.0
    with pytest.raises(ValueError):
        session.apply_preset("Nope")


def test_jump_bars_uses_tempo(track):
    session = MasteringSession(analyzer=StubAnalyzer(bpm=240))
    session.load_track(track)
    # 8 bars at 240 BPM is 8 seconds; the track is one second long.
    assert session.jump_bars(1) == pytest.approx(track.duration)
    assert session.jump_bars(-1) == 0.0


def test_failed_decode_leaves_session_idle(session, tmp_path):
    with pytest.raises(DecodeFailure):
        session.load_file(tmp_path / "missing.wav")
    assert session.track is None
    assert session.analysis is None
    assert not session.is_playing


def test_failed_analysis_leaves_session_idle(track):
    class FailingAnalyzer:
        def analyze(self, track):
            raise AnalysisFailure("no stats")

    session = MasteringSession(analyzer=FailingAnalyzer())
    with pytest.raises(AnalysisFailure):
        session.load_track(track)
    assert session.track is None


def test_superseded_load_is_discarded(track):
    newer = Track.from_array(np.zeros((SR, 2)), SR, name="newer")

    class ReentrantAnalyzer(StubAnalyzer):
        def analyze(self, t):
            if t is track:
                session.load_track(newer)
            return super().analyze(t)

    session = MasteringSession(analyzer=ReentrantAnalyzer())
    assert session.load_track(track) is None
    assert session.track is newer


def test_failed_export_keeps_playing(session, monkeypatch):
    def broken(samples, sr):
        raise OSError("disk full")

    session.play()
    monkeypatch.setattr(export, "encode_wav", broken)
    with pytest.raises(RenderFailure):
        session.export()
    assert session.is_playing
    assert session.render_live_block(128).shape == (128, 2)


def test_export_async(session, tmp_path):
    session.play()
    future = session.export_async(tmp_path / "async.wav")
    result = future.result(timeout=60)
    assert result.path.exists()
    assert session.is_playing


def test_end_of_track_stops_and_resets_meter(session, track):
    session.play()
    while session.is_playing:
        session.render_live_block(1024)
        session.poll_meter(now=0.0)
    reading = session.poll_meter(now=10.0)
    assert (reading.rms_db, reading.peak_db) == (-100.0, -100.0)
    assert session.position == pytest.approx(track.duration)


def test_meter_poll_reaps_a_finished_handle(session, track):
    session.play()
    session.render_live_block(2048)
    assert session.poll_meter(now=0.0).peak_db > -100.0
    session.render_live_block(track.frames)
    reading = session.poll_meter(now=10.0)
    assert (reading.rms_db, reading.peak_db) == (-100.0, -100.0)
    assert not session.is_playing
    session.play()
    assert session.live.position_frame == 0


def test_play_while_playing_keeps_the_playhead(session):
    session.play(0.0)
    for _ in range(20):
        session.render_live_block(1024)
    session.play()
    assert session.live.position_frame == 20 * 1024
    assert session.position == pytest.approx(20 * 1024 / SR)


def test_audio_side_never_drops_a_newer_handle(session, track):
    session.play()
    old = session.live
    session.render_live_block(track.frames - 512)
    session.seek(0.2)
    # A block already in flight on the old handle runs it off the end.
    old.render(1024)
    session.render_live_block(1024)
    assert session.is_playing
    assert session.live is not old
    assert session.live.position_frame == int(round(0.2 * SR)) + 1024


def test_finished_handle_is_not_revived_by_seek(session, track):
    session.play()
    session.render_live_block(track.frames)
    assert session.seek(0.25) == 0.25
    assert not session.is_playing
    assert session.position == 0.25
