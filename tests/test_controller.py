import logging

import numpy as np
import pytest
from PIL import Image

from fringe_capture.camera.mock import ENUMS
from fringe_capture.core.controller import (
    AcquisitionCoordinator,
    build_pattern_sets,
    exposure_wait_ms,
    stabilization_wait_ms,
)
from fringe_capture.core.errors import ValidationError
from fringe_capture.core.models import CameraSettings, FringeParams, PatternTiming, TimingConfig
from fringe_capture.io.run_store import RunStore
from fringe_capture.patterns.generator import FringePatternGenerator
from fringe_capture.projector.mock import SimulatedProjector


ALL_FILES = [f"I{i:03d}_V.png" for i in range(1, 5)] + [f"I{i:03d}_H.png" for i in range(5, 9)]


def _saved(request):
    return sorted(p.name for p in RunStore(request.output_dir).capture_paths())


class TestTimingEstimates:

    def test_stabilization_wait_from_pattern_timing(self):
        patterns = FringePatternGenerator().generate_sequence(
            FringeParams(width=8, height=4, frequency=1, steps=2)
        )
        sets = build_pattern_sets(patterns, PatternTiming(4000, 3000, 3000), 8, 4)

        assert stabilization_wait_ms(sets[0]) == 20
        assert stabilization_wait_ms(sets[0], margin_ms=25) == 35
        # Margin is never below 10 ms.
        assert stabilization_wait_ms(sets[0], margin_ms=0) == 20

    def test_stabilization_wait_has_one_ms_floor(self):
        patterns = FringePatternGenerator().generate_sequence(
            FringeParams(width=8, height=4, frequency=1, steps=1)
        )
        sets = build_pattern_sets(patterns, PatternTiming(100, 100, 100), 8, 4)

        assert stabilization_wait_ms(sets[1]) == 11

    @pytest.mark.parametrize(
        "exposure_us,expected",
        [(10000.0, 510), (4000.0, 504), (9_000_000.0, 5000), (None, 1000)],
    )
    def test_exposure_wait(self, exposure_us, expected):
        assert exposure_wait_ms(exposure_us, TimingConfig()) == expected

    def test_exposure_wait_cap_never_exceeds_five_seconds(self):
        assert exposure_wait_ms(20_000_000.0, TimingConfig(max_exposure_wait_ms=9000)) == 5000

    def test_pattern_sets_split_by_orientation(self):
        patterns = FringePatternGenerator().generate_sequence(
            FringeParams(width=32, height=16, frequency=2, steps=3)
        )
        vertical, horizontal = build_pattern_sets(patterns, PatternTiming(), 32, 16)

        assert vertical.vertical and not horizontal.vertical
        assert (vertical.array_count, horizontal.array_count) == (32, 16)
        assert [p.orientation for p in vertical.patterns] == ["vertical"] * 3
        assert [p.orientation for p in horizontal.patterns] == ["horizontal"] * 3

    def test_odd_pattern_count_is_rejected(self):
        patterns = FringePatternGenerator().generate_sequence(
            FringeParams(width=8, height=4, frequency=1, steps=2)
        )
        with pytest.raises(ValidationError):
            build_pattern_sets(patterns[:3], PatternTiming(), 8, 4)


class TestAcquisitionRun:

    def test_full_run_saves_every_frame(self, projector, make_camera, make_request, sleeper):
        camera = make_camera()
        request = make_request()
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(request) is True

        report = coordinator.report
        assert report.status == "completed"
        assert report.frames_found == 8
        assert report.missing_files == []
        assert report.trigger_failures == 0
        assert report.missed_frames == 0
        assert report.steps_completed == 8
        assert _saved(request) == sorted(ALL_FILES)
        assert camera.commands == ["FrameTriggerSoftware"] * 8
        assert projector.steps == 8

    def test_saved_frames_match_projected_patterns(self, projector, make_camera, make_request, sleeper):
        request = make_request()
        coordinator = AcquisitionCoordinator(projector, make_camera(), sleep=sleeper)
        coordinator.run(request)

        expected = FringePatternGenerator().generate_images(request.fringe)
        captured = RunStore(request.output_dir).load_captures()
        assert len(captured) == 8
        for got, want in zip(captured, expected):
            assert np.array_equal(got, want)

    def test_waits_follow_timing_config(self, projector, make_camera, make_request, sleeper):
        coordinator = AcquisitionCoordinator(projector, make_camera(), sleep=sleeper)
        coordinator.run(make_request())

        assert sleeper.calls == [pytest.approx(0.2)] + [pytest.approx(0.02)] * 8

    def test_state_transitions(self, projector, make_camera, make_request, sleeper):
        coordinator = AcquisitionCoordinator(projector, make_camera(), sleep=sleeper)
        coordinator.run(make_request(steps=1))

        step = ["STEPPING", "STABILIZING", "TRIGGERING", "AWAITING_EXPOSURE"]
        assert coordinator.transitions == (
            ["IDLE", "DEVICE_READY", "PATTERNS_LOADED", "PROJECTING"] + step * 2 + ["COMPLETED", "TEARDOWN"]
        )

    def test_camera_is_configured_before_grabbing(self, projector, make_camera, make_request, sleeper):
        camera = make_camera()
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)
        coordinator.run(make_request())

        assert camera.enums["PixelFormat"] == ENUMS["PixelFormat"]["Mono8"]
        assert camera.enums["ExposureAuto"] == ENUMS["ExposureAuto"]["Off"]
        assert camera.floats["ExposureTime"][0] == 10000.0
        assert camera.floats["Gain"][0] == 5.0
        assert camera.bools["AcquisitionFrameRateEnable"] is True
        assert {p["name"]: p["outcome"] for p in coordinator.report.parameters} == {
            "ExposureTime": "applied",
            "Gain": "applied",
            "AcquisitionFrameRate": "applied",
            "TriggerDelay": "applied",
        }

    def test_keep_current_settings_leave_camera_untouched(self, projector, make_camera, make_request, sleeper):
        camera = make_camera()
        settings = CameraSettings(exposure_us=None, gain=-1.0, frame_rate=None, trigger_delay_us=-1.0)
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request(camera=settings))
        assert camera.enums["ExposureAuto"] == ENUMS["ExposureAuto"]["Continuous"]
        assert camera.enums["GainAuto"] == ENUMS["GainAuto"]["Continuous"]
        assert camera.floats["ExposureTime"][0] == 20000.0
        assert all(p["outcome"] == "kept" for p in coordinator.report.parameters)

    def test_trigger_failure_is_counted_and_loop_continues(self, projector, make_camera, make_request, sleeper):
        camera = make_camera(failing_triggers={2})
        request = make_request()
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(request) is True
        report = coordinator.report
        assert report.trigger_failures == 1
        assert report.steps_completed == 8
        assert projector.steps == 8
        assert report.frames_found == 7
        assert report.missing_files == ["I008_H.png"]

    def test_dropped_frame_is_reported_as_missed(self, projector, make_camera, make_request, sleeper):
        camera = make_camera(dropped_triggers={3})
        request = make_request()
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(request) is True
        assert coordinator.report.missed_frames == 1
        assert coordinator.report.frames_found == 7

    def test_duplicate_delivery_beyond_total_is_discarded(self, projector, make_camera, make_request, sleeper):
        camera = make_camera(duplicated_triggers={2})
        request = make_request()
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(request) is True
        camera.join_deliveries()

        # The extra arrival shifts later indices; the ninth one has no slot.
        assert coordinator.report.frames_found == 8
        assert coordinator.sink.stats() == {"received": 9, "saved": 8, "discarded": 1, "io_errors": 0}
        assert len(list(RunStore(request.output_dir).root.glob("*.png"))) == 8

    def test_horizontal_set_timing_governs_second_half(self, projector, make_camera, make_request, sleeper):
        request = make_request(
            pattern_timing=PatternTiming(exposure_us=4000, pre_exposure_us=3000, post_exposure_us=3000),
            pattern_timing_horizontal=PatternTiming(exposure_us=20000, pre_exposure_us=5000, post_exposure_us=5000),
        )
        coordinator = AcquisitionCoordinator(projector, make_camera(), sleep=sleeper)

        assert coordinator.run(request)
        # Startup delay, then 20 ms for steps 1..4 and 40 ms from step 5 on.
        assert sleeper.calls == [pytest.approx(0.2)] + [pytest.approx(0.02)] * 4 + [pytest.approx(0.04)] * 4
        vertical, horizontal = projector.pattern_sets
        assert (vertical.exposure_time_us, horizontal.exposure_time_us) == (4000, 20000)

    def test_missed_frame_log_names_latest_delivery(self, projector, make_camera, make_request, sleeper, caplog):
        caplog.set_level(logging.WARNING, logger="fringe_capture")
        camera = make_camera(dropped_triggers={3})
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        coordinator.run(make_request())

        assert "No frame delivered" in caplog.text
        assert "after step 3 (latest frame: 2)" in caplog.text

    def test_finished_delivery_threads_are_released(self, projector, make_camera, make_request, sleeper):
        camera = make_camera()
        AcquisitionCoordinator(projector, camera, sleep=sleeper).run(make_request())

        assert camera.triggers == 8
        camera.join_deliveries()
        assert camera.pending_deliveries == 0
        assert camera._threads == []

    @pytest.mark.parametrize("feature", ["ExposureAuto", "GainAuto", "AcquisitionFrameRateEnable"])
    def test_unwritable_auto_mode_does_not_block_setpoints(self, projector, make_camera, make_request, sleeper, feature):
        camera = make_camera(reject={feature})
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request()) is True
        assert camera.floats["ExposureTime"][0] == 10000.0
        assert camera.floats["Gain"][0] == 5.0
        assert camera.floats["AcquisitionFrameRate"][0] == 10.0
        assert all(p["outcome"] == "applied" for p in coordinator.report.parameters)

    def test_inverted_optional_range_does_not_abort(self, projector, make_camera, make_request, sleeper):
        camera = make_camera()
        camera.floats["TriggerDelay"] = [0.0, 10.0, 0.0]
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request()) is True
        assert coordinator.report.status == "completed"
        outcomes = {p["name"]: p["outcome"] for p in coordinator.report.parameters}
        assert outcomes["TriggerDelay"] == "rejected"
        assert coordinator.report.frames_found == 8

    def test_meta_json_records_run(self, projector, make_camera, make_request, sleeper):
        request = make_request()
        AcquisitionCoordinator(projector, make_camera(), sleep=sleeper).run(request)

        meta = RunStore(request.output_dir).load_meta()
        assert meta["status"] == "completed"
        assert meta["total_frames"] == 8
        assert meta["frames_found"] == 8
        assert meta["trigger_command"] == "FrameTriggerSoftware"
        assert meta["request"]["fringe"]["steps"] == 4
        assert meta["patterns"]["order"] == ["vertical"] * 4 + ["horizontal"] * 4
        assert [ps["array_count"] for ps in meta["pattern_sets"]] == [32, 16]

    def test_meta_json_can_be_disabled(self, projector, make_camera, make_request, sleeper):
        request = make_request(write_meta=False)
        AcquisitionCoordinator(projector, make_camera(), sleep=sleeper).run(request)

        assert not (RunStore(request.output_dir).root / "meta.json").exists()

    def test_patterns_saved_on_request(self, projector, make_camera, make_request, sleeper):
        request = make_request(save_patterns=True)
        AcquisitionCoordinator(projector, make_camera(), sleep=sleeper).run(request)

        pat_dir = RunStore(request.output_dir).root / "patterns"
        assert sorted(p.name for p in pat_dir.glob("*.png"))[:2] == ["P001_V.png", "P002_V.png"]
        assert len(list(pat_dir.glob("*.png"))) == 8
        # Pattern copies are not mistaken for captures.
        assert _saved(request) == sorted(ALL_FILES)

    def test_led_current_is_applied(self, projector, make_camera, make_request, sleeper):
        coordinator = AcquisitionCoordinator(projector, make_camera(), sleep=sleeper)

        assert coordinator.run(make_request(led_current=(0.5, 0.6, 0.7)))
        assert projector.led_current == (0.5, 0.6, 0.7)

    def test_led_current_failure_is_not_fatal(self, make_camera, make_request, sleeper):
        projector = SimulatedProjector(fail_on={"led"})
        camera = make_camera(scene=projector.current_image)
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request(led_current=(0.5, 0.5, 0.5))) is True
        assert projector.led_current is None

    def test_status_after_run(self, projector, make_camera, make_request, sleeper):
        coordinator = AcquisitionCoordinator(projector, make_camera(), sleep=sleeper)
        assert coordinator.get_status()["state"] == "IDLE"

        coordinator.run(make_request())

        status = coordinator.get_status()
        assert status["state"] == "TEARDOWN"
        assert status["running"] is False
        assert status["step_index"] == 8
        assert status["total_steps"] == 8
        assert status["last_error"] is None

    def test_coordinator_can_run_twice(self, projector, make_camera, make_request, sleeper, tmp_path):
        camera = make_camera()
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request())
        second = make_request(output_dir=str(tmp_path / "second"))
        assert coordinator.run(second)
        assert _saved(second) == sorted(ALL_FILES)
        assert camera.open_calls == 2
        assert camera.close_calls == 2


class TestFailureHandling:

    def test_invalid_parameters_touch_no_device(self, projector, make_camera, make_request, sleeper):
        camera = make_camera()
        request = make_request(steps=0)
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(request) is False
        assert coordinator.report.status == "aborted"
        assert projector.connect_calls == 0
        assert camera.open_calls == 0
        assert sleeper.calls == []

    def test_negative_timing_is_rejected(self, projector, make_camera, make_request, sleeper):
        camera = make_camera()
        request = make_request(timing=TimingConfig(startup_delay_ms=-5))
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(request) is False
        assert projector.connect_calls == 0

    def test_camera_open_failure_disconnects_projector(self, projector, make_camera, make_request, sleeper):
        camera = make_camera(fail_open=True)
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request()) is False
        assert coordinator.report.status == "aborted"
        assert "Camera open failed" in coordinator.report.error
        assert projector.disconnect_calls == 1
        assert camera.close_calls == 0
        assert camera.stop_grabbing_calls == 0

    def test_projector_connect_failure(self, make_camera, make_request, sleeper):
        projector = SimulatedProjector(fail_on={"connect"})
        camera = make_camera(scene=projector.current_image)
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request()) is False
        assert camera.open_calls == 0
        assert projector.disconnect_calls == 0

    def test_base_setting_rejection_aborts(self, projector, make_camera, make_request, sleeper):
        camera = make_camera(reject={"TriggerSource"})
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request()) is False
        assert coordinator.report.status == "aborted"
        assert camera.close_calls == 1
        assert projector.disconnect_calls == 1
        assert camera.triggers == 0

    def test_upload_failure_releases_everything_acquired(self, make_camera, make_request, sleeper):
        projector = SimulatedProjector(fail_on={"upload"})
        camera = make_camera(scene=projector.current_image)
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request()) is False
        assert projector.stop_calls == 0
        assert camera.stop_grabbing_calls == 1
        assert camera.close_calls == 1
        assert projector.disconnect_calls == 1

    def test_step_failure_aborts_and_teardown_is_idempotent(self, make_camera, make_request, sleeper):
        projector = SimulatedProjector(fail_on={"step:3"})
        camera = make_camera(scene=projector.current_image)
        request = make_request()
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(request) is False
        assert coordinator.report.status == "aborted"
        assert coordinator.report.steps_completed == 2
        assert _saved(request) == ["I001_V.png", "I002_V.png"]
        counts = (projector.stop_calls, camera.stop_grabbing_calls, camera.close_calls, projector.disconnect_calls)
        assert counts == (1, 1, 1, 1)

        coordinator.teardown()
        coordinator.teardown()
        assert (projector.stop_calls, camera.stop_grabbing_calls, camera.close_calls, projector.disconnect_calls) == counts
        assert coordinator.get_status()["last_error"] == coordinator.report.error

    def test_teardown_continues_past_release_failures(self, make_camera, make_request, sleeper):
        projector = SimulatedProjector(fail_on={"stop"})
        camera = make_camera(scene=projector.current_image)
        coordinator = AcquisitionCoordinator(projector, camera, sleep=sleeper)

        assert coordinator.run(make_request()) is True
        assert projector.stop_calls == 1
        assert camera.close_calls == 1
        assert projector.disconnect_calls == 1

    def test_teardown_before_run_is_a_no_op(self, projector, make_camera):
        camera = make_camera()
        AcquisitionCoordinator(projector, camera).teardown()

        assert (projector.disconnect_calls, camera.close_calls, camera.stop_grabbing_calls) == (0, 0, 0)


def test_saved_png_is_single_channel(projector, make_camera, make_request, sleeper):
    request = make_request(steps=1)
    AcquisitionCoordinator(projector, make_camera(), sleep=sleeper).run(request)

    img = Image.open(RunStore(request.output_dir).root / "I001_V.png")
    assert img.mode == "L"
    assert img.size == (32, 16)
