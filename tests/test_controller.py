"""Tests for the motion controller, driven by a fake arm and clock."""

import threading

import pytest
from arm_controller.actuator import STOP, ActuatorError, MoveCommand
from arm_controller.controller import HOMING_DONE, HOMING_NOTICE, MotionController, Phase
from arm_controller.position import Axis
from common.telemetry import Channel, TelemetryBus
from common.vision import NO_TARGET, Detection


class FakeArm:
    """Records commands and advances a fake clock on every send and sleep."""

    def __init__(self, bus, send_cost_s=0.0):
        self.bus = bus
        self.send_cost_s = send_cost_s
        self.now = 100.0
        self.sent = []
        self.sleeps_ms = []
        self.homing_at_send = []
        self.command_at_send = []
        self.detection = None
        self.fail = False

    def send(self, endpoint, command):
        self.now += self.send_cost_s
        self.homing_at_send.append(self.bus.get(Channel.HOMING))
        self.command_at_send.append(self.bus.get(Channel.MANUAL_COMMAND))
        if self.fail:
            raise ActuatorError("unreachable")
        self.sent.append((endpoint, command))

    def sleep(self, seconds):
        self.sleeps_ms.append(round(seconds * 1000.0, 6))
        self.now += seconds

    def clock(self):
        return self.now

    @property
    def commands(self):
        return [command for _, command in self.sent]


@pytest.fixture
def bus():
    return TelemetryBus()


@pytest.fixture
def cal(make_calibration):
    return make_calibration()


@pytest.fixture
def rig(bus):
    return FakeArm(bus)


@pytest.fixture
def controller(cal, bus, rig, static_store):
    return MotionController(
        static_store(cal),
        bus,
        rig,
        detections=lambda: rig.detection,
        sleep=rig.sleep,
        clock=rig.clock,
    )


class TestHoming:
    def test_sequence(self, controller, rig):
        controller.home()

        assert rig.commands == [
            MoveCommand(0, 150, 120, True),
            MoveCommand(0, 0, -120, True),
            STOP,
        ]
        # max(upwards_limit, extension_limit), then half the extension limit
        assert rig.sleeps_ms == [1000.0, 400.0]
        assert rig.sent[0][0] == "http://arm.local/move"

    def test_resets_position(self, controller):
        controller.estimator.accumulate(Axis.EXTENSION, 12345)
        controller.home()
        assert controller.estimator.read(Axis.LIFT) == 1000
        assert controller.estimator.read(Axis.EXTENSION) == 400

    def test_homing_flag(self, controller, rig, bus):
        controller.home()
        assert rig.homing_at_send == [HOMING_NOTICE] * 3
        assert bus.get(Channel.HOMING) == HOMING_DONE

    def test_flag_cleared_on_error(self, controller, bus):
        def boom(seconds):
            raise RuntimeError("interrupted")
        controller._sleep = boom
        with pytest.raises(RuntimeError):
            controller.home()
        assert bus.get(Channel.HOMING) == HOMING_DONE

    def test_run_homes_before_ticking(self, controller, rig):
        stop = threading.Event()
        stop.set()
        controller.run(stop)
        assert len(rig.commands) == 3
        assert controller.phase is Phase.HOMING


class TestManual:
    def test_lift_up(self, controller, rig, bus):
        bus.apply_message("CTRU")

        assert controller.tick() is Phase.MANUAL

        assert rig.commands == [MoveCommand(0, 150, 0, False), STOP]
        assert rig.sleeps_ms == [200.0]
        assert controller.estimator.read(Axis.LIFT) == pytest.approx(200.0)

    def test_command_consumed_before_dispatch(self, controller, rig, bus):
        bus.apply_message("CTRD")
        controller.tick()
        assert rig.command_at_send == ["", ""]
        assert bus.get(Channel.MANUAL_COMMAND) == ""

    @pytest.mark.parametrize("letter,expected,axis,total", [
        ("F", MoveCommand(0, 0, 120, False), Axis.EXTENSION, 200),
        ("B", MoveCommand(0, 0, -120, False), Axis.EXTENSION, -200),
        ("R", MoveCommand(100, 0, 0, False), Axis.ROTATION, 200),
        ("L", MoveCommand(-100, 0, 0, False), Axis.ROTATION, -200),
        ("D", MoveCommand(0, -150, 0, False), Axis.LIFT, -200),
    ])
    def test_directions(self, controller, rig, bus, letter, expected, axis, total):
        bus.apply_message("CTR" + letter)
        controller.tick()
        assert rig.commands[0] == expected
        assert controller.estimator.read(axis) == pytest.approx(total)

    def test_lift_uses_elapsed_time(self, cal, bus, static_store):
        rig = FakeArm(bus, send_cost_s=0.05)
        controller = MotionController(
            static_store(cal), bus, rig, lambda: None, sleep=rig.sleep, clock=rig.clock
        )
        bus.apply_message("CTRU")
        controller.tick()
        # Commanded interval plus the time the first request took
        assert controller.estimator.read(Axis.LIFT) == pytest.approx(250.0)

    def test_idle(self, controller, rig):
        assert controller.tick() is None
        assert rig.sent == []
        assert rig.sleeps_ms == []

    def test_actuator_failure_does_not_stop_the_loop(self, controller, rig, bus):
        rig.fail = True
        bus.apply_message("CTRF")
        assert controller.tick() is Phase.MANUAL
        assert controller.estimator.read(Axis.EXTENSION) == pytest.approx(200.0)

        rig.fail = False
        bus.apply_message("CTRB")
        assert controller.tick() is Phase.MANUAL
        assert rig.commands == [MoveCommand(0, 0, -120, False), STOP]


class TestSelectPhase:
    def test_no_detection(self, controller, cal):
        assert controller.select_phase(cal, None) is Phase.SEEKING
        assert controller.select_phase(cal, Detection(NO_TARGET, 640, 480)) is Phase.SEEKING

    def test_in_range(self, controller, cal):
        assert controller.select_phase(cal, Detection((325, 245), 640, 480)) is Phase.GRASPING

    def test_out_of_range(self, controller, cal):
        assert controller.select_phase(cal, Detection((400, 240), 640, 480)) is Phase.APPROACHING

    def test_center_offset(self, controller, make_calibration):
        cal = make_calibration(center_offset_x=80)
        assert controller.select_phase(cal, Detection((400, 240), 640, 480)) is Phase.GRASPING


class TestAutonomous:
    @pytest.fixture(autouse=True)
    def autonomous(self, bus):
        bus.apply_message("MAN0")

    def test_seek(self, cal, bus, static_store):
        rig = FakeArm(bus, send_cost_s=0.03)
        controller = MotionController(
            static_store(cal), bus, rig, lambda: None, sleep=rig.sleep, clock=rig.clock
        )

        assert controller.tick() is Phase.SEEKING

        assert rig.commands == [MoveCommand(100, 0, 0, False)]
        assert controller.estimator.read(Axis.ROTATION) == pytest.approx(30.0)

    def test_manual_command_left_pending(self, controller, bus):
        bus.apply_message("CTRU")
        assert controller.tick() is Phase.SEEKING
        assert bus.get(Channel.MANUAL_COMMAND) == "U"

    def test_approach_target_right(self, controller, rig):
        rig.detection = Detection((400, 240), 640, 480)
        assert controller.tick() is Phase.APPROACHING
        assert rig.commands == [MoveCommand(-100, 0, 0, False)]

    def test_approach_target_left_and_far(self, controller, rig):
        rig.detection = Detection((200, 300), 640, 480)
        controller.tick()
        assert rig.commands == [MoveCommand(100, 0, 120, False)]

    def test_approach_accumulates_signed_time(self, cal, bus, static_store):
        rig = FakeArm(bus, send_cost_s=0.05)
        rig.detection = Detection((400, 180), 640, 480)
        controller = MotionController(
            static_store(cal), bus, rig, lambda: rig.detection, sleep=rig.sleep, clock=rig.clock
        )

        controller.tick()

        assert rig.commands == [MoveCommand(-100, 0, -120, False)]
        assert controller.estimator.read(Axis.ROTATION) == pytest.approx(-50.0)
        assert controller.estimator.read(Axis.EXTENSION) == pytest.approx(-50.0)

    def test_acquisition_sequence(self, controller, rig):
        controller.estimator.reset(Axis.LIFT, 1000)
        controller.estimator.reset(Axis.EXTENSION, 400)
        controller.estimator.reset(Axis.ROTATION, 2000)
        rig.detection = Detection((325, 245), 640, 480)

        assert controller.tick() is Phase.GRASPING

        assert rig.commands == [
            # grasp
            MoveCommand(0, -150, 0, False),
            MoveCommand(0, 0, 0, True),
            MoveCommand(0, 150, 0, True),
            MoveCommand(0, 0, 0, True),
            # transport
            MoveCommand(-100, 0, 0, True),
            MoveCommand(0, 0, 120, True),
            MoveCommand(0, 0, 0, True),
            # release
            MoveCommand(0, -150, 0, True),
            STOP,
            MoveCommand(0, 150, 0, False),
            STOP,
            # return
            MoveCommand(0, 0, -120, False),
            MoveCommand(100, 0, 0, True),
            STOP,
        ]
        assert rig.sleeps_ms == [1000.0, 1000.0, 2.0, 400.0, 1000.0, 1000.0, 400.0, 2.0]
        assert controller.estimator.read(Axis.EXTENSION) == 400
        assert controller.phase is Phase.RETURNING

    def test_transport_wait_never_negative(self, controller, rig):
        controller.estimator.reset(Axis.LIFT, 0)
        controller.estimator.reset(Axis.EXTENSION, 900)
        rig.detection = Detection((320, 240), 640, 480)

        controller.tick()

        assert all(ms >= 0 for ms in rig.sleeps_ms)
        assert 0.0 not in rig.sleeps_ms

    def test_rotation_correction(self, make_calibration, bus, static_store):
        cal = make_calibration(rotation_limit=1500)
        rig = FakeArm(bus)
        controller = MotionController(
            static_store(cal), bus, rig, lambda: None, sleep=rig.sleep, clock=rig.clock
        )
        controller.estimator.reset(Axis.ROTATION, 2000)

        controller.tick()

        assert rig.commands[0] == MoveCommand(-100, 0, 0, True)
        assert rig.sleeps_ms[0] == 500.0
        assert controller.estimator.read(Axis.ROTATION) == pytest.approx(1500.0)
        # Seeking still runs in the same tick
        assert rig.commands[1] == MoveCommand(100, 0, 0, False)

    def test_no_correction_within_limit(self, make_calibration, controller):
        cal = make_calibration(rotation_limit=1500)
        controller.estimator.reset(Axis.ROTATION, 1500)
        assert controller.correct_rotation(cal) is False

    def test_correction_disabled(self, controller, cal):
        controller.estimator.reset(Axis.ROTATION, 10 ** 6)
        assert controller.correct_rotation(cal) is False
