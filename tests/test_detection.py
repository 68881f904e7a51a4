"""
Tests for the detection notifier and frame dispatcher.
"""
import asyncio

import numpy as np

from dartscore.core.autoscore import AutoscoreConfig, AutoscoreEngine
from dartscore.core.detection import (
    FrameDispatcher,
    NotifyStatus,
    TipDetection,
    TipDetector,
    YOLOTipDetector,
    coerce_detection,
    run_detection_and_notify,
)
from dartscore.core.types import Point

IDENTITY = np.eye(3)


class StaticDetector:
    """Returns the same detection for every frame."""

    def __init__(self, detection):
        self.detection = detection
        self.frames = []

    def detect(self, frame):
        self.frames.append(frame)
        return self.detection


class Recorder:
    def __init__(self, result=True):
        self.calls = []
        self.result = result

    def __call__(self, value, ring, info):
        self.calls.append((value, ring, info))
        return self.result


def run(coro):
    return asyncio.run(coro)


def test_detector_protocol():
    assert isinstance(StaticDetector(None), TipDetector)


def test_coerce_detection():
    assert coerce_detection(None) is None
    assert coerce_detection({"tip": (1, 2)}) is None
    assert coerce_detection({"tip": (1, 2), "confidence": "high"}) is None
    assert coerce_detection({"confidence": 0.9}) is None
    assert coerce_detection({"tip": (1, 2), "confidence": float("nan")}) is None
    assert coerce_detection("tip") is None

    detection = coerce_detection({"tip": {"x": 1, "y": 2}, "confidence": 0.9, "theta": 0.1})
    assert detection == TipDetection(tip=Point(1.0, 2.0), confidence=0.9, theta=0.1)


def test_notifier_scores_and_calls_back():
    callback = Recorder(result="ok")
    detector = StaticDetector({"tip": (0, -103), "confidence": 0.95})
    result = run(run_detection_and_notify(detector, "frame", IDENTITY, (1280, 720), callback))

    assert result.status == NotifyStatus.ACCEPTED
    assert result.acceptance.ok
    assert result.acceptance.value == "ok"
    assert callback.calls == [(60, "TRIPLE", {"sector": 20, "mult": 3})]
    assert detector.frames == ["frame"]


def test_notifier_skips_without_detector_or_callback():
    callback = Recorder()
    assert run(run_detection_and_notify(None, "f", IDENTITY, (1, 1), callback)).status == NotifyStatus.SKIPPED
    detector = StaticDetector({"tip": (0, 0), "confidence": 0.9})
    assert run(run_detection_and_notify(detector, "f", IDENTITY, (1, 1), None)).status == NotifyStatus.SKIPPED
    assert detector.frames == []
    assert callback.calls == []


def test_notifier_filters_low_confidence():
    callback = Recorder()
    detector = StaticDetector({"tip": (0, -103), "confidence": 0.59})
    result = run(run_detection_and_notify(detector, "f", IDENTITY, (1, 1), callback))
    assert result.status == NotifyStatus.LOW_CONFIDENCE
    assert callback.calls == []

    detector = StaticDetector(None)
    assert run(run_detection_and_notify(detector, "f", IDENTITY, (1, 1), callback)).status == NotifyStatus.NO_DETECTION

    detector = StaticDetector({"tip": (0, -103), "confidence": 0.59})
    result = run(run_detection_and_notify(detector, "f", IDENTITY, (1, 1), callback, min_confidence=0.5))
    assert result.status == NotifyStatus.ACCEPTED


def test_notifier_swallows_callback_errors():
    def explode(value, ring, info):
        raise RuntimeError("match logic down")

    detector = StaticDetector({"tip": (0, 0), "confidence": 0.9})
    result = run(run_detection_and_notify(detector, "f", IDENTITY, (1, 1), explode))
    assert result.status == NotifyStatus.REJECTED
    assert not result.acceptance.ok
    assert isinstance(result.acceptance.error, RuntimeError)
    assert result.score.point_value == 50


def test_notifier_awaits_async_callback():
    seen = []

    async def confirm(value, ring, info):
        await asyncio.sleep(0)
        seen.append(value)
        return "confirmed"

    detector = StaticDetector(TipDetection(tip=Point(10, 0), confidence=0.9))
    result = run(run_detection_and_notify(detector, "f", IDENTITY, (1, 1), confirm))
    assert result.acceptance.value == "confirmed"
    assert seen == [25]


def test_notifier_rescales_to_calibration_size():
    callback = Recorder()
    # Frame at half the calibration resolution
    detector = StaticDetector({"tip": (0, -51.5), "confidence": 0.9})
    run(run_detection_and_notify(
        detector, "f", IDENTITY, (640, 360), callback, calibration_size=(1280, 720)
    ))
    assert callback.calls[0][:2] == (60, "TRIPLE")


def test_notifier_accepts_size_mappings():
    callback = Recorder()
    detector = StaticDetector({"tip": (0, -51.5), "confidence": 0.9})
    run(run_detection_and_notify(
        detector, "f", IDENTITY, {"w": 640, "h": 360}, callback,
        calibration_size={"w": 1280, "h": 720},
    ))
    assert callback.calls[0][:2] == (60, "TRIPLE")


def test_notifier_uses_detection_theta():
    callback = Recorder()
    detector = StaticDetector(TipDetection(tip=Point(0, -103), confidence=0.9, theta=np.radians(18)))
    run(run_detection_and_notify(detector, "f", IDENTITY, (1, 1), callback))
    assert callback.calls[0][2]["sector"] == 1


def make_dispatcher(callback, detection):
    engine = AutoscoreEngine(AutoscoreConfig(require_stable_n=2), camera_id="cam1")
    return FrameDispatcher(StaticDetector(detection), engine, callback)


def test_dispatcher_waits_for_stability_then_dedupes():
    callback = Recorder()
    dispatcher = make_dispatcher(callback, {"tip": (0, -103), "confidence": 0.9})

    first = run(dispatcher.dispatch("f1", IDENTITY))
    assert first.status == NotifyStatus.UNSTABLE
    second = run(dispatcher.dispatch("f2", IDENTITY))
    assert second.status == NotifyStatus.ACCEPTED
    assert callback.calls == [(60, "TRIPLE", {"sector": 20, "mult": 3})]
    assert dispatcher.committed_tips == [Point(0, -103)]
    assert dispatcher.engine.stable_count == 0

    third = run(dispatcher.dispatch("f3", IDENTITY))
    assert third.status == NotifyStatus.DUPLICATE
    assert len(callback.calls) == 1

    dispatcher.clear_committed()
    assert run(dispatcher.dispatch("f4", IDENTITY)).status == NotifyStatus.UNSTABLE


def test_dispatcher_drops_frames_while_acceptance_pending():
    inner = []

    async def confirm(value, ring, info):
        inner.append(await dispatcher.dispatch("during", IDENTITY))
        return True

    dispatcher = make_dispatcher(confirm, {"tip": (0, 0), "confidence": 0.9})

    async def scenario():
        await dispatcher.dispatch("f1", IDENTITY)
        return await dispatcher.dispatch("f2", IDENTITY)

    result = run(scenario())
    assert result.status == NotifyStatus.ACCEPTED
    assert [r.status for r in inner] == [NotifyStatus.DROPPED]
    assert dispatcher.dropped_frames == 1
    assert not dispatcher.pending


def test_dispatcher_keeps_dart_when_callback_fails():
    def explode(value, ring, info):
        raise ValueError("nope")

    dispatcher = make_dispatcher(explode, {"tip": (0, 0), "confidence": 0.9})
    run(dispatcher.dispatch("f1", IDENTITY))
    result = run(dispatcher.dispatch("f2", IDENTITY))
    assert result.status == NotifyStatus.REJECTED
    assert dispatcher.committed_tips == []
    assert not dispatcher.pending


class FakeTensor:
    def __init__(self, values):
        self.values = np.asarray(values, dtype=float)

    def cpu(self):
        return self

    def numpy(self):
        return self.values


class FakeBoxes:
    def __init__(self, cls, conf, xyxy):
        self.cls = cls
        self.conf = conf
        self.xyxy = [FakeTensor(b) for b in xyxy]

    def __len__(self):
        return len(self.cls)


class FakeResult:
    def __init__(self, boxes):
        self.boxes = boxes
        self.keypoints = None


class FakeModel:
    def __init__(self, results):
        self.results = results

    def __call__(self, frame, imgsz, verbose):
        return self.results


def test_yolo_detector_picks_best_tip():
    boxes = FakeBoxes(cls=[0, 1, 0], conf=[0.7, 0.99, 0.9], xyxy=[[0, 0, 10, 10], [5, 5, 7, 7], [100, 200, 110, 210]])
    detector = YOLOTipDetector(model=FakeModel([FakeResult(boxes)]))
    detection = detector.detect("frame")
    assert detection.tip == Point(105.0, 205.0)
    assert detection.confidence == 0.9


def test_yolo_detector_without_model(tmp_path):
    detector = YOLOTipDetector(model_path=tmp_path / "missing_model")
    assert not detector.is_initialized
    assert detector.detect("frame") is None
