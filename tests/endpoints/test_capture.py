import threading
import time

import pytest

from resource_flow.endpoints import CaptureEndpoint
from resource_flow.models import Message
from resource_flow.models import headers as h
from resource_flow.utils.errors import UnsatisfiedExpectationError


def _capture() -> CaptureEndpoint:
    return CaptureEndpoint("sink", timeout=0.2, poll_interval=0.01)


def test_capture_records_copies_in_arrival_order():
    capture = _capture()
    original = Message(body="one", headers={h.HTTP_RESPONSE_CODE: 200})
    capture.deliver(original)
    capture.deliver(Message(body=b"two"))
    original.set_header(h.HTTP_RESPONSE_CODE, 500)

    assert capture.uri == "capture:sink"
    assert capture.count() == 2
    assert capture.bodies() == ["one", "two"]
    assert capture.headers(h.HTTP_RESPONSE_CODE) == {200}


def test_reads_are_idempotent():
    capture = _capture()
    capture.deliver(Message(body="a"))
    assert capture.bodies() == capture.bodies()
    assert capture.count() == capture.count() == 1


def test_count_expectation_satisfied_immediately():
    capture = _capture().expect_count(1).expect_header(h.HTTP_RESPONSE_CODE, 201)
    capture.deliver(Message(headers={h.HTTP_RESPONSE_CODE: 201}))
    capture.assert_satisfied()


def test_unsatisfied_expectation_reports_observed_values():
    capture = _capture().expect_count(2).expect_header(h.HTTP_RESPONSE_CODE, 204)
    capture.deliver(Message(headers={h.HTTP_RESPONSE_CODE: 404}))

    started = time.monotonic()
    with pytest.raises(UnsatisfiedExpectationError) as excinfo:
        capture.assert_satisfied()
    assert time.monotonic() - started >= 0.2
    failures = excinfo.value.failures
    assert failures == [
        "expected 2 message(s) but received 1",
        f"expected header {h.HTTP_RESPONSE_CODE}=204 on every message but observed [404]",
    ]


def test_header_expectations_need_a_message():
    capture = _capture().expect_header(h.HTTP_RESPONSE_CODE, 200)
    assert capture.unsatisfied() == [
        f"expected header {h.HTTP_RESPONSE_CODE}=200 on every message but no messages were received"
    ]


def test_bodies_compare_bytes_as_text_and_none_as_none():
    capture = _capture().expect_bodies([None, b"abc"])
    capture.deliver(Message())
    capture.deliver(Message(body=b"abc"))
    assert capture.is_satisfied()


def test_bodies_in_any_order_respects_multiplicity():
    capture = _capture().expect_bodies_in_any_order(["x", "x", "y"])
    for body in ("x", "y", "y"):
        capture.deliver(Message(body=body))
    assert not capture.is_satisfied()

    capture.reset()
    capture.expect_bodies_in_any_order(["x", "x", "y"])
    for body in ("y", "x", "x"):
        capture.deliver(Message(body=body))
    assert capture.is_satisfied()


def test_header_contains_expectation():
    capture = _capture().expect_header_contains(h.CONTENT_TYPE, "application/rdf+xml")
    capture.deliver(Message(headers={h.CONTENT_TYPE: "application/rdf+xml;charset=utf-8"}))
    assert capture.is_satisfied()


def test_minimum_count_tolerates_extra_messages():
    capture = _capture().expect_minimum_count(1)
    capture.deliver(Message())
    capture.deliver(Message())
    assert capture.is_satisfied()


def test_wait_is_woken_by_late_delivery():
    capture = CaptureEndpoint("late", timeout=5.0, poll_interval=1.0).expect_count(1)
    timer = threading.Timer(0.05, capture.deliver, args=(Message(body="late"),))
    timer.start()
    started = time.monotonic()
    try:
        capture.assert_satisfied()
    finally:
        timer.cancel()
    assert time.monotonic() - started < 1.0


def test_concurrent_deliveries_are_all_recorded():
    capture = CaptureEndpoint("busy", timeout=5.0).expect_count(200)

    def produce(offset: int) -> None:
        for index in range(50):
            capture.deliver(Message(body=f"{offset}-{index}"))

    threads = [threading.Thread(target=produce, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    capture.assert_satisfied()
    for thread in threads:
        thread.join()
    assert len(set(capture.bodies())) == 200


def test_reset_clears_messages_and_expectations():
    capture = _capture().expect_count(5)
    capture.deliver(Message())
    capture.reset()
    assert capture.count() == 0
    assert capture.unsatisfied() == []


def test_headers_collects_unhashable_values():
    capture = _capture()
    capture.deliver(Message(headers={"tags": ["a", "b"]}))
    capture.deliver(Message(headers={"tags": ["a", "b"]}))
    capture.deliver(Message(headers={"tags": {"lang": "en"}}))

    assert capture.headers("tags") == {("a", "b"), frozenset({("lang", "en")})}
    assert capture.messages()[0].headers["tags"] == ["a", "b"]


def test_zero_timeout_checks_once_without_waiting():
    capture = CaptureEndpoint("now", timeout=0, poll_interval=0.01).expect_count(1)
    started = time.monotonic()
    with pytest.raises(UnsatisfiedExpectationError):
        capture.assert_satisfied()
    assert time.monotonic() - started < 1.0
