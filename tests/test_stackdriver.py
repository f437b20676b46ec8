import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from cloudkit.requestlog import Entry
from cloudkit.stackdriver import StackdriverLogger, format_latency

START_TIME = 1507914000
START_MICROS = 512
LATENCY_SEC = 5
LATENCY_MICROS = 123456
END_TIME = START_TIME + LATENCY_SEC
END_NANOS = (START_MICROS + LATENCY_MICROS) * 1000


def make_entry(**overrides):
    fields = dict(
        received_time=datetime.fromtimestamp(START_TIME, timezone.utc)
        + timedelta(microseconds=START_MICROS),
        request_method="POST",
        request_url="/foo/bar",
        request_header_size=456,
        request_body_size=123000,
        user_agent="Chrome proxied through Firefox and Edge",
        referer="http://www.example.com/",
        proto="HTTP/1.1",
        remote_ip="12.34.56.78",
        server_ip="127.0.0.1",
        status=404,
        response_header_size=555,
        response_body_size=789000,
        latency=timedelta(seconds=LATENCY_SEC, microseconds=LATENCY_MICROS),
    )
    fields.update(overrides)
    return Entry(**fields)


def parse_latency(s):
    s = s.strip()
    if not s.endswith("s"):
        return ""
    s = s[:-1].strip()
    if any(not (c.isdigit() or c == ".") for c in s):
        return ""
    return s


def test_stackdriver_log():
    buf = io.BytesIO()
    errors = []
    logger = StackdriverLogger(buf, errors.append)
    ent = make_entry()
    logger.log(ent)
    assert errors == []

    record = json.loads(buf.getvalue())
    rr = record["httpRequest"]
    assert rr["requestMethod"] == ent.request_method
    assert rr["requestUrl"] == ent.request_url
    assert rr["requestSize"] == "123456"
    assert rr["status"] == ent.status
    assert rr["responseSize"] == "789555"
    assert rr["userAgent"] == ent.user_agent
    assert rr["remoteIp"] == ent.remote_ip
    assert rr["referer"] == ent.referer
    assert parse_latency(rr["latency"]) == "5.123456000"
    ts = record["timestamp"]
    assert ts["seconds"] == END_TIME
    assert ts["nanos"] == END_NANOS


def test_record_is_one_line():
    buf = io.BytesIO()
    logger = StackdriverLogger(buf, lambda err: None)
    logger.log(make_entry())
    logger.log(make_entry())
    lines = buf.getvalue().split(b"\n")
    assert lines[-1] == b""
    assert len(lines) == 3
    assert json.loads(lines[0]) == json.loads(lines[1])


def test_html_characters_are_escaped():
    buf = io.BytesIO()
    logger = StackdriverLogger(buf, lambda err: None)
    logger.log(make_entry(request_url="/a<b>&c"))
    raw = buf.getvalue().decode("utf-8")
    assert "\\u003c" in raw and "\\u003e" in raw and "\\u0026" in raw
    assert json.loads(raw)["httpRequest"]["requestUrl"] == "/a<b>&c"


@pytest.mark.parametrize(
    "latency, want",
    [
        (timedelta(0), "0.000000000s"),
        (timedelta(seconds=5), "5.000000000s"),
        (timedelta(seconds=5, microseconds=123456), "5.123456000s"),
        (timedelta(minutes=2, microseconds=1), "120.000001000s"),
        (timedelta(microseconds=-1500), "-0.001500000s"),
    ],
)
def test_format_latency(latency, want):
    assert format_latency(latency) == want


def test_write_failure_goes_to_callback():
    class FailingStream:
        def write(self, data):
            raise OSError("broken pipe")

    errors = []
    logger = StackdriverLogger(FailingStream(), errors.append)
    logger.log(make_entry())
    assert len(errors) == 1
    assert isinstance(errors[0], OSError)