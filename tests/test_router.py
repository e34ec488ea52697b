from tbridge.router import DEFAULT_THRESHOLD, large_payload, route
from tbridge.transcript import Message


def _m(n, id="x"):
    return Message(role="assistant", name="Claude Code", content="a" * n, id=id)


def test_threshold_boundary():
    at, over = _m(2400, "at"), _m(2401, "over")

    routed = route([at, over])

    assert DEFAULT_THRESHOLD == 2400
    assert routed.short == [at]
    assert routed.large == [over]


def test_custom_threshold_keeps_order():
    msgs = [_m(5, "a"), _m(50, "b"), _m(6, "c")]

    routed = route(msgs, threshold=10)

    assert [m.id for m in routed.short] == ["a", "c"]
    assert [m.id for m in routed.large] == ["b"]


def test_large_payload_carries_speaker():
    msg = Message(role="user", name="Developer", content="long text")
    assert large_payload(msg) == "Developer: long text"
