"""Tests for wire message parsing and validation."""

import pytest

from nvimrpc.error import ErrorCode, RpcError
from nvimrpc.wire import (
    MAX_REQUEST_ID,
    MessageType,
    WireNotification,
    WireRequest,
    WireResponse,
    is_int_not_bool,
    parse_message,
)


class TestParseMessage:
    """Valid messages."""

    def test_request(self) -> None:
        msg = parse_message([0, 5, "nvim_eval", ["1 + 1"]])
        assert msg == WireRequest(5, "nvim_eval", ["1 + 1"])

    def test_response_success(self) -> None:
        msg = parse_message([1, 5, None, 2])
        assert msg == WireResponse(5, None, 2)
        assert not msg.is_error

    def test_response_error(self) -> None:
        msg = parse_message([1, 5, [0, "Vim:E121"], None])
        assert isinstance(msg, WireResponse)
        assert msg.is_error

    def test_notification(self) -> None:
        msg = parse_message([2, "redraw", [["flush", []]]])
        assert msg == WireNotification("redraw", [["flush", []]])

    def test_tuple_input(self) -> None:
        assert parse_message((2, "ev", ())) == WireNotification("ev", [])

    def test_bytes_method_name(self) -> None:
        msg = parse_message([2, b"redraw", []])
        assert msg.method == "redraw"

    def test_max_request_id(self) -> None:
        msg = parse_message([0, MAX_REQUEST_ID, "m", []])
        assert msg.request_id == MAX_REQUEST_ID


class TestParseMessageErrors:
    """Malformed messages raise protocol errors."""

    @pytest.mark.parametrize(
        "value",
        [
            None,
            [],
            "hello",
            {"type": 0},
            [3, "m", []],
            [True, 1, "m", []],
            [0, 1, "m"],
            [0, "1", "m", []],
            [0, -1, "m", []],
            [0, MAX_REQUEST_ID + 1, "m", []],
            [0, True, "m", []],
            [0, 1, 42, []],
            [0, 1, "m", "args"],
            [1, 1, None],
            [2, "m"],
            [2, "m", {"a": 1}],
        ],
    )
    def test_invalid(self, value: object) -> None:
        with pytest.raises(RpcError) as exc_info:
            parse_message(value)
        assert exc_info.value.code is ErrorCode.PROTOCOL
        assert exc_info.value.is_fatal


class TestToWire:
    def test_shapes(self) -> None:
        assert WireRequest(1, "m", [1]).to_wire() == [0, 1, "m", [1]]
        assert WireResponse(1, None, "r").to_wire() == [1, 1, None, "r"]
        assert WireNotification("n", []).to_wire() == [2, "n", []]

    def test_message_type_values(self) -> None:
        assert [t.value for t in MessageType] == [0, 1, 2]


def test_is_int_not_bool() -> None:
    assert is_int_not_bool(0)
    assert is_int_not_bool(2**40)
    assert not is_int_not_bool(True)
    assert not is_int_not_bool(1.0)
    assert not is_int_not_bool("1")


class TestRpcError:
    def test_remote_string(self) -> None:
        err = RpcError.remote("boom")
        assert err.code is ErrorCode.REMOTE
        assert err.message == "boom"
        assert not err.is_fatal

    def test_remote_pair(self) -> None:
        err = RpcError.remote([1, "Wrong type for argument 1"])
        assert err.message == "Wrong type for argument 1"

    def test_remote_other(self) -> None:
        assert RpcError.remote({"code": 3}).message == "{'code': 3}"
        assert RpcError.remote(b"raw").message == "raw"

    def test_connection_closed_is_fatal(self) -> None:
        assert RpcError.connection_closed().is_fatal
        assert str(RpcError.connection_closed("gone")) == "gone"
