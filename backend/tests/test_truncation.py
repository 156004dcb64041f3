from __future__ import annotations

from chartdata_api.services.request_executor import (
    RESPONSE_ITEMS_CAP,
    ExecutionResult,
    truncate_payload,
    truncate_response_data,
)


def test_list_keeps_first_twenty() -> None:
    data = list(range(50))
    assert truncate_payload(data) == list(range(20))
    assert RESPONSE_ITEMS_CAP == 20


def test_truncating_twice_changes_nothing() -> None:
    once = truncate_payload(list(range(50)))
    assert truncate_payload(once) == once
    short = [1, 2, 3]
    assert truncate_payload(short) == short


def test_mapping_only_caps_list_values() -> None:
    data = {"a": list(range(1, 51)), "b": "scalar", "c": [1, 2, 3, 4, 5]}
    out = truncate_payload(data)
    assert out == {"a": list(range(1, 21)), "b": "scalar", "c": [1, 2, 3, 4, 5]}


def test_input_is_not_modified() -> None:
    data = {"customers": list(range(30)), "next": "abc"}
    truncate_payload(data)
    assert len(data["customers"]) == 30


def test_scalars_pass_through() -> None:
    assert truncate_payload("text") == "text"
    assert truncate_payload(None) is None
    assert truncate_payload(42) == 42


def test_response_wrapper_truncates_only_data() -> None:
    response = {"data": list(range(40)), "meta": list(range(40))}
    out = truncate_response_data(response, cap=5)
    assert out["data"] == [0, 1, 2, 3, 4]
    assert out["meta"] == list(range(40))
    assert truncate_response_data(None) is None


def test_wire_shape_leaves_result_untouched() -> None:
    response = {"data": list(range(50))}
    result = ExecutionResult(
        data_request={"id": 1, "route": "customers", "responseData": response},
        response_data=response,
        source="upstream",
    )
    wire = result.to_wire()
    assert wire["source"] == "upstream"
    assert len(wire["dataRequest"]["responseData"]["data"]) == 20
    assert len(result.response_data["data"]) == 50
    assert len(result.data_request["responseData"]["data"]) == 50
