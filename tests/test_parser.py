"""Tests for reply and event parsing."""

from arduino_config_mcp.models.state import InputAction
from arduino_config_mcp.protocol.parser import (
    Response,
    ResponseStatus,
    StateEntry,
    is_reply_candidate,
    parse_input_event,
    parse_response,
    parse_state_report,
    reply_matches,
)


def test_reply_candidates():
    assert is_reply_candidate('{"response":"PONG","success":true}')
    assert is_reply_candidate('{"response":"ERROR","message":"Invalid command"}')
    assert not is_reply_candidate('{"response":"INPUT_EVENT","type":"BTN_PRESS","id":0}')
    assert not is_reply_candidate('{"success":true}')
    assert not is_reply_candidate("Booting...")
    assert not is_reply_candidate("[1,2]")


def test_parse_success_with_data():
    response = parse_response('{"response":"VERSION","success":true,"data":"1.2.0"}')
    assert response.success
    assert response.data == "1.2.0"
    assert response.error is None
    assert response.status is ResponseStatus.OK
    assert response.payload["response"] == "VERSION"


def test_success_must_be_literally_true():
    for raw in ('"true"', "1", "null"):
        response = parse_response('{"response":"PONG","success":%s}' % raw)
        assert not response.success
        assert response.status is ResponseStatus.DEVICE_ERROR
    assert not parse_response('{"response":"PONG"}').success


def test_error_falls_back_to_message():
    response = parse_response('{"response":"ERROR","message":"Invalid command"}')
    assert not response.success
    assert response.error == "Invalid command"

    response = parse_response('{"response":"ERROR","error":"Bad pin","message":"ignored"}')
    assert response.error == "Bad pin"


def test_non_string_data_becomes_json_text():
    response = parse_response('{"response":"X","success":true,"data":{"a":1}}')
    assert response.data == '{"a":1}'


def test_malformed_reply():
    response = parse_response("{not json")
    assert not response.success
    assert response.error == "Malformed reply"


def test_synthetic_responses():
    assert Response.timeout().error == "Command timeout"
    assert Response.timeout().status is ResponseStatus.TIMEOUT
    assert Response.cancelled().status is ResponseStatus.CANCELLED
    assert Response.not_connected().error == "Not connected"
    assert Response.transport_error("boom").error == "boom"
    assert Response.sent().success


def test_response_to_dict_omits_empty_fields():
    assert Response.sent().to_dict() == {"success": True, "status": "ok"}
    assert Response.timeout().to_dict() == {
        "success": False,
        "status": "timeout",
        "error": "Command timeout",
    }


def test_reply_matches_command():
    pong = parse_response('{"response":"PONG","success":true}')
    state = parse_response('{"response":"STATE","success":true,"inputs":[]}')
    error = parse_response('{"response":"ERROR","message":"Invalid command"}')

    assert reply_matches("PING", pong)
    assert reply_matches("GET_STATE", state)
    assert not reply_matches("PING", state)
    assert not reply_matches("VERSION", pong)
    assert reply_matches("VERSION", error)
    # Commands answered with a generic OK have nothing to compare against
    assert reply_matches("SAVE_CONFIG", state)
    assert not reply_matches("GET_STATE", Response.timeout())


def test_parse_input_event():
    event = parse_input_event('{"response":"INPUT_EVENT","type":"ENC_CW","id":1,"value":101}')
    assert event is not None
    assert event.index == 1
    assert event.value == 101
    assert event.action is InputAction.ROTATE_CW


def test_input_event_type_mapping():
    expected = {
        "BTN_PRESS": InputAction.PRESS,
        "BTN_RELEASE": InputAction.RELEASE,
        "ENC_CCW": InputAction.ROTATE_CCW,
        "ENC_PRESS": InputAction.ENCODER_PRESS,
        "TOG_ON": InputAction.TOGGLE_ON,
        "TOG_OFF": InputAction.TOGGLE_OFF,
        "SOMETHING_NEW": InputAction.PRESS,
    }
    for event_type, action in expected.items():
        event = parse_input_event(
            '{"response":"INPUT_EVENT","type":"%s","id":0}' % event_type
        )
        assert event.action is action, event_type


def test_parse_input_event_rejects_other_frames():
    assert parse_input_event('{"response":"STATE","success":true}') is None
    assert parse_input_event('{"response":"INPUT_EVENT","type":"BTN_PRESS"}') is None
    assert parse_input_event('{"response":"INPUT_EVENT","type":"BTN_PRESS","id":"0"}') is None
    assert parse_input_event("noise") is None


def test_parse_state_report():
    payload = {
        "response": "STATE",
        "success": True,
        "inputs": [
            {"id": 0, "type": "BTN", "state": 1},
            {"id": 1, "type": "ENC", "value": 100},
            {"id": 2, "state": 0},
            {"type": "BTN", "state": 1},
            "junk",
        ],
    }
    assert parse_state_report(payload) == [
        StateEntry(0, True, None),
        StateEntry(1, False, 100),
        StateEntry(2, False, None),
    ]


def test_parse_state_report_without_inputs():
    assert parse_state_report({"response": "STATE", "success": True}) == []
    assert parse_state_report({"inputs": "nope"}) == []
