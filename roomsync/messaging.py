"""
Avatar control protocol carried over the peer data channel.

Messages are flat JSON objects tagged by an integer ``msgType``. The relay
wraps every forwarded message in an envelope
``{"from": "<peer uuid>", "message": "<original JSON text>"}``;
``decode_message`` accepts both the envelope and the flat form.

Wire format:
    Hello          {msgType: 2, id, name}
    HelloResponse  {msgType: 3, id, name, direction, coord: {x, y}}
    Move           {msgType: 4, id, direction, coord: {x, y}}
    Stop           {msgType: 5, id}
"""

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, ClassVar, Union


class AvatarDirection(IntEnum):
    """Facing direction. The value doubles as the sprite-sheet row."""

    DOWN = 0
    UP = 1
    LEFT = 2
    RIGHT = 3


class ControlMessageType(IntEnum):
    # Values shared with the browser client
    HELLO = 2
    HELLO_RESPONSE = 3
    MOVE = 4
    STOP = 5


_TYPE_NAMES = {
    "Hello": ControlMessageType.HELLO,
    "HelloResponse": ControlMessageType.HELLO_RESPONSE,
    "Move": ControlMessageType.MOVE,
    "Stop": ControlMessageType.STOP,
}


class MalformedMessageError(ValueError):
    """Raised when an inbound message cannot be decoded."""


@dataclass(frozen=True)
class Coord:
    x: float
    y: float


@dataclass(frozen=True)
class HelloMessage:
    msg_type: ClassVar[ControlMessageType] = ControlMessageType.HELLO

    id: str
    name: str

    def to_wire(self) -> dict[str, Any]:
        return {"msgType": int(self.msg_type), "id": self.id, "name": self.name}


@dataclass(frozen=True)
class MoveMessage:
    msg_type: ClassVar[ControlMessageType] = ControlMessageType.MOVE

    id: str
    direction: AvatarDirection
    coord: Coord

    def to_wire(self) -> dict[str, Any]:
        return {
            "msgType": int(self.msg_type),
            "id": self.id,
            "direction": int(self.direction),
            "coord": {"x": self.coord.x, "y": self.coord.y},
        }


@dataclass(frozen=True)
class HelloResponseMessage:
    msg_type: ClassVar[ControlMessageType] = ControlMessageType.HELLO_RESPONSE

    id: str
    name: str
    direction: AvatarDirection
    coord: Coord

    def to_wire(self) -> dict[str, Any]:
        return {
            "msgType": int(self.msg_type),
            "id": self.id,
            "name": self.name,
            "direction": int(self.direction),
            "coord": {"x": self.coord.x, "y": self.coord.y},
        }


@dataclass(frozen=True)
class StopMessage:
    msg_type: ClassVar[ControlMessageType] = ControlMessageType.STOP

    id: str

    def to_wire(self) -> dict[str, Any]:
        return {"msgType": int(self.msg_type), "id": self.id}


ControlMessage = Union[HelloMessage, HelloResponseMessage, MoveMessage, StopMessage]


def encode_message(message: ControlMessage) -> str:
    return json.dumps(message.to_wire())


def _parse_json(raw: str | bytes) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid JSON: {e}") from e


def _require(data: dict, key: str) -> Any:
    if key not in data or data[key] is None:
        raise MalformedMessageError(f"Missing field '{key}'")
    return data[key]


def _parse_type(value: Any) -> ControlMessageType:
    if isinstance(value, str) and value in _TYPE_NAMES:
        return _TYPE_NAMES[value]
    try:
        return ControlMessageType(value)
    except ValueError:
        raise MalformedMessageError(f"Unknown msgType {value!r}") from None


def parse_direction(value: Any) -> AvatarDirection:
    """Parse a direction given either as its wire integer or its name."""
    if isinstance(value, str):
        try:
            return AvatarDirection[value.upper()]
        except KeyError:
            raise MalformedMessageError(f"Unknown direction {value!r}") from None
    if isinstance(value, bool):
        raise MalformedMessageError(f"Unknown direction {value!r}")
    try:
        return AvatarDirection(value)
    except ValueError:
        raise MalformedMessageError(f"Unknown direction {value!r}") from None


def _parse_coord(value: Any) -> Coord:
    if not isinstance(value, dict):
        raise MalformedMessageError(f"Invalid coord {value!r}")
    x = _require(value, "x")
    y = _require(value, "y")
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (x, y)):
        raise MalformedMessageError(f"Invalid coord {value!r}")
    return Coord(float(x), float(y))


def decode_message(raw: str | bytes) -> ControlMessage:
    """
    Decode one data-channel message.

    Args:
        raw: Message text, either flat or wrapped in the relay envelope

    Returns:
        The decoded control message

    Raises:
        MalformedMessageError: If the text is not valid JSON, the type is
            unknown or a required field is missing
    """
    data = _parse_json(raw)
    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected an object, got {type(data).__name__}")

    if "msgType" not in data and "message" in data:
        inner = data["message"]
        if not isinstance(inner, str) or not inner:
            raise MalformedMessageError("Empty envelope")
        data = _parse_json(inner)
        if not isinstance(data, dict):
            raise MalformedMessageError(f"Expected an object, got {type(data).__name__}")

    msg_type = _parse_type(_require(data, "msgType"))
    peer_id = _require(data, "id")
    if not isinstance(peer_id, str):
        raise MalformedMessageError(f"Invalid id {peer_id!r}")

    if msg_type == ControlMessageType.HELLO:
        return HelloMessage(id=peer_id, name=str(_require(data, "name")))
    if msg_type == ControlMessageType.HELLO_RESPONSE:
        return HelloResponseMessage(
            id=peer_id,
            name=str(_require(data, "name")),
            direction=parse_direction(_require(data, "direction")),
            coord=_parse_coord(_require(data, "coord")),
        )
    if msg_type == ControlMessageType.MOVE:
        return MoveMessage(
            id=peer_id,
            direction=parse_direction(_require(data, "direction")),
            coord=_parse_coord(_require(data, "coord")),
        )
    return StopMessage(id=peer_id)
