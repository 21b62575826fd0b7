"""watchsync wire protocol: text frames and the replicated PlaybackState."""
from __future__ import annotations
import json
import time
from dataclasses import dataclass, asdict, replace
from typing import Any, Optional


def now_ms() -> int:
    """Local wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class ProtocolError(ValueError):
    """A frame or PlaybackState payload could not be decoded."""


# ---- Client → Arbiter commands ----
CMD_TIME_SYNC_REQUEST_BACKWARD = "time_sync_request_backward"
CMD_TIME_SYNC_REQUEST_FORWARD = "time_sync_request_forward"
CMD_STATE_UPDATE_FROM_CLIENT = "state_update_from_client"

# ---- Arbiter → Client commands ----
CMD_TIME_SYNC_RESPONSE_BACKWARD = "time_sync_response_backward"
CMD_TIME_SYNC_RESPONSE_FORWARD = "time_sync_response_forward"
CMD_STATE_UPDATE_FROM_SERVER = "state_update_from_server"


def make_frame(command: str, payload: Any = None) -> str:
    """Build ``"<command>"`` or ``"<command> <payload>"``.

    Numbers are written as-is, dicts as compact JSON.
    """
    if payload is None:
        return command
    if isinstance(payload, dict):
        body = json.dumps(payload, separators=(",", ":"))
    else:
        body = str(payload)
    if "\n" in body:
        raise ProtocolError("frame payload must not contain newlines")
    return f"{command} {body}"


def parse_frame(raw: str | bytes) -> tuple[str, str]:
    """Split a frame into (command, payload_text). payload_text may be ''."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"frame is not valid UTF-8: {e}") from e
    raw = raw.strip()
    if not raw:
        raise ProtocolError("empty frame")
    command, _, payload = raw.partition(" ")
    return command, payload.strip()


def parse_number(payload: str) -> float:
    """Decode a numeric frame payload (milliseconds)."""
    try:
        return float(payload)
    except ValueError as e:
        raise ProtocolError(f"expected a number, got {payload!r}") from e


@dataclass
class PlaybackState:
    video_timestamp: float = 0.0  # seconds into the media at global_timestamp
    global_timestamp: int = 0  # arbiter wall clock (ms) when recorded
    playing: bool = False
    last_updated: int = 0  # proposer's corrected clock (ms) when authored
    client_uid: Optional[int] = None

    def with_uid(self, client_uid: Optional[int]) -> "PlaybackState":
        return replace(self, client_uid=client_uid)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaybackState":
        if not isinstance(data, dict):
            raise ProtocolError("PlaybackState must be a JSON object")
        for key in ("video_timestamp", "global_timestamp", "playing", "last_updated"):
            if key not in data:
                raise ProtocolError(f"PlaybackState missing field {key!r}")
        playing = data["playing"]
        if not isinstance(playing, bool):
            raise ProtocolError(f"'playing' must be a boolean, got {playing!r}")
        uid = data.get("client_uid")
        try:
            return cls(
                video_timestamp=float(data["video_timestamp"]),
                global_timestamp=int(data["global_timestamp"]),
                playing=playing,
                last_updated=int(data["last_updated"]),
                client_uid=None if uid is None else int(uid),
            )
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"invalid PlaybackState field: {e}") from e

    @classmethod
    def from_json(cls, raw: str) -> "PlaybackState":
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"PlaybackState is not valid JSON: {e}") from e
        return cls.from_dict(data)
