"""FSD packet parsing and message builders.

Framing is the classic FSD text protocol: one packet per line terminated by
CR LF, fields separated by colons. ``#`` and ``$`` packets carry a two
letter command followed by ``source:destination:...``; ``%`` and ``@``
packets are ATC and pilot position updates.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import re

from livetraffic.models.aircraft import AircraftRecord, FlightPlan
from livetraffic.services.enricher import is_airline_callsign

LINE_END = "\r\n"
SERVER = "SERVER"
MIN_PROTOCOL_REVISION = 9

_CALLSIGN_RE = re.compile(r"^[A-Z0-9_-]{2,15}$")
_COMMAND_RE = re.compile(r"^[#$][A-Z]{2}$")


class ErrorCode(IntEnum):
    OK = 0
    CALLSIGN_IN_USE = 1
    INVALID_CALLSIGN = 2
    ALREADY_REGISTERED = 3
    SYNTAX = 4
    INVALID_SOURCE = 5
    INVALID_CREDENTIALS = 6
    NO_SUCH_CALLSIGN = 7
    NO_FLIGHT_PLAN = 8
    NO_WEATHER = 9
    INVALID_REVISION = 10


class ProtocolError(Exception):
    """A client sent something the session cannot accept."""

    def __init__(self, code: ErrorCode, message: str, param: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.param = param


@dataclass(frozen=True)
class Packet:
    command: str
    source: str
    destination: str = ""
    fields: tuple[str, ...] = ()

    def field(self, index: int, default: str = "") -> str:
        return self.fields[index] if index < len(self.fields) else default


@dataclass(frozen=True)
class AtcLogin:
    callsign: str
    real_name: str
    cid: str
    rating: str
    protocol_revision: int


def parse_packet(line: str) -> Packet | None:
    """Parse one line into a Packet; return None for blank lines.

    Raises ProtocolError when the line does not follow FSD framing.
    """

    line = line.strip("\r\n")
    if not line.strip():
        return None

    lead = line[0]
    if lead in "#$":
        command = line[:3]
        if not _COMMAND_RE.match(command) or ":" not in line:
            raise ProtocolError(ErrorCode.SYNTAX, "Malformed packet", line[:16])
        parts = line[3:].split(":")
        return Packet(command, parts[0], parts[1], tuple(parts[2:]))
    if lead == "%":
        parts = line[1:].split(":")
        if len(parts) < 2 or not parts[0]:
            raise ProtocolError(ErrorCode.SYNTAX, "Malformed ATC position", line[:16])
        return Packet("%", parts[0], "", tuple(parts[1:]))
    if lead == "@":
        parts = line[1:].split(":")
        if len(parts) < 3:
            raise ProtocolError(ErrorCode.SYNTAX, "Malformed pilot position", line[:16])
        return Packet("@", parts[1], "", (parts[0], *parts[2:]))

    raise ProtocolError(ErrorCode.SYNTAX, "Unknown packet framing", line[:16])


def parse_atc_login(packet: Packet) -> AtcLogin:
    """Validate an ``#AA`` add-ATC packet.

    Expected layout: ``#AA<callsign>:SERVER:<name>:<cid>:<password>:<rating>:<revision>``.
    """

    callsign = packet.source.strip().upper()
    if not _CALLSIGN_RE.match(callsign):
        raise ProtocolError(ErrorCode.INVALID_CALLSIGN, "Invalid callsign", callsign)
    if len(packet.fields) < 5:
        raise ProtocolError(ErrorCode.SYNTAX, "Incomplete login", callsign)
    try:
        revision = int(packet.fields[4])
    except ValueError as exc:
        raise ProtocolError(
            ErrorCode.INVALID_REVISION, "Invalid protocol revision", packet.fields[4]
        ) from exc
    if revision < MIN_PROTOCOL_REVISION:
        raise ProtocolError(
            ErrorCode.INVALID_REVISION, "Unsupported protocol revision", str(revision)
        )
    return AtcLogin(
        callsign=callsign,
        real_name=packet.fields[0],
        cid=packet.fields[1],
        rating=packet.fields[3],
        protocol_revision=revision,
    )


def server_identification(server_name: str) -> str:
    return f"$DI{SERVER}:CLIENT:{server_name}:"


def text_message(to: str, text: str) -> str:
    return f"#TM{SERVER}:{to}:{text}"


def error_message(to: str, code: ErrorCode, message: str) -> str:
    return f"$ER{SERVER}:{to or 'unknown'}:{int(code):03d}::{message}"


def pack_heading(heading_deg: float | None) -> int:
    """Pack a heading into the pitch/bank/heading word (pitch and bank zero)."""

    heading = (heading_deg or 0.0) % 360.0
    return int(heading / 360.0 * 1024.0) << 2


def pilot_position(record: AircraftRecord, lat: float, lon: float, squawk: str | None) -> str:
    return "@N:{callsign}:{squawk}:1:{lat:.5f}:{lon:.5f}:{alt}:{speed}:{pbh}:0".format(
        callsign=record.callsign,
        squawk=squawk or "0000",
        lat=lat,
        lon=lon,
        alt=int(round(record.altitude_ft or 0)),
        speed=int(round(record.ground_speed_kt or 0)),
        pbh=pack_heading(record.heading_deg),
    )


def delete_pilot(callsign: str) -> str:
    return f"#DP{callsign}"


def _remarks(record: AircraftRecord, plan: FlightPlan | None = None) -> str:
    parts = [f"Hex {record.icao24 or record.key}"]
    if plan is not None:
        if plan.scheduled_departure:
            parts.append(f"STD {plan.scheduled_departure.strftime('%H%MZ')}")
        if plan.scheduled_arrival:
            parts.append(f"STA {plan.scheduled_arrival.strftime('%H%MZ')}")
        if plan.departure_gate:
            parts.append(f"Departure Gate {plan.departure_gate}")
        if plan.arrival_gate:
            parts.append(f"Arrival Gate {plan.arrival_gate}")
    return ", ".join(part.replace(":", " ") for part in parts)


def flight_plan(record: AircraftRecord, plan: FlightPlan) -> str:
    return (
        "$FP{callsign}::I:{equipment}:{speed}:{origin}:0:0:{altitude}:{destination}"
        ":0:0:0:0::/v/ {remarks}:{route}"
    ).format(
        callsign=record.callsign,
        equipment=plan.aircraft_type or record.aircraft_type or "",
        speed=plan.cruise_speed_kt,
        origin=plan.origin,
        altitude=plan.cruise_altitude_ft,
        destination=plan.destination,
        remarks=_remarks(record, plan),
        route=plan.route.replace(":", " "),
    )


def initial_flight_plan(record: AircraftRecord) -> str:
    """Plan built from feed metadata alone, used until an enriched plan arrives."""

    return (
        "$FP{callsign}::{rules}:{equipment}:0:{origin}:0:0:0:{destination}"
        ":0:0:0:0::/v/ {remarks}:"
    ).format(
        callsign=record.callsign,
        rules="I" if is_airline_callsign(record.callsign) else "V",
        equipment=record.aircraft_type or "",
        origin=record.origin or "",
        destination=record.destination or "",
        remarks=_remarks(record),
    )


def beacon_code(atc_callsign: str, callsign: str, code: str) -> str:
    return f"#PC{SERVER}:{atc_callsign}:CCP:BC:{callsign}:{code}"


def metar_response(to: str, raw: str) -> str:
    return f"$AR{SERVER}:{to}:METAR:{raw}"


def atc_validation(to: str, target: str | None) -> str:
    if target:
        return f"$CR{SERVER}:{to}:ATC:Y:{target}"
    return f"$CR{SERVER}:{to}:ATC:Y"


def plane_info(target: str, to: str, record: AircraftRecord) -> str:
    airline = ""
    if is_airline_callsign(record.callsign):
        airline = f":AIRLINE={record.callsign[:3]}"
    return f"#SB{target}:{to}:PI:GEN:EQUIPMENT={record.aircraft_type or ''}{airline}"


__all__ = [
    "AtcLogin",
    "ErrorCode",
    "LINE_END",
    "Packet",
    "ProtocolError",
    "atc_validation",
    "beacon_code",
    "delete_pilot",
    "error_message",
    "flight_plan",
    "initial_flight_plan",
    "metar_response",
    "pack_heading",
    "parse_atc_login",
    "parse_packet",
    "pilot_position",
    "plane_info",
    "server_identification",
    "text_message",
]
