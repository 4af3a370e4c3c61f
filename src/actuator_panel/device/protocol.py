"""
Protocol Codec - ASCII line protocol spoken by the actuator firmware.

Every command and every report is a single newline-terminated ASCII line of
the form ``<TAG>:<value>`` or a bare tag. Firmware revisions differ in the
letters used for positioning, calibration and handshake; those differences
live in a ProtocolProfile so the rest of the panel is revision agnostic.

Inbound records are decoded by an ordered list of independent matchers.
A record may satisfy several matchers and then yields several events.
"""

import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from actuator_panel.core.settings import clamp_regulator_term

TARGET_MIN = 0
TARGET_MAX = 100


@dataclass(frozen=True)
class ProtocolProfile:
    """
    Tag table for one firmware revision.

    Attributes:
        name: Registry name of the profile.
        target_tag: Tag of the set-target-position command.
        set_min_command: Line sent to store the minimum position.
        set_max_command: Line sent to store the maximum position.
        min_confirm: Token reported once the minimum position is stored.
        max_confirm: Tokens reported once the maximum position is stored.
        handshake_command: Handshake request, or None if the revision has no handshake.
        handshake_ack: Token acknowledging the handshake.
        calibration_command: Optional bare calibration command.
    """
    name: str
    target_tag: str
    set_min_command: str
    set_max_command: str
    min_confirm: str
    max_confirm: tuple[str, ...]
    handshake_command: str | None = None
    handshake_ack: str | None = None
    calibration_command: str | None = None
    motor_tag: str = "Z"
    height_tag: str = "HEIGHT"
    angle_tag: str = "A"

    @property
    def requires_handshake(self) -> bool:
        return self.handshake_command is not None


LEGACY_PROFILE = ProtocolProfile(
    name="legacy",
    target_tag="A",
    set_min_command="H:0",
    set_max_command="H:1",
    min_confirm="H:0",
    max_confirm=("H:1",),
)

HANDSHAKE_PROFILE = ProtocolProfile(
    name="handshake",
    target_tag="T",
    set_min_command="B",
    set_max_command="C",
    min_confirm="C",
    max_confirm=("D", "E"),
    handshake_command="M",
    handshake_ack="N",
    calibration_command="D",
)

HANDSHAKE_DE_PROFILE = ProtocolProfile(
    name="handshake-de",
    target_tag="T",
    set_min_command="B",
    set_max_command="C",
    min_confirm="D",
    max_confirm=("E",),
    handshake_command="M",
    handshake_ack="N",
)

PROFILES: dict[str, ProtocolProfile] = {
    profile.name: profile
    for profile in (LEGACY_PROFILE, HANDSHAKE_PROFILE, HANDSHAKE_DE_PROFILE)
}

DEFAULT_PROFILE = HANDSHAKE_PROFILE


def get_profile(name: str) -> ProtocolProfile:
    """
    Look up a protocol profile by name.

    Raises:
        ValueError: If no profile has that name.
    """
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown protocol profile '{name}'. "
            f"Available profiles: {', '.join(sorted(PROFILES))}"
        ) from None


class RegulatorTermName(str, Enum):
    """Regulator terms reported by the firmware."""
    P = "P"
    S = "S"
    D = "D"
    X = "X"

    def __str__(self) -> str:
        return self.value


class ProtocolEvent:
    """Base class of everything decoded from an inbound record."""


@dataclass(frozen=True)
class HandshakeAck(ProtocolEvent):
    pass


@dataclass(frozen=True)
class HeightReading(ProtocolEvent):
    value: float


@dataclass(frozen=True)
class AngleReading(ProtocolEvent):
    value: float


@dataclass(frozen=True)
class RegulatorTerm(ProtocolEvent):
    which: RegulatorTermName
    value: float


@dataclass(frozen=True)
class MinPositionConfirmed(ProtocolEvent):
    pass


@dataclass(frozen=True)
class MaxPositionConfirmed(ProtocolEvent):
    pass


@dataclass(frozen=True)
class MotorStatus(ProtocolEvent):
    on: bool


@dataclass(frozen=True)
class Unrecognized(ProtocolEvent):
    raw: str


# Encoding

def encode_line(body: str) -> bytes:
    """
    Frame a command as one ASCII line.

    Raises:
        ValueError: If the command contains a newline or non-ASCII characters.
    """
    if "\n" in body or "\r" in body:
        raise ValueError(f"Command must be a single line: {body!r}")
    try:
        return f"{body}\n".encode("ascii")
    except UnicodeEncodeError as e:
        raise ValueError(f"Command is not ASCII: {body!r}") from e


def format_decimal(value: float) -> str:
    """Format a decimal the way the firmware parses it (no exponent, no trailing .0)."""
    text = f"{float(value):.6f}".rstrip("0").rstrip(".")
    return text or "0"


def validate_target(position: int) -> int:
    """
    Check a target position.

    Raises:
        ValueError: If the position is not an integer in 0..100.
    """
    if isinstance(position, bool):
        raise ValueError(f"Target position must be an integer, got {position!r}")
    try:
        value = int(position)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Target position must be an integer, got {position!r}") from e
    if value != position or not TARGET_MIN <= value <= TARGET_MAX:
        raise ValueError(
            f"Target position must be an integer between {TARGET_MIN} and {TARGET_MAX}, "
            f"got {position!r}"
        )
    return value


def encode_target(profile: ProtocolProfile, position: int) -> bytes:
    return encode_line(f"{profile.target_tag}:{validate_target(position)}")


def encode_motor(profile: ProtocolProfile, on: bool) -> bytes:
    return encode_line(f"{profile.motor_tag}:{1 if on else 0}")


def encode_regulator_terms(
    profile: ProtocolProfile, p: float, s: float, d: float
) -> list[bytes]:
    """
    Encode the regulator terms as three independent lines, in P, S, D order.

    Values are clamped to the range the panel accepts.
    """
    return [
        encode_line(f"{tag}:{format_decimal(clamp_regulator_term(value))}")
        for tag, value in (("P", p), ("S", s), ("D", d))
    ]


def encode_handshake(profile: ProtocolProfile) -> bytes:
    if profile.handshake_command is None:
        raise ValueError(f"Profile '{profile.name}' has no handshake")
    return encode_line(profile.handshake_command)


def encode_calibration(profile: ProtocolProfile) -> bytes:
    if profile.calibration_command is None:
        raise ValueError(f"Profile '{profile.name}' has no calibration command")
    return encode_line(profile.calibration_command)


def encode_set_min(profile: ProtocolProfile) -> bytes:
    return encode_line(profile.set_min_command)


def encode_set_max(profile: ProtocolProfile) -> bytes:
    return encode_line(profile.set_max_command)


# Decoding

def _tagged_value(line: str, tag: str) -> float | None:
    """
    Find ``<tag>:<number>`` in a record.

    The tag must not be preceded by a letter, so HEIGHT: never matches as T:.
    A value that does not parse as a finite number is a no-match.
    """
    match = re.search(rf"(?<![A-Za-z]){re.escape(tag)}:([^\s,;]+)", line)
    if not match:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def _has_token(line: str, token: str | None) -> bool:
    """Check for a standalone token (``N``, ``C``, ``H:0``) in a record."""
    if not token:
        return False
    return re.search(rf"(?<![\w.:]){re.escape(token)}(?![\w.:])", line) is not None


def _match_handshake_ack(line: str, profile: ProtocolProfile) -> ProtocolEvent | None:
    return HandshakeAck() if _has_token(line, profile.handshake_ack) else None


def _match_height(line: str, profile: ProtocolProfile) -> ProtocolEvent | None:
    value = _tagged_value(line, profile.height_tag)
    return HeightReading(value) if value is not None else None


def _match_angle(line: str, profile: ProtocolProfile) -> ProtocolEvent | None:
    value = _tagged_value(line, profile.angle_tag)
    return AngleReading(value) if value is not None else None


def _regulator_matcher(which: RegulatorTermName) -> "Matcher":
    def match(line: str, profile: ProtocolProfile) -> ProtocolEvent | None:
        value = _tagged_value(line, which.value)
        return RegulatorTerm(which, value) if value is not None else None
    return match


def _match_min_confirm(line: str, profile: ProtocolProfile) -> ProtocolEvent | None:
    return MinPositionConfirmed() if _has_token(line, profile.min_confirm) else None


def _match_max_confirm(line: str, profile: ProtocolProfile) -> ProtocolEvent | None:
    if any(_has_token(line, token) for token in profile.max_confirm):
        return MaxPositionConfirmed()
    return None


def _match_motor(line: str, profile: ProtocolProfile) -> ProtocolEvent | None:
    match = re.search(rf"(?<![A-Za-z]){re.escape(profile.motor_tag)}:([01])(?![\w.])", line)
    return MotorStatus(on=match.group(1) == "1") if match else None


Matcher = Callable[[str, ProtocolProfile], ProtocolEvent | None]

MATCHERS: list[Matcher] = [
    _match_handshake_ack,
    _match_height,
    _match_angle,
    *(_regulator_matcher(which) for which in RegulatorTermName),
    _match_min_confirm,
    _match_max_confirm,
    _match_motor,
]


def decode(line: str, profile: ProtocolProfile = DEFAULT_PROFILE) -> list[ProtocolEvent]:
    """
    Decode one trimmed record into protocol events.

    Every matcher is applied to the raw record; each contributes at most one
    event. Decoding has no state, so the same record always yields equal events.

    Args:
        line: A complete record without its newline.
        profile: Protocol revision to decode with.

    Returns:
        The events in matcher order, or a single Unrecognized event.
    """
    events = [event for matcher in MATCHERS if (event := matcher(line, profile)) is not None]
    return events or [Unrecognized(line)]
