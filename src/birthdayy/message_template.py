from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

UNKNOWN_AGE_TEXT = "Unknown"


class PlaceholderKind(Enum):
    AGE = "age"
    AGE_ORDINAL = "age.ordinal"
    USER = "user"
    USER_NAME = "user.name"
    USER_TAG = "user.tag"
    LINE = "line"


# Both the dotted and the camelCase spellings are in circulation.
PLACEHOLDER_SPELLINGS = {
    "age": PlaceholderKind.AGE,
    "age.ordinal": PlaceholderKind.AGE_ORDINAL,
    "ageOrdinal": PlaceholderKind.AGE_ORDINAL,
    "user": PlaceholderKind.USER,
    "user.name": PlaceholderKind.USER_NAME,
    "userName": PlaceholderKind.USER_NAME,
    "user.tag": PlaceholderKind.USER_TAG,
    "userTag": PlaceholderKind.USER_TAG,
    "line": PlaceholderKind.LINE,
}

_BRACED = re.compile(r"\{([A-Za-z.]+)\}")


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Placeholder:
    kind: PlaceholderKind


Token = Text | Placeholder


@dataclass(frozen=True)
class MemberInfo:
    mention: str
    name: str
    tag: str


def tokenize(message: str) -> list[Token]:
    tokens: list[Token] = []
    position = 0

    for match in _BRACED.finditer(message):
        kind = PLACEHOLDER_SPELLINGS.get(match.group(1))
        if kind is None:
            continue
        if match.start() > position:
            tokens.append(Text(message[position : match.start()]))
        tokens.append(Placeholder(kind))
        position = match.end()

    if position < len(message):
        tokens.append(Text(message[position:]))
    return tokens


def ordinal(value: int) -> str:
    if 10 <= value % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(value % 10, "th")
    return f"{value}{suffix}"


def _render_placeholder(kind: PlaceholderKind, member: MemberInfo, age: int | None) -> str:
    if kind is PlaceholderKind.AGE:
        return UNKNOWN_AGE_TEXT if age is None else str(age)
    if kind is PlaceholderKind.AGE_ORDINAL:
        return UNKNOWN_AGE_TEXT if age is None else ordinal(age)
    if kind is PlaceholderKind.USER:
        return member.mention
    if kind is PlaceholderKind.USER_NAME:
        return member.name
    if kind is PlaceholderKind.USER_TAG:
        return member.tag
    return "\n"


def render_tokens(tokens: list[Token], member: MemberInfo, age: int | None) -> str:
    pieces: list[str] = []
    for token in tokens:
        if isinstance(token, Text):
            pieces.append(token.value)
        else:
            pieces.append(_render_placeholder(token.kind, member, age))
    return "".join(pieces)


def render_message(message: str, member: MemberInfo, age: int | None) -> str:
    return render_tokens(tokenize(message), member, age)
