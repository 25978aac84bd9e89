"""ラベルセレクタの解析と照合。

Kubernetes のラベルセレクタ構文のうち、等価ベース (``k=v``, ``k==v``,
``k!=v``) と集合ベース (``k in (a,b)``, ``k notin (a,b)``, ``k``, ``!k``)
をサポートする。
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Mapping, Tuple

from .errors import SelectorError

_KEY = r"[A-Za-z0-9](?:[-A-Za-z0-9_./]*[A-Za-z0-9])?"
_VALUE = r"(?:[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?)?"

_EXISTS_RE = re.compile(rf"^(?P<neg>!?)\s*(?P<key>{_KEY})$")
_EQUALITY_RE = re.compile(rf"^(?P<key>{_KEY})\s*(?P<op>==|!=|=)\s*(?P<value>{_VALUE})$")
_SET_RE = re.compile(rf"^(?P<key>{_KEY})\s+(?P<op>in|notin)\s*\((?P<values>[^()]*)\)$")
_VALUE_RE = re.compile(rf"^{_VALUE}$")


class Operator(str, Enum):
    """セレクタ要件の演算子。"""

    EQUALS = "="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    DOES_NOT_EXIST = "!"


@dataclass(frozen=True)
class Requirement:
    """単一のセレクタ要件。"""

    key: str
    operator: Operator
    values: FrozenSet[str] = frozenset()

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator is Operator.EXISTS:
            return present
        if self.operator is Operator.DOES_NOT_EXIST:
            return not present
        if self.operator in (Operator.EQUALS, Operator.IN):
            return present and labels[self.key] in self.values
        # != と notin はキーが無いラベル集合にも一致する
        return not present or labels[self.key] not in self.values

    def __str__(self) -> str:
        if self.operator is Operator.EXISTS:
            return self.key
        if self.operator is Operator.DOES_NOT_EXIST:
            return f"!{self.key}"
        if self.operator in (Operator.EQUALS, Operator.NOT_EQUALS):
            (value,) = self.values
            return f"{self.key}{self.operator.value}{value}"
        return f"{self.key} {self.operator.value} ({','.join(sorted(self.values))})"


@dataclass(frozen=True)
class LabelSelector:
    """要件の論理積としてのラベルセレクタ。空のセレクタはすべてに一致する。"""

    requirements: Tuple[Requirement, ...] = ()

    @classmethod
    def parse(cls, raw: str | None) -> "LabelSelector":
        """セレクタ文字列を解析する。

        Raises:
            SelectorError: 構文が不正な場合
        """
        text = (raw or "").strip()
        if not text:
            return cls()
        return cls(tuple(_parse_requirement(part) for part in _split_top_level(text)))

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        """ラベル集合がすべての要件を満たすかを返す。"""
        current = labels or {}
        return all(requirement.matches(current) for requirement in self.requirements)

    def is_empty(self) -> bool:
        return not self.requirements

    def __str__(self) -> str:
        return ",".join(str(requirement) for requirement in self.requirements)


def _split_top_level(text: str) -> List[str]:
    """括弧内を除くカンマで分割する。"""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise SelectorError(f"unbalanced parenthesis in selector {text!r}")
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth != 0:
        raise SelectorError(f"unbalanced parenthesis in selector {text!r}")
    parts.append("".join(current).strip())
    return parts


def _parse_requirement(part: str) -> Requirement:
    if not part:
        raise SelectorError("empty requirement in selector")

    match = _SET_RE.match(part)
    if match:
        raw_values = match.group("values").strip()
        if not raw_values:
            raise SelectorError(f"empty value set in requirement {part!r}")
        values = [value.strip() for value in raw_values.split(",")]
        if any(not _VALUE_RE.match(value) for value in values):
            raise SelectorError(f"invalid value list in requirement {part!r}")
        operator = Operator.IN if match.group("op") == "in" else Operator.NOT_IN
        return Requirement(match.group("key"), operator, frozenset(values))

    match = _EQUALITY_RE.match(part)
    if match:
        operator = Operator.NOT_EQUALS if match.group("op") == "!=" else Operator.EQUALS
        return Requirement(match.group("key"), operator, frozenset([match.group("value")]))

    match = _EXISTS_RE.match(part)
    if match:
        operator = Operator.DOES_NOT_EXIST if match.group("neg") else Operator.EXISTS
        return Requirement(match.group("key"), operator)

    raise SelectorError(f"unable to parse requirement {part!r}")
