from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header

DEFAULT_OPERATOR = "System"


@dataclass(frozen=True)
class Operator:
    """The acting operator, as supplied by the identity provider.

    The name is opaque to the WMS: it is only copied into scan sessions and
    movement records. Workflow calls take it explicitly.
    """

    name: str = DEFAULT_OPERATOR


def get_operator(x_operator: str | None = Header(default=None)) -> Operator:
    name = (x_operator or "").strip()
    return Operator(name=name or DEFAULT_OPERATOR)
