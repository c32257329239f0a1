"""Report input controls and their default selections.

Controls are built from the ``inputControls`` document through a factory
map keyed by the server's control type. Types without a registered
constructor become :class:`UnknownInputControl`, which keeps the raw
type string.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import typing as typ
from xml.etree import ElementTree

from jasper_client.codec import Document, parse_document
from jasper_client.models import ParameterMap, normalize_parameters


class InputControlKind(enum.StrEnum):
    """Control types understood by the client."""

    BOOL = "bool"
    TEXT = "singleValueText"
    NUMBER = "singleValueNumber"
    DATE = "singleValueDate"
    DATETIME = "singleValueDatetime"
    SINGLE_SELECT = "singleSelect"
    SINGLE_SELECT_RADIO = "singleSelectRadio"
    MULTI_SELECT = "multiSelect"
    MULTI_SELECT_CHECKBOX = "multiSelectCheckbox"
    UNKNOWN = "unknown"


_MULTI_KINDS = frozenset(
    {InputControlKind.MULTI_SELECT, InputControlKind.MULTI_SELECT_CHECKBOX}
)


@dc.dataclass(frozen=True, slots=True)
class InputOption:
    """One selectable option of a select control."""

    label: str
    value: str
    selected: bool = False


@dc.dataclass(frozen=True, slots=True)
class InputControl:
    """Fields shared by every control type."""

    id: str
    label: str
    kind: InputControlKind
    raw_type: str
    uri: str = ""
    mandatory: bool = False
    read_only: bool = False
    visible: bool = True

    def default_values(self) -> list[str]:
        """Return the server's default selection for this control."""
        return []


@dc.dataclass(frozen=True, slots=True)
class ValueInputControl(InputControl):
    """Single-value control (text, number, date, boolean)."""

    value: str | None = None

    def default_values(self) -> list[str]:
        """Return the current value, if any."""
        return [self.value] if self.value else []


@dc.dataclass(frozen=True, slots=True)
class SelectInputControl(InputControl):
    """Single or multi-select control with options."""

    options: tuple[InputOption, ...] = ()

    @property
    def multiple(self) -> bool:
        """Return whether several options may be selected."""
        return self.kind in _MULTI_KINDS

    def default_values(self) -> list[str]:
        """Return the values of the selected options."""
        return [option.value for option in self.options if option.selected]


@dc.dataclass(frozen=True, slots=True)
class UnknownInputControl(InputControl):
    """Control of a type the client has no constructor for."""

    value: str | None = None

    def default_values(self) -> list[str]:
        """Return the raw state value, if any."""
        return [self.value] if self.value else []


ControlConstructor: typ.TypeAlias = cabc.Callable[[ElementTree.Element], InputControl]


def _is_true(raw: str | None) -> bool:
    return (raw or "").strip().lower() == "true"


def _common(node: ElementTree.Element, kind: InputControlKind) -> dict[str, typ.Any]:
    return {
        "id": node.findtext("id", "").strip(),
        "label": node.findtext("label", "").strip(),
        "kind": kind,
        "raw_type": node.findtext("type", "").strip(),
        "uri": node.findtext("uri", "").strip(),
        "mandatory": _is_true(node.findtext("mandatory")),
        "read_only": _is_true(node.findtext("readOnly")),
        "visible": _is_true(node.findtext("visible") or "true"),
    }


def _value_control(kind: InputControlKind) -> ControlConstructor:
    def build(node: ElementTree.Element) -> InputControl:
        return ValueInputControl(
            **_common(node, kind), value=node.findtext("state/value")
        )

    return build


def _select_control(kind: InputControlKind) -> ControlConstructor:
    def build(node: ElementTree.Element) -> InputControl:
        options = tuple(
            InputOption(
                label=option.findtext("label", ""),
                value=option.findtext("value", ""),
                selected=_is_true(option.findtext("selected")),
            )
            for option in node.findall("state/options/option")
        )
        return SelectInputControl(**_common(node, kind), options=options)

    return build


def _unknown_control(node: ElementTree.Element) -> InputControl:
    return UnknownInputControl(
        **_common(node, InputControlKind.UNKNOWN),
        value=node.findtext("state/value"),
    )


class InputControlFactory:
    """Build controls from ``inputControl`` elements by type string."""

    def __init__(self) -> None:
        """Register constructors for every known control type."""
        self._constructors: dict[str, ControlConstructor] = {}
        for kind in (
            InputControlKind.BOOL,
            InputControlKind.TEXT,
            InputControlKind.NUMBER,
            InputControlKind.DATE,
            InputControlKind.DATETIME,
        ):
            self.register(kind, _value_control(kind))
        for kind in (
            InputControlKind.SINGLE_SELECT,
            InputControlKind.SINGLE_SELECT_RADIO,
            InputControlKind.MULTI_SELECT,
            InputControlKind.MULTI_SELECT_CHECKBOX,
        ):
            self.register(kind, _select_control(kind))

    def register(self, type_name: str, constructor: ControlConstructor) -> None:
        """Register or replace the constructor for ``type_name``."""
        self._constructors[type_name] = constructor

    def build(self, node: ElementTree.Element) -> InputControl:
        """Build one control, falling back to :class:`UnknownInputControl`."""
        type_name = node.findtext("type", "").strip()
        return self._constructors.get(type_name, _unknown_control)(node)

    def build_all(self, document: Document) -> list[InputControl]:
        """Build every control listed in an ``inputControls`` document."""
        root = parse_document(document)
        return [self.build(node) for node in root.iter("inputControl")]


def default_parameters(
    controls: cabc.Iterable[InputControl],
) -> dict[str, list[str]]:
    """Return the default selection of every control that has one."""
    defaults: dict[str, list[str]] = {}
    for control in controls:
        values = control.default_values()
        if values:
            defaults[control.id] = values
    return defaults


def missing_mandatory(
    controls: cabc.Iterable[InputControl],
    params: ParameterMap | None,
) -> list[str]:
    """Return ids of mandatory controls without a value in ``params``."""
    provided = normalize_parameters(params)
    return [
        control.id
        for control in controls
        if control.mandatory and not any(provided.get(control.id, []))
    ]


__all__ = [
    "InputControl",
    "InputControlFactory",
    "InputControlKind",
    "InputOption",
    "SelectInputControl",
    "UnknownInputControl",
    "ValueInputControl",
    "default_parameters",
    "missing_mandatory",
]
