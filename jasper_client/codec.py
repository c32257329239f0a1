"""XML request builders and response field extraction.

Request documents follow the JasperServer ``rest_v2`` schemas::

    <reportExecutionRequest>
        <reportUnitUri>/reports/sample</reportUnitUri>
        <async>false</async>
        ...
        <parameters>
            <reportParameter name="year"><value>2024</value></reportParameter>
        </parameters>
    </reportExecutionRequest>

Responses are parsed with :mod:`xml.etree.ElementTree`. Field lookups
never raise when a field is absent; they return ``None`` instead.
"""

from __future__ import annotations

import collections.abc as cabc
import enum
import typing as typ
from xml.etree import ElementTree

from jasper_client.errors import ResponseParseError, ValidationError
from jasper_client.models import (
    AttachmentRef,
    ExecutionOptions,
    OutputFormat,
    ResourceDescriptor,
    ServerInfo,
    normalize_parameters,
)

Document: typ.TypeAlias = ElementTree.Element | bytes | str

PAGE_COUNT_PROPERTY = "net.sf.jasperreports.export.xml.page.count"


class Field(enum.Enum):
    """Scalar fields read from execution and export responses.

    Each value is ``(parent_tag, tag)``; a ``None`` parent matches the tag
    anywhere in the document.
    """

    REQUEST_ID = ("reportExecution", "requestId")
    EXECUTION_STATUS = ("reportExecution", "status")
    EXPORT_ID = ("exportExecution", "id")
    EXPORT_STATUS = ("exportExecution", "status")
    ERROR_MESSAGE = ("errorDescriptor", "message")
    ERROR_DEFAULT_MESSAGE = ("error", "defaultMessage")


def _bool_text(value: bool) -> str:  # noqa: FBT001 - serializer helper
    return "true" if value else "false"


def _append(parent: ElementTree.Element, tag: str, text: str) -> None:
    ElementTree.SubElement(parent, tag).text = text


def build_execution_request(
    resource: str | None,
    options: ExecutionOptions | None = None,
) -> bytes:
    """Serialize a ``reportExecutionRequest`` document.

    Raises
    ------
    ValidationError
        If ``resource`` or the output format is empty. Nothing is built
        in that case.

    """
    opts = options or ExecutionOptions()
    if not resource or not resource.strip():
        raise ValidationError.missing_resource()
    output_format = OutputFormat.parse(opts.output_format)

    root = ElementTree.Element("reportExecutionRequest")
    _append(root, "reportUnitUri", resource)
    _append(root, "async", _bool_text(opts.run_async))
    _append(root, "freshData", _bool_text(opts.fresh_data))
    _append(root, "saveDataSnapshot", _bool_text(opts.save_data_snapshot))
    _append(root, "outputFormat", output_format.value)
    _append(root, "interactive", _bool_text(opts.interactive))
    _append(root, "ignorePagination", _bool_text(opts.ignore_pagination))
    if opts.pages:
        _append(root, "pages", opts.pages)
    if opts.transformer_key:
        _append(root, "transformerKey", opts.transformer_key)
    if opts.attachments_prefix:
        _append(root, "attachmentsPrefix", opts.attachments_prefix)

    parameters = ElementTree.SubElement(root, "parameters")
    for name, values in normalize_parameters(opts.parameters).items():
        parameter = ElementTree.SubElement(parameters, "reportParameter", name=name)
        for value in values:
            _append(parameter, "value", value)
    return ElementTree.tostring(root, encoding="utf-8", short_empty_elements=False)


def build_export_request(
    output_format: str,
    options: cabc.Mapping[str, str | bool] | None = None,
) -> bytes:
    """Serialize an ``export`` request with flat option elements."""
    fmt = OutputFormat.parse(output_format)
    root = ElementTree.Element("export")
    _append(root, "outputFormat", fmt.value)
    for name, value in (options or {}).items():
        text = _bool_text(value) if isinstance(value, bool) else str(value)
        _append(root, name, text)
    return ElementTree.tostring(root, encoding="utf-8")


def parse_document(document: Document) -> ElementTree.Element:
    """Parse response bytes into an element tree.

    Raises
    ------
    ResponseParseError
        If the body is empty or not well-formed.

    """
    if isinstance(document, ElementTree.Element):
        return document
    if not document or not document.strip():
        raise ResponseParseError.malformed("empty body")
    try:
        return ElementTree.fromstring(document)
    except ElementTree.ParseError as exc:
        raise ResponseParseError.malformed(str(exc)) from exc


def _iter_matches(root: ElementTree.Element, field: Field) -> typ.Iterator[str]:
    parent_tag, tag = field.value
    if parent_tag is None:
        for element in root.iter(tag):
            yield (element.text or "").strip()
        return
    for parent in root.iter(parent_tag):
        for element in parent.findall(tag):
            yield (element.text or "").strip()


def extract_field(document: Document, field: Field) -> str | None:
    """Return the first value of ``field`` or ``None`` when absent."""
    root = parse_document(document)
    return next(_iter_matches(root, field), None)


def extract_status(document: Document) -> str | None:
    """Return the state reported by a status document.

    Ordinary polls return the state as text (``<status>ready</status>``).
    Failed executions nest it beside the error instead::

        <status>
            <errorDescriptor><message>...</message></errorDescriptor>
            <value>failed</value>
        </status>
    """
    root = parse_document(document)
    status = next(root.iter("status"), None)
    if status is None:
        return None
    value = status.find("value")
    text = status.text if value is None else value.text
    return (text or "").strip()


def extract_error_message(document: Document) -> str | None:
    """Return the server-supplied error text from a failure response."""
    root = parse_document(document)
    for field in (Field.ERROR_MESSAGE, Field.ERROR_DEFAULT_MESSAGE):
        message = next(_iter_matches(root, field), None)
        if message:
            return message
    parameter = root.find("parameters/parameter")
    if parameter is not None and parameter.text:
        return parameter.text.strip()
    return None


def extract_attachments(details: Document) -> list[AttachmentRef]:
    """List attachments from execution details, first occurrence per name."""
    root = parse_document(details)
    seen: set[str] = set()
    attachments: list[AttachmentRef] = []
    for node in root.iter("attachment"):
        file_name = node.findtext("fileName")
        content_type = node.findtext("contentType")
        if not file_name or not content_type or file_name in seen:
            continue
        seen.add(file_name)
        attachments.append(
            AttachmentRef(file_name=file_name.strip(), content_type=content_type.strip())
        )
    return attachments


def extract_total_pages(document: Document) -> int | None:
    """Read the page count property from a JRXML export, if present."""
    root = parse_document(document)
    for prop in root.iter("property"):
        if prop.get("name") != PAGE_COUNT_PROPERTY:
            continue
        raw = prop.get("value", "").strip()
        return int(raw) if raw.isdigit() else None
    return None


def annotate_details(
    details: ElementTree.Element,
    *,
    formats: cabc.Sequence[str],
    cache_date: str,
) -> bytes:
    """Return execution details with ``exportFormats`` and ``cacheDate`` added."""
    _append(details, "exportFormats", ",".join(formats))
    _append(details, "cacheDate", cache_date)
    return ElementTree.tostring(details, encoding="utf-8", xml_declaration=True)


def parse_resource_descriptors(document: Document) -> list[ResourceDescriptor]:
    """Parse a ``resourceDescriptors`` folder listing."""
    root = parse_document(document)
    return [
        ResourceDescriptor(
            name=node.get("name", ""),
            uri=node.get("uriString", ""),
            ws_type=node.get("wsType", ""),
            label=node.findtext("label"),
            description=node.findtext("description"),
            creation_date=node.findtext("creationDate"),
        )
        for node in root.findall("resourceDescriptor")
    ]


def parse_server_info(document: Document) -> ServerInfo:
    """Parse the ``serverInfo`` document."""
    root = parse_document(document)
    return ServerInfo(
        version=root.findtext("version", "").strip(),
        edition=root.findtext("edition"),
        edition_name=root.findtext("editionName"),
        build=root.findtext("build"),
    )


__all__ = [
    "PAGE_COUNT_PROPERTY",
    "Document",
    "Field",
    "annotate_details",
    "build_execution_request",
    "build_export_request",
    "extract_attachments",
    "extract_error_message",
    "extract_field",
    "extract_status",
    "extract_total_pages",
    "parse_document",
    "parse_resource_descriptors",
    "parse_server_info",
]
