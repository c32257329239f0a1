"""Fluent helper for running one report with a set of parameters."""

from __future__ import annotations

import typing as typ
from html import escape

from jasper_client.codec import extract_error_message, extract_total_pages
from jasper_client.errors import ResponseParseError
from jasper_client.input_controls import InputControl, missing_mandatory
from jasper_client.models import (
    ExecutionOptions,
    OutputFormat,
    ParameterMap,
    ParameterValues,
    RenderedReport,
    normalize_parameters,
)

if typ.TYPE_CHECKING:
    from jasper_client.cache import CacheRequest
    from jasper_client.client import JasperClient

_ERROR_TEMPLATE = (
    '<div class="jrPage jrMessage">\n'
    '\t<div class="errorMesg">\n'
    "\t\t<h1>Error</h1>{message}\n"
    "\t</div>\n"
    "</div>\n"
)


def render_error_page(body: str) -> str:
    """Wrap a server error document in a report-page styled message."""
    try:
        message = extract_error_message(body.encode("utf-8")) or ""
    except ResponseParseError:
        message = body.strip()
    return _ERROR_TEMPLATE.format(message=escape(message))


class ReportBuilder:
    """Collect parameters for a report and run it.

    Examples
    --------
    >>> builder = client.create_report_builder("/reports/sales")
    >>> builder.set_parameter("year", "2024").set_page_range(1, 3)
    >>> request_id = await builder.run_report()

    """

    def __init__(self, client: JasperClient, report_uri: str) -> None:
        """Bind the builder to a client and report URI."""
        self.client = client
        self.report_uri = report_uri
        self.output_format: OutputFormat = OutputFormat.HTML
        self.page: int | None = None
        self.page_range: str | None = None
        self.asset_url: str | None = None
        self.input_controls: list[InputControl] = []
        self._params: dict[str, list[str]] = {}

    @property
    def params(self) -> dict[str, list[str]]:
        """Return a copy of the collected parameters."""
        return {name: list(values) for name, values in self._params.items()}

    @property
    def has_mandatory_input(self) -> bool:
        """Return whether any loaded control is mandatory."""
        return any(control.mandatory for control in self.input_controls)

    async def load_input_controls(self) -> list[InputControl]:
        """Fetch and remember the report's input controls."""
        self.input_controls = await self.client.get_input_controls(self.report_uri)
        return self.input_controls

    def missing_mandatory_input(self) -> list[str]:
        """Return mandatory control ids not yet given a value."""
        return missing_mandatory(self.input_controls, self._params)

    def set_parameter(self, name: str, values: ParameterValues) -> ReportBuilder:
        """Set one parameter; a scalar becomes a single-value list."""
        self._params.update(normalize_parameters({name: values}))
        return self

    def set_parameters(self, params: ParameterMap) -> ReportBuilder:
        """Set several parameters at once."""
        self._params.update(normalize_parameters(params))
        return self

    def set_page_range(self, first: int, last: int) -> ReportBuilder:
        """Limit cached or asynchronous runs to pages ``first``-``last``."""
        self.page_range = f"{first}-{last}"
        return self

    def _options(self, options: ExecutionOptions | None) -> ExecutionOptions:
        base = options or ExecutionOptions()
        changes: dict[str, object] = {"parameters": self.params}
        if self.page_range and not base.pages:
            changes["pages"] = self.page_range
        return base.with_changes(**changes)

    async def send_execution_request(
        self, options: ExecutionOptions | None = None
    ) -> str:
        """Start an execution with the collected parameters; return its id."""
        handle = await self.client.start_report_execution(
            self.report_uri, self._options(options)
        )
        return handle.request_id

    async def run_report(
        self,
        options: ExecutionOptions | None = None,
        request: CacheRequest | None = None,
    ) -> str:
        """Run the report synchronously on the server and cache it."""
        return await self.client.run_report(
            self.report_uri, self._options(options), request
        )

    async def build(self) -> RenderedReport:
        """Return the report output without caching.

        HTML output is requested one page at a time; the total page count
        comes from a second, XML rendering and is ``None`` when the
        server does not report it.
        """
        params = self.params
        if self.output_format is OutputFormat.HTML:
            self.page = self.page or 1
            params["page"] = [str(self.page)]

        report = await self.client.get_report(
            self.report_uri, self.output_format, params, self.asset_url
        )
        if report.error:
            return RenderedReport(
                output=render_error_page(report.output),
                output_format=self.output_format,
                error=True,
                page=self.page,
            )

        total_pages: int | None = None
        if self.output_format is OutputFormat.HTML:
            xml_report = await self.client.get_report(
                self.report_uri, OutputFormat.XML, self.params
            )
            if not xml_report.error:
                total_pages = extract_total_pages(xml_report.output.encode("utf-8"))

        return RenderedReport(
            output=report.output,
            output_format=self.output_format,
            page=self.page,
            total_pages=total_pages,
        )


__all__ = ["ReportBuilder", "render_error_page"]
