"""Unit tests for ReportBuilder."""

from __future__ import annotations

import asyncio
import typing as typ
from xml.etree import ElementTree

import pytest

from jasper_client.builder import ReportBuilder, render_error_page
from jasper_client.models import OutputFormat
from tests.helpers.fake_server import REQUEST_ID, FakeJasperServer, make_client

if typ.TYPE_CHECKING:
    from pathlib import Path

_REPORT = "/jasperserver/rest_v2/reports/reports/sample"
_PAGE_COUNT = (
    b'<jasperPrint><property name="net.sf.jasperreports.export.xml.page.count"'
    b' value="4"/></jasperPrint>'
)


@pytest.fixture
def builder(server: FakeJasperServer, cache_dir: Path) -> ReportBuilder:
    """Return a builder for /reports/sample bound to the fake server."""
    return make_client(server, cache_dir).create_report_builder("/reports/sample")


class TestParameters:
    """Tests for fluent parameter collection."""

    def test_scalars_become_lists(self, builder: ReportBuilder) -> None:
        """Single values are stored as one-element lists."""
        builder.set_parameter("year", "2024").set_parameters({"region": ["N", "E"]})

        assert builder.params == {"year": ["2024"], "region": ["N", "E"]}

    def test_params_is_a_copy(self, builder: ReportBuilder) -> None:
        """Mutating the returned mapping does not change the builder."""
        builder.set_parameter("year", "2024")
        builder.params["year"].append("2025")

        assert builder.params == {"year": ["2024"]}

    def test_page_range_reaches_execution(
        self, builder: ReportBuilder, server: FakeJasperServer
    ) -> None:
        """The page range and parameters are sent with the execution."""
        builder.set_parameter("year", "2024")
        assert builder.set_page_range(2, 5) is builder
        assert builder.page_range == "2-5"

        request_id = asyncio.run(builder.send_execution_request())

        sent = ElementTree.fromstring(server.requests[0].content)
        assert request_id == REQUEST_ID
        assert sent.findtext("pages") == "2-5"
        assert sent.findtext("parameters/reportParameter/value") == "2024"


class TestInputControls:
    """Tests for input control loading."""

    def test_loads_and_checks_mandatory(
        self, builder: ReportBuilder, server: FakeJasperServer
    ) -> None:
        """Mandatory controls without values are reported as missing."""
        server.assets[f"{_REPORT}/inputControls"] = (
            b"<inputControls><inputControl><id>year</id><label>Year</label>"
            b"<mandatory>true</mandatory><type>singleValueText</type>"
            b"</inputControl></inputControls>"
        )

        asyncio.run(builder.load_input_controls())

        assert builder.has_mandatory_input is True
        assert builder.missing_mandatory_input() == ["year"]
        builder.set_parameter("year", "2024")
        assert builder.missing_mandatory_input() == []


class TestBuild:
    """Tests for uncached rendering."""

    def test_html_page_with_total(
        self, builder: ReportBuilder, server: FakeJasperServer
    ) -> None:
        """HTML is fetched for page 1 and the total comes from the XML export."""
        server.assets[f"{_REPORT}.html"] = b"<p>page</p>"
        server.assets[f"{_REPORT}.xml"] = _PAGE_COUNT

        report = asyncio.run(builder.build())

        assert report.output == "<p>page</p>"
        assert (report.page, report.total_pages) == (1, 4)
        assert server.requests[0].url.params["page"] == "1"
        assert "page" not in server.requests[1].url.params

    def test_missing_total_is_none(
        self, builder: ReportBuilder, server: FakeJasperServer
    ) -> None:
        """An XML export without the page count leaves the total unknown."""
        server.assets[f"{_REPORT}.html"] = b"<p>page</p>"
        server.assets[f"{_REPORT}.xml"] = b"<jasperPrint/>"

        assert asyncio.run(builder.build()).total_pages is None

    def test_errors_render_message_page(self, builder: ReportBuilder) -> None:
        """Server errors become a styled message page."""
        builder.output_format = OutputFormat.PDF

        report = asyncio.run(builder.build())

        assert report.error is True
        assert 'class="jrPage jrMessage"' in report.output
        assert "not found" in report.output


class TestRenderErrorPage:
    """Tests for the error page template."""

    def test_escapes_plain_text(self) -> None:
        """Non-XML bodies are escaped verbatim."""
        assert "&lt;oops" in render_error_page("<oops")
