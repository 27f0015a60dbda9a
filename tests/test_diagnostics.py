"""
Tests for fatal pipeline errors and the run diagnostics collector.
"""

import json

import pytest

from studies.labor_transitions.src.diagnostics import (
    NoAnalyzablePanelError,
    PipelineError,
    RunDiagnostics,
    Severity,
)


class TestPipelineError:
    def test_message_names_location(self):
        err = PipelineError("No weight column", country="slv", period="2021-2022", field="weight")

        assert str(err) == "CRITICAL: [country=slv, period=2021-2022, field=weight] No weight column"
        assert err.country == "slv"
        assert err.field == "weight"

    def test_without_location(self):
        assert str(PipelineError("Nothing to pool")) == "CRITICAL: Nothing to pool"

    def test_subclasses_are_value_errors(self):
        with pytest.raises(ValueError):
            raise NoAnalyzablePanelError("No eligible heads", country="gtm")


class TestRunDiagnostics:
    @pytest.fixture
    def diagnostics(self):
        diagnostics = RunDiagnostics()
        diagnostics.info("design", "pooled design: 2021-2022", country="slv")
        diagnostics.warn("period_fallback", "Kept largest period", country="gtm", period="2019-2020")
        diagnostics.warn("regression_skipped", "escaped_poverty__full: no observations")
        return diagnostics

    def test_severity_and_lookup(self, diagnostics):
        assert diagnostics.has_warnings()
        assert len(diagnostics.get_warnings()) == 2
        assert diagnostics.by_code("design")[0].severity == Severity.INFO

    def test_empty_collector(self):
        diagnostics = RunDiagnostics()
        assert not diagnostics.has_warnings()
        assert "No diagnostics recorded." in diagnostics.generate_report()

    def test_report_groups_by_country(self, diagnostics):
        report = diagnostics.generate_report()

        assert "2 warning(s), 1 note(s)" in report
        assert report.index("gtm:") < report.index("slv:")
        assert "! [2019-2020] period_fallback: Kept largest period" in report
        assert "- design: pooled design" in report

    def test_save(self, diagnostics, tmp_path):
        path = tmp_path / "out" / "diagnostics.json"
        diagnostics.save(path)

        with open(path) as f:
            saved = json.load(f)
        assert saved["n_warnings"] == 2
        assert [r["code"] for r in saved["records"]] == ["design", "period_fallback", "regression_skipped"]
        assert saved["records"][1]["period"] == "2019-2020"
