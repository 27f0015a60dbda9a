"""
Run diagnostics for the labor transitions pipeline.

Fatal conditions are raised as PipelineError subclasses and halt the run.
Everything else (period fallbacks, unavailable covariates, duplicate
person-years, failed consistency checks) is recorded here and reported once
at the end of the run instead of being interleaved with progress output.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PipelineError(ValueError):
    """Fatal pipeline condition tied to a country, period or field."""

    def __init__(
        self,
        message: str,
        country: str | None = None,
        period: str | None = None,
        field: str | None = None,
    ):
        self.country = country
        self.period = period
        self.field = field

        location = []
        if country:
            location.append(f"country={country}")
        if period:
            location.append(f"period={period}")
        if field:
            location.append(f"field={field}")
        prefix = f"[{', '.join(location)}] " if location else ""
        super().__init__(f"CRITICAL: {prefix}{message}")


class ConfigurationError(PipelineError):
    """The country table is missing or malformed."""


class SchemaResolutionError(PipelineError):
    """A required identifier or period field has no source column."""


class NoAnalyzablePanelError(PipelineError):
    """No candidate period has any eligible household head."""


class Severity(Enum):
    """Severity of a non-fatal diagnostic."""
    INFO = "info"
    WARNING = "warning"


@dataclass
class DiagnosticRecord:
    """A single non-fatal condition observed during the run."""

    code: str
    message: str
    severity: Severity = Severity.WARNING
    country: str | None = None
    period: str | None = None
    count: int | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self):
        loc = "/".join(p for p in (self.country, self.period) if p)
        loc = f" ({loc})" if loc else ""
        return f"[{self.severity.value.upper()}] {self.code}{loc}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "country": self.country,
            "period": self.period,
            "count": self.count,
            "timestamp": self.timestamp.isoformat(),
        }


class RunDiagnostics:
    """
    Collects non-fatal conditions across one pipeline run.

    Records are logged as they are added and summarized at the end via
    generate_report() or to_dict().
    """

    def __init__(self):
        self.records: list[DiagnosticRecord] = []

    def record(
        self,
        code: str,
        message: str,
        severity: Severity = Severity.WARNING,
        country: str | None = None,
        period: str | None = None,
        count: int | None = None,
    ) -> DiagnosticRecord:
        """Record a diagnostic and log it at the matching level."""
        record = DiagnosticRecord(
            code=code,
            message=message,
            severity=severity,
            country=country,
            period=period,
            count=count,
        )
        self.records.append(record)

        if severity == Severity.WARNING:
            logger.warning(str(record))
        else:
            logger.info(str(record))

        return record

    def warn(self, code: str, message: str, **kwargs: Any) -> DiagnosticRecord:
        return self.record(code, message, severity=Severity.WARNING, **kwargs)

    def info(self, code: str, message: str, **kwargs: Any) -> DiagnosticRecord:
        return self.record(code, message, severity=Severity.INFO, **kwargs)

    def by_code(self, code: str) -> list[DiagnosticRecord]:
        return [r for r in self.records if r.code == code]

    def has_warnings(self) -> bool:
        return any(r.severity == Severity.WARNING for r in self.records)

    def get_warnings(self) -> list[DiagnosticRecord]:
        return [r for r in self.records if r.severity == Severity.WARNING]

    def generate_report(self) -> str:
        """Generate a human-readable end-of-run summary."""
        lines = []
        lines.append("=" * 70)
        lines.append("RUN DIAGNOSTICS")
        lines.append("=" * 70)

        if not self.records:
            lines.append("No diagnostics recorded.")
            lines.append("=" * 70)
            return "\n".join(lines)

        warnings = self.get_warnings()
        lines.append(f"{len(warnings)} warning(s), {len(self.records) - len(warnings)} note(s)")
        lines.append("")

        countries = sorted({r.country or "-" for r in self.records})
        for country in countries:
            lines.append(f"{country}:")
            for record in self.records:
                if (record.country or "-") != country:
                    continue
                marker = "!" if record.severity == Severity.WARNING else "-"
                period = f"[{record.period}] " if record.period else ""
                lines.append(f"  {marker} {period}{record.code}: {record.message}")
            lines.append("")

        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated": datetime.now().isoformat(),
            "n_warnings": len(self.get_warnings()),
            "records": [r.to_dict() for r in self.records],
        }

    def save(self, filepath: str | Path) -> None:
        """Save diagnostics to a JSON file."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Saved run diagnostics to {filepath}")
