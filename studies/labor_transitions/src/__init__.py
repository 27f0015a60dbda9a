"""
Labor transitions study source modules.
"""

from studies.labor_transitions.src.cohort_filter import (
    CohortFilter,
    CohortSelection,
    Period,
)
from studies.labor_transitions.src.country_pooler import (
    CountryPooler,
    outcome_sample_sizes,
)
from studies.labor_transitions.src.country_schema import (
    ColumnRule,
    CountrySpec,
    load_country_specs,
)
from studies.labor_transitions.src.diagnostics import (
    NoAnalyzablePanelError,
    PipelineError,
    RunDiagnostics,
    SchemaResolutionError,
)
from studies.labor_transitions.src.pipeline import TransitionPipeline
from studies.labor_transitions.src.regressions import (
    OUTCOMES,
    TransitionRegressions,
)
from studies.labor_transitions.src.transitions import TransitionExtractor

__all__ = [
    "CohortFilter",
    "CohortSelection",
    "Period",
    "CountryPooler",
    "outcome_sample_sizes",
    "ColumnRule",
    "CountrySpec",
    "load_country_specs",
    "NoAnalyzablePanelError",
    "PipelineError",
    "RunDiagnostics",
    "SchemaResolutionError",
    "TransitionPipeline",
    "OUTCOMES",
    "TransitionRegressions",
    "TransitionExtractor",
]
