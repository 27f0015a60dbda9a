"""
Household-Head Labor Market and Poverty Transitions Study.

Research Question: How are labor-market transitions of household heads
(entering or leaving work, moving up or down in occupational skill)
associated with falling into or escaping poverty and vulnerability?

Design:
- Unit: household head observed at a baseline (t0) and endline (t1) survey year
- Periods: up to two (t0, t1) windows per country, pooled when both are large enough
- Countries: five Latin American household surveys, harmonized via config/countries.yaml
- Outcome: poverty/vulnerability transitions (linear probability models)

Key files:
- src/panel_loader.py: Country schema mapping onto canonical person-years
- src/cohort_filter.py: Head eligibility and pooled/single-period decision
- src/transitions.py: Baseline/endline transition extraction
- src/country_pooler.py: Cross-country harmonization and equal weights
- src/regressions.py: Outcome x control set estimation grid
"""
