"""
rpgf.results: Aggregate ballots into per-application scores.

Modules:
    engine:  pure aggregation (sum / avg / median) and import normalization.
    service: ResultsService (recalculate, import, publish, read).
"""
