"""
rpgf.datasets: Custom datasets attached to a round's applications.

Modules:
    csv_ingest: parse, then validate, an uploaded CSV.
    service:    CustomDatasetService (create, upload, visibility, reads).
"""
