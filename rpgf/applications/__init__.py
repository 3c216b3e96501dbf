"""
rpgf.applications: Application reads and exports enriched with custom dataset values.
"""
