"""
rpgf.audit: Per-round audit trail of administrative and voting changes.

Entries are appended by the services through AuditLogRepository inside the
transaction of the change itself, so a rolled-back change leaves no entry.

Modules:
    service: AuditLogService, the admin-only paginated read.
"""
