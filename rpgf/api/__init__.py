"""
rpgf.api: FastAPI HTTP surface.

Modules:
    endpoints: create_app(services), the application factory.
"""
