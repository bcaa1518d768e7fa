"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db init       # first time only (creates migrations/ scaffolding)
    flask db migrate -m "description"
    flask db upgrade
    flask seed-categories
"""

from riskledger import create_app

app = create_app()
