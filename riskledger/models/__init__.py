"""
Risk Ledger
SQLAlchemy extension instance shared by every model module.

Usage:
    from riskledger.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
