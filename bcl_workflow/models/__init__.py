"""
BCL Scoring Workflow
Database handle shared by the SQL-backed workflow store.

Usage:
    from bcl_workflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
