"""
GearGuard: Model Package

Holds the shared Flask-SQLAlchemy handle. Domain modules import ``db`` from
here and are themselves imported by ``create_app`` so that the metadata is
complete before ``db.create_all()`` runs.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
