# Overview: Flask extension instances for the ledger database and its migrations.

import os

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# backend/migrations, so `flask db` works from any working directory
MIGRATIONS_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations"
)

db = SQLAlchemy()
migrate = Migrate(directory=MIGRATIONS_DIR)
