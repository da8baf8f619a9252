# Overview: Flask extension instances for database, migrations and realtime events.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .events import EventEmitter

db = SQLAlchemy()
migrate = Migrate()
events = EventEmitter()
