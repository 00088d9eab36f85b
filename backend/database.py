import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mechanic_marketplace.db")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_quote_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('selected_quote_id', 'ALTER TABLE appointments ADD COLUMN selected_quote_id INTEGER'),
            ('mechanic_eta_minutes', 'ALTER TABLE appointments ADD COLUMN mechanic_eta_minutes INTEGER'),
            ('started_at', 'ALTER TABLE appointments ADD COLUMN started_at TIMESTAMP'),
            ('completed_at', 'ALTER TABLE appointments ADD COLUMN completed_at TIMESTAMP'),
            ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
            ('cancelled_by', 'ALTER TABLE appointments ADD COLUMN cancelled_by VARCHAR'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ('cancellation_fee', 'ALTER TABLE appointments ADD COLUMN cancellation_fee NUMERIC(10, 2)'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_date ON appointments(status, appointment_date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_selected_mechanic ON appointments(selected_mechanic_id)')
            )

        _appointment_schema_checked = True


def ensure_quote_schema() -> None:
    global _quote_schema_checked

    if _quote_schema_checked:
        return

    with _schema_lock:
        if _quote_schema_checked:
            return

        inspector = inspect(engine)

        if 'mechanic_quotes' not in inspector.get_table_names():
            _quote_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_mechanic_quotes_pair '
                    'ON mechanic_quotes(appointment_id, mechanic_id)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_mechanic_quotes_mechanic ON mechanic_quotes(mechanic_id)')
            )
            if 'mechanic_skipped_appointments' in inspector.get_table_names():
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_mechanic_skips_pair '
                        'ON mechanic_skipped_appointments(mechanic_id, appointment_id)'
                    )
                )

        _quote_schema_checked = True
