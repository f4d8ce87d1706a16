from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base
import logging

Base = declarative_base()


class DatabaseConnection:
    def __init__(self, db_url: str):
        self.logger = logging.getLogger(__name__)
        self.db_url = db_url
        self.engine = self._create_engine()
        self.Session = self._create_session()

    def _create_engine(self):
        try:
            if not self.db_url:
                raise ValueError("DB_URL is empty")

            # SQLite uses a single-connection pool and rejects the sizing options
            if self.db_url.startswith("sqlite"):
                return create_engine(self.db_url, echo=False)

            return create_engine(
                self.db_url,
                pool_size=5,                # Connection pool size
                max_overflow=10,            # Max extra connections
                pool_timeout=30,            # Seconds to wait for connection
                pool_recycle=1800,          # Recycle connections after 30 mins
                echo=False                  # Set to True for SQL logging
            )
        except Exception as e:
            self.logger.error(f"Failed to create database engine: {str(e)}")
            raise

    def _create_session(self):
        """Create a scoped session factory"""
        return scoped_session(sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False
        ))

    def get_session(self):
        """Get a new database session"""
        return self.Session()

    def test_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                self.logger.info("Successfully connected to the database")
                return True
        except Exception as e:
            self.logger.error(f"Failed to connect to database: {str(e)}")
            return False

    def init_db(self):
        """Initialize database tables"""
        try:
            Base.metadata.create_all(self.engine)
            self.logger.info("Database tables created successfully")
        except Exception as e:
            self.logger.error(f"Failed to create database tables: {str(e)}")
            raise

    def close(self):
        self.Session.remove()
        self.engine.dispose()
