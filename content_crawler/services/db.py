# content_crawler/services/db.py
# Responsibility: PostgreSQL connections and the transaction scope used by the job repository.

import logging

import psycopg2

from content_crawler.config.settings import settings

logger = logging.getLogger(__name__)


def get_raw_connection():
    """
    Opens a new psycopg2 connection with explicit transactions.

    Returns:
        psycopg2.extensions.connection: A new database connection.
    """
    conn = psycopg2.connect(
        settings.DB.URL,
        connect_timeout=settings.DB.CONNECT_TIMEOUT,
        application_name=settings.DB.APPLICATION_NAME,
    )
    conn.autocommit = False
    return conn


class DBTransaction:
    """
    One connection, one transaction.
    The claim of a job and the write of its outcome run in separate transactions,
    so a crashed run leaves the job visibly 'processing' for stale recovery.

    Usage:
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(...)
    """

    def __init__(self):
        self.conn = None

    def __enter__(self):
        try:
            self.conn = get_raw_connection()
        except psycopg2.Error as e:
            logger.error("[DB] Connection failed: %s", e)
            raise
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conn is None:
            return False
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
                logger.warning("[DB] Rolled back: %s", exc_val)
        except psycopg2.Error as e:
            # Never masks the exception raised inside the block
            logger.error("[DB] Could not finish transaction: %s", e)
            if exc_type is None:
                raise
        finally:
            self.conn.close()
        return False
