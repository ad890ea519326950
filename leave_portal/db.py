import logging
import math
from contextlib import contextmanager

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import QueryCanceledError
from psycopg2.extras import Json, RealDictCursor

from .errors import RemoteError, RemoteTimeout
from .models import entity_for

logger = logging.getLogger(__name__)


class PostgresClient:
    """Generic table client over PostgreSQL

    All methods take a table name and plain dicts of column values. Column
    names are checked against the entity schema and rows are returned as
    entity objects.
    """

    def __init__(self, dsn, timeout=None):
        self.dsn = dsn
        self.timeout = timeout

    def with_timeout(self, seconds):
        """Same database, but every connection and statement is bounded by `seconds`"""
        return PostgresClient(self.dsn, timeout=seconds)

    def get_db_connection(self):
        """Get database connection"""
        kwargs = {}
        if self.timeout:
            kwargs['connect_timeout'] = max(1, math.ceil(self.timeout))
            kwargs['options'] = f'-c statement_timeout={int(self.timeout * 1000)}'
        conn = psycopg2.connect(self.dsn, **kwargs)
        conn.autocommit = True
        return conn

    @contextmanager
    def cursor(self):
        conn = None
        try:
            conn = self.get_db_connection()
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                yield cursor
        except QueryCanceledError as exc:
            logger.warning('Query cancelled: %s', exc)
            raise RemoteTimeout('The database did not respond in time') from exc
        except psycopg2.OperationalError as exc:
            if 'timeout' in str(exc).lower():
                raise RemoteTimeout('The database did not respond in time') from exc
            logger.error('Database unavailable: %s', exc)
            raise RemoteError('The database is unavailable') from exc
        except psycopg2.Error as exc:
            logger.error('Database error: %s', exc)
            raise RemoteError(str(exc).strip() or 'Database error') from exc
        finally:
            if conn is not None:
                conn.close()

    def select(self, table, where=None, order_by=None, descending=False, limit=None):
        where = where or {}
        columns = list(where) + ([order_by] if order_by else [])
        entity = entity_for(table, columns)

        query = sql.SQL('SELECT * FROM {}').format(sql.Identifier(table))
        clause, params = build_where(where)
        query += clause
        if order_by:
            query += sql.SQL(' ORDER BY {} {}').format(
                sql.Identifier(order_by), sql.SQL('DESC' if descending else 'ASC')
            )
        if limit is not None:
            query += sql.SQL(' LIMIT %s')
            params.append(int(limit))

        with self.cursor() as cursor:
            cursor.execute(query, params)
            return [entity.from_row(row) for row in cursor.fetchall()]

    def select_one(self, table, where):
        rows = self.select(table, where=where, limit=1)
        return rows[0] if rows else None

    def count(self, table, where=None):
        where = where or {}
        entity_for(table, where)
        query = sql.SQL('SELECT COUNT(*) AS count FROM {}').format(sql.Identifier(table))
        clause, params = build_where(where)
        with self.cursor() as cursor:
            cursor.execute(query + clause, params)
            return cursor.fetchone()['count']

    def insert(self, table, values):
        entity = entity_for(table, values)
        columns = list(values)
        query = sql.SQL('INSERT INTO {} ({}) VALUES ({}) RETURNING *').format(
            sql.Identifier(table),
            sql.SQL(', ').join(map(sql.Identifier, columns)),
            sql.SQL(', ').join(sql.Placeholder() * len(columns)),
        )
        with self.cursor() as cursor:
            cursor.execute(query, [_adapt(entity, column, values[column]) for column in columns])
            return entity.from_row(cursor.fetchone())

    def insert_many(self, table, rows):
        return [self.insert(table, values) for values in rows]

    def update(self, table, values, where):
        """Update matching rows and return them as they are after the update"""
        if not where:
            raise ValueError('update() needs a where clause')
        entity = entity_for(table, list(values) + list(where))
        assignments = sql.SQL(', ').join(
            sql.SQL('{} = %s').format(sql.Identifier(column)) for column in values
        )
        params = [_adapt(entity, column, value) for column, value in values.items()]
        clause, where_params = build_where(where)
        query = sql.SQL('UPDATE {} SET {}').format(sql.Identifier(table), assignments)
        query += clause + sql.SQL(' RETURNING *')
        with self.cursor() as cursor:
            cursor.execute(query, params + where_params)
            return [entity.from_row(row) for row in cursor.fetchall()]

    def delete(self, table, where):
        """Delete matching rows and return them"""
        if not where:
            raise ValueError('delete() needs a where clause')
        entity = entity_for(table, where)
        clause, params = build_where(where)
        query = sql.SQL('DELETE FROM {}').format(sql.Identifier(table)) + clause + sql.SQL(' RETURNING *')
        with self.cursor() as cursor:
            cursor.execute(query, params)
            return [entity.from_row(row) for row in cursor.fetchall()]

    def upsert(self, table, values, conflict_column):
        """Insert a row, or update the existing row that has the same `conflict_column`"""
        entity = entity_for(table, list(values) + [conflict_column])
        columns = list(values)
        updates = [column for column in columns if column != conflict_column]
        query = sql.SQL('INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) DO UPDATE SET {} RETURNING *').format(
            sql.Identifier(table),
            sql.SQL(', ').join(map(sql.Identifier, columns)),
            sql.SQL(', ').join(sql.Placeholder() * len(columns)),
            sql.Identifier(conflict_column),
            sql.SQL(', ').join(
                sql.SQL('{0} = EXCLUDED.{0}').format(sql.Identifier(column)) for column in updates
            ),
        )
        with self.cursor() as cursor:
            cursor.execute(query, [_adapt(entity, column, values[column]) for column in columns])
            return entity.from_row(cursor.fetchone())

    def listen(self, channel):
        """Open a dedicated connection that LISTENs on `channel`; the caller closes it"""
        conn = self.get_db_connection()
        with conn.cursor() as cursor:
            cursor.execute(sql.SQL('LISTEN {}').format(sql.Identifier(channel)))
        return conn


def build_where(where):
    """WHERE clause for equality filters; a None value matches NULL"""
    if not where:
        return sql.SQL(''), []
    parts, params = [], []
    for column, value in where.items():
        if value is None:
            parts.append(sql.SQL('{} IS NULL').format(sql.Identifier(column)))
        else:
            parts.append(sql.SQL('{} = %s').format(sql.Identifier(column)))
            params.append(value)
    return sql.SQL(' WHERE ') + sql.SQL(' AND ').join(parts), params


def _adapt(entity, column, value):
    if column in entity.json_columns and value is not None:
        return Json(value)
    return value
