"""
Change feed built on PostgreSQL LISTEN/NOTIFY.

Triggers created by `init_postgres.init_db` publish one JSON payload per
inserted or updated row. Listeners only learn *that* something changed;
they are expected to re-fetch the full list.
"""
import json
import logging
import select

logger = logging.getLogger(__name__)


class ChangeEvent:
    def __init__(self, table, op, row_id=None):
        self.table = table
        self.op = op
        self.row_id = row_id

    @classmethod
    def from_payload(cls, payload):
        data = json.loads(payload)
        return cls(data.get('table'), data.get('op'), data.get('id'))

    def to_dict(self):
        return {'table': self.table, 'op': self.op, 'id': self.row_id}

    def to_sse(self):
        return f'event: change\ndata: {json.dumps(self.to_dict())}\n\n'

    def __repr__(self):
        return f'<ChangeEvent {self.op} {self.table} {self.row_id}>'


def wait_readable(conn, timeout):
    readable, _, _ = select.select([conn], [], [], timeout)
    return bool(readable)


def iter_changes(conn, poll_interval=15.0, tables=None, wait=wait_readable):
    """Yield ChangeEvents from a LISTENing connection, and None after each idle interval

    The None values let a caller send keep-alives; the generator never ends
    on its own.
    """
    while True:
        if not wait(conn, poll_interval):
            yield None
            continue
        conn.poll()
        while conn.notifies:
            notification = conn.notifies.pop(0)
            try:
                event = ChangeEvent.from_payload(notification.payload)
            except ValueError:
                logger.warning('Ignoring malformed change payload: %r', notification.payload)
                continue
            if tables and event.table not in tables:
                continue
            yield event


def sse_stream(conn, poll_interval=15.0, tables=None, wait=wait_readable):
    """Server-sent event lines for a streaming response; closes `conn` when the client goes away"""
    try:
        yield 'retry: 5000\n\n'
        for event in iter_changes(conn, poll_interval, tables, wait):
            yield ': keep-alive\n\n' if event is None else event.to_sse()
    finally:
        conn.close()
