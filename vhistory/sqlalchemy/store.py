'''History store on top of SQLAlchemy Core.

History tables are reflected from the database; creating them is left to
whatever manages the schema (migrations, ``metadata.create_all`` in a demo).
'''
import logging
logger = logging.getLogger('vhistory')
import weakref

import sqlalchemy as sa
from sqlalchemy import MetaData, Table, and_, or_, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session

from vhistory.history import HistoryStore, get_operator, normalize_cutoff


class Connections(object):
    '''Named database connections.

    :param config: mapping of connection name to a database uri or Engine.
    :param default: name of the connection to use when none is requested
        and the store has no bind of its own.
    '''

    def __init__(self, config=None, default=None):
        self.engines = {}
        self.default = default
        for name, bind in (config or {}).items():
            self.add(name, bind)

    def add(self, name, bind):
        if isinstance(bind, str):
            bind = create_engine(bind)
        self.engines[name] = bind
        return bind

    def get(self, name):
        try:
            return self.engines[name]
        except KeyError:
            raise KeyError('No database connection named %r' % name)

    def __contains__(self, name):
        return name in self.engines


def engine_of(bind):
    '''The Engine behind a Session, scoped_session, Connection or Engine.'''
    if isinstance(bind, (Session, scoped_session)):
        return bind.get_bind()
    if isinstance(bind, Engine):
        return bind
    return bind.engine


class SQLAlchemyStore(HistoryStore):
    '''
    :param bind: Session, Connection or Engine used for the default
        connection.
    :param connections: Connections for named connections.

    Reflected history tables are cached per database engine and the cache
    is shared by every store derived with ``using``.
    '''

    def __init__(self, bind=None, connections=None, metadata=None):
        self.bind = bind
        self.connections = connections or Connections()
        if metadata is None:
            metadata = weakref.WeakKeyDictionary()
        self._metadata = metadata

    def using(self, bind):
        '''Same named connections and reflection cache, different default
        bind.
        '''
        return SQLAlchemyStore(bind, self.connections, self._metadata)

    def metadata_for(self, bind):
        engine = engine_of(bind)
        if engine not in self._metadata:
            self._metadata[engine] = MetaData()
        return self._metadata[engine]

    def connection(self, name=None):
        if name is None:
            bind = self.bind
            if bind is None and self.connections.default is not None:
                bind = self.connections.get(self.connections.default)
            if bind is None:
                raise ValueError('No default connection configured')
        else:
            bind = self.connections.get(name)
        return StoreHandle(bind, self.metadata_for(bind))


class StoreHandle(object):

    def __init__(self, bind, metadata):
        self.bind = bind
        self.metadata = metadata

    def _connection(self):
        bind = self.bind
        if isinstance(bind, (Session, scoped_session)):
            return bind.connection()
        return bind

    def run(self, statement, fetch=None):
        '''Execute statement, passing the result to fetch while the
        connection is open.

        Engines run each statement in its own transaction. Sessions and
        connections run it in their current transaction.
        '''
        if isinstance(self.bind, Engine):
            with self.bind.begin() as conn:
                result = conn.execute(statement)
                return fetch(result) if fetch else None
        result = self._connection().execute(statement)
        return fetch(result) if fetch else None

    def reflect(self, name):
        if name in self.metadata.tables:
            return self.metadata.tables[name]
        logger.debug('Reflecting history table %s', name)
        if isinstance(self.bind, Engine):
            with self.bind.connect() as conn:
                return Table(name, self.metadata, autoload_with=conn,
                        resolve_fks=False)
        return Table(name, self.metadata, autoload_with=self._connection(),
                resolve_fks=False)

    def table(self, name):
        return HistoryTable(self, self.reflect(name))


class HistoryTable(object):

    def __init__(self, handle, table):
        self.handle = handle
        self.table = table

    @property
    def name(self):
        return self.table.name

    def insert(self, row):
        statement = self.table.insert().values(row)
        return self.handle.run(statement,
                lambda result: result.inserted_primary_key)

    def query(self):
        return HistoryQuery(self.handle, self.table)


class HistoryQuery(object):

    def __init__(self, handle, table):
        self.handle = handle
        self.table = table
        self.conditions = []
        self.order = None
        self.offset = 0

    def column(self, field):
        if field not in self.table.c:
            raise ValueError('History table %s has no column %s'
                    % (self.table.name, field))
        return self.table.c[field]

    def where(self, field, op, value):
        self.conditions.append(get_operator(op)(self.column(field), value))
        return self

    def where_null(self, field):
        self.conditions.append(self.column(field).is_(None))
        return self

    def where_date(self, field, op, value):
        day = sa.func.date(self.column(field), type_=sa.Date)
        self.conditions.append(get_operator(op)(day, normalize_cutoff(value)))
        return self

    def where_any(self, *groups):
        built = [group(HistoryQuery(self.handle, self.table))
                for group in groups]
        self.conditions.append(or_(*[and_(*g.conditions) for g in built]))
        return self

    def order_by_desc(self, field):
        self.order = field
        return self

    def skip(self, offset):
        self.offset = offset
        return self

    def _filtered(self, statement):
        if self.conditions:
            statement = statement.where(and_(*self.conditions))
        return statement

    def statement(self):
        statement = self._filtered(sa.select(self.table))
        if self.order is not None:
            statement = statement.order_by(self.column(self.order).desc())
        if self.offset:
            statement = statement.offset(self.offset)
        return statement

    def first(self):
        statement = self.statement().limit(1)
        row = self.handle.run(statement,
                lambda result: result.mappings().first())
        if row is None:
            return None
        return dict(row)

    def all(self):
        return self.handle.run(self.statement(),
                lambda result: [dict(row) for row in result.mappings()])

    def count(self):
        statement = self._filtered(
                sa.select(sa.func.count()).select_from(self.table))
        return self.handle.run(statement, lambda result: result.scalar())
