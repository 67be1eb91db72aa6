"""Versioning (history) for sqlalchemy mapped objects.

Register a mapped class once with make_versioned (or the versioned class
decorator) and install a VersionedListener on the session(s) which save it::

    @versioned(ignored_fields=['views'])
    class Article(Base):
        __tablename__ = 'articles'
        ...

    Session = scoped_session(sessionmaker(bind=engine))
    listen(Session)

Every flush then writes the replaced values of changed articles to
``article_histories``, and articles can be restored::

    restore_previous(article)
    restore_before_date(article, date(2024, 1, 1))
"""
import logging
logger = logging.getLogger('vhistory')

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.orm import object_session
from sqlalchemy.orm.exc import UnmappedColumnError

from vhistory import history
from vhistory.history import HistoryEntity
from vhistory.policy import VersioningPolicy
from .store import SQLAlchemyStore


def versioned_objects(iter):
    for obj in iter:
        if hasattr(obj, '__history_policy__'):
            yield obj


def get_versioned_attributes(local_mapper):
    '''Map column name to mapped attribute key for the local table.'''
    attributes = {}
    for column in local_mapper.local_table.c:
        try:
            prop = local_mapper.get_property_by_column(column)
        except UnmappedColumnError:
            # e.g. columns only mapped on a single table inheritance subclass
            continue
        attributes[column.name] = prop.key
    return attributes


def make_versioned(cls, history_table=None, model_id_reference=None,
        ignored_fields=None, connection=None, history_key='id',
        created_field='created_at', updated_field='updated_at'):
    '''Resolve the VersioningPolicy of a mapped class and attach it.

    Arguments left as None fall back to ``__history_table__``,
    ``__history_model_id_reference__``, ``__history_ignored_fields__`` and
    ``__history_connection__`` on the class, then to the naming defaults.

    :return: the policy.
    '''
    local_mapper = sa.inspect(cls)
    pkcols = local_mapper.primary_key
    if len(pkcols) != 1:
        msg = 'Do not support versioning objects with multiple primary keys'
        raise ValueError(msg)
    attributes = get_versioned_attributes(local_mapper)

    def configured(value, name):
        if value is not None:
            return value
        return getattr(cls, name, None)

    policy = VersioningPolicy(local_mapper.local_table.name,
            key_name=pkcols[0].name,
            fields=list(attributes.keys()),
            history_table=configured(history_table, '__history_table__'),
            model_id_reference=configured(model_id_reference,
                '__history_model_id_reference__'),
            ignored_fields=configured(ignored_fields,
                '__history_ignored_fields__'),
            connection=configured(connection, '__history_connection__'),
            history_key=history_key,
            created_field=created_field,
            updated_field=updated_field,
            )
    cls.__history_policy__ = policy
    cls.__history_attributes__ = attributes
    logger.debug('make_versioned: %s %s', cls.__name__, policy)
    return policy


def versioned(**kwargs):
    '''Class decorator form of make_versioned.'''
    def decorator(cls):
        make_versioned(cls, **kwargs)
        return cls
    return decorator


class SQLAlchemyEntity(HistoryEntity):
    '''HistoryEntity adapter for an instance of a versioned mapped class.

    Field names are column names. Original values come from the attribute
    history kept by the session; values that were never loaded are read
    from the entity's row.
    '''

    def __init__(self, obj, session=None):
        cls = obj.__class__
        if not hasattr(cls, '__history_policy__'):
            raise ValueError('%s is not versioned, use make_versioned'
                    % cls.__name__)
        self.obj = obj
        self.session = session
        self.policy = cls.__history_policy__
        self.attributes = cls.__history_attributes__

    def get_session(self):
        return self.session or object_session(self.obj)

    def original(self):
        state = sa.inspect(self.obj)
        if state.key is None:
            # transient or pending: never persisted
            return {}
        values = {}
        unloaded = []
        for column, key in self.attributes.items():
            hist = state.attrs[key].history
            if hist.deleted:
                values[column] = hist.deleted[0]
            elif hist.unchanged:
                values[column] = hist.unchanged[0]
            else:
                unloaded.append(column)
        if unloaded:
            row = self._persisted_row(state)
            for column in unloaded:
                if column in row:
                    values[column] = row[column]
        return values

    def _persisted_row(self, state):
        table = state.mapper.local_table
        pkcol = state.mapper.primary_key[0]
        statement = sa.select(table).where(pkcol == state.identity[0])
        row = self.get_session().connection().execute(statement)\
                .mappings().first()
        if row is None:
            return {}
        return dict(row)

    def current(self, field):
        return getattr(self.obj, self.attributes.get(field, field))

    def assign(self, field, value):
        setattr(self.obj, self.attributes.get(field, field), value)

    def save(self):
        session = self.get_session()
        session.add(self.obj)
        session.commit()


class VersionedListener(object):
    '''Write history for updated versioned objects before each flush.

    New and deleted objects are never versioned. Setting
    ``session.info['history_disabled']`` skips history writing.

    :param store: SQLAlchemyStore whose named connections are used. The
        default connection is always the flushing session, so history rows
        are written in the same transaction as the update.
    '''

    def __init__(self, store=None):
        self.store = store or SQLAlchemyStore()

    def history_disabled(self, session):
        return session.info.get('history_disabled', False)

    def store_for(self, session):
        return self.store.using(session)

    def before_flush(self, session, flush_context, instances):
        if self.history_disabled(session):
            return
        store = self.store_for(session)
        for obj in versioned_objects(list(session.dirty)):
            logger.debug('before_flush: %s', obj)
            history.save_history(SQLAlchemyEntity(obj, session), store)

    def listen(self, target):
        event.listen(target, 'before_flush', self.before_flush)
        return self

    def remove(self, target):
        event.remove(target, 'before_flush', self.before_flush)


def listen(target, store=None):
    '''Install a VersionedListener on a Session, sessionmaker or
    scoped_session.
    '''
    return VersionedListener(store).listen(target)


## --------------------------------------------------------
## Conveniences working on mapped objects

# reflection cache for stores made on behalf of mapped objects
default_store = SQLAlchemyStore()


def get_store(obj, store=None):
    if store is not None:
        return store
    return default_store.using(object_session(obj))


def save_history(obj, connection=None, store=None):
    return history.save_history(SQLAlchemyEntity(obj),
            get_store(obj, store), connection)


def restore_from_history(obj, record):
    history.restore_from_history(SQLAlchemyEntity(obj), record)


def restore_before_date(obj, cutoff, connection=None, store=None):
    return history.restore_before_date(SQLAlchemyEntity(obj),
            get_store(obj, store), cutoff, connection)


def restore_previous_iteration(obj, index=0, connection=None, store=None):
    return history.restore_previous_iteration(SQLAlchemyEntity(obj),
            get_store(obj, store), index, connection)


def restore_previous(obj, connection=None, store=None):
    return restore_previous_iteration(obj, 0, connection, store)


def get_histories(obj, connection=None, store=None):
    return history.get_histories(SQLAlchemyEntity(obj),
            get_store(obj, store), connection)
