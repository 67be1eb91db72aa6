'''Demo of vhistory for SQLAlchemy.

Sets up a small domain model with versioned objects. The history tables are
declared here only because the demo owns its schema; in an application
they come from migrations. Code that uses these objects can be found in the
test-suite.
'''
from datetime import datetime
import logging
logger = logging.getLogger('vhistory')

from sqlalchemy import Column, DateTime, ForeignKey, Integer, MetaData, \
        String, Table, UnicodeText, create_engine
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker

from .model import listen, versioned

engine = create_engine('sqlite://')
metadata = MetaData()
Base = declarative_base(metadata=metadata)


@versioned(ignored_fields=['views'])
class Article(Base):
    __tablename__ = 'articles'

    id = Column(Integer, primary_key=True)
    title = Column(String(100))
    status = Column(String(20), default='draft')
    notes = Column('body', UnicodeText)
    views = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return '<Article %s %s>' % (self.id, self.title)


@versioned()
class Entity(Base):
    __tablename__ = 'entities'

    id = Column(Integer, primary_key=True)
    name = Column(String(100))
    status = Column(String(20))

    def __repr__(self):
        return '<Entity %s %s/%s>' % (self.id, self.name, self.status)


class Tag(Base):
    '''Not versioned.'''
    __tablename__ = 'tags'

    id = Column(Integer, primary_key=True)
    name = Column(String(100))


article_history_table = Table('article_histories', metadata,
        Column('id', Integer, primary_key=True),
        Column('article_id', Integer, ForeignKey('articles.id')),
        Column('title', String(100)),
        Column('status', String(20)),
        Column('body', UnicodeText),
        Column('created_at', DateTime),
        Column('updated_at', DateTime),
        )

entity_history_table = Table('entity_histories', metadata,
        Column('id', Integer, primary_key=True),
        Column('entity_id', Integer, ForeignKey('entities.id')),
        Column('name', String(100)),
        Column('status', String(20)),
        )


Session = scoped_session(sessionmaker(bind=engine))
listener = listen(Session)


class Repository(object):
    '''Helper bundling the demo metadata and session.'''

    def __init__(self, our_metadata, our_session, dburi=None):
        self.metadata = our_metadata
        self.session = our_session
        self.engine = engine
        if dburi:
            self.engine = create_engine(dburi)
            self.session.configure(bind=self.engine)

    def rebuild_db(self):
        logger.info('Rebuilding DB')
        self.session.remove()
        self.metadata.drop_all(bind=self.engine)
        self.metadata.create_all(bind=self.engine)

    def commit(self, remove=True):
        self.session.commit()
        if remove:
            self.session.remove()


repo = Repository(metadata, Session)
