'''SQLAlchemy binding for vhistory.

For general information about record versioning see the root vhistory
package docstring.

Implementation Notes
====================

The history of a mapped object is written from a session ``before_flush``
hook, while attribute history still holds the replaced values, and through
the session's own connection so that the history row and the update commit
or roll back together.

History tables are reflected, never created.
'''
from .store import Connections, SQLAlchemyStore
from .model import make_versioned, versioned, SQLAlchemyEntity, \
        VersionedListener, listen, save_history, restore_from_history, \
        restore_before_date, restore_previous, restore_previous_iteration, \
        get_histories
