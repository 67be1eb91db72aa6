'''Versioning policy: naming defaults and per entity type configuration.

A VersioningPolicy is resolved once, when an entity type is registered, and
then handed to every history operation. Defaults follow the usual table
naming conventions::

    articles          -> article_histories   (history table)
    articles + id     -> article_id          (history foreign key)
'''

IRREGULAR = {
    'people': 'person',
    'men': 'man',
    'women': 'woman',
    'children': 'child',
    'teeth': 'tooth',
    'feet': 'foot',
    'geese': 'goose',
    'mice': 'mouse',
    'oxen': 'ox',
    'leaves': 'leaf',
    'lives': 'life',
    'knives': 'knife',
    'wives': 'wife',
    'halves': 'half',
    'shelves': 'shelf',
    'wolves': 'wolf',
    'criteria': 'criterion',
    'phenomena': 'phenomenon',
    'indices': 'index',
    'matrices': 'matrix',
    'vertices': 'vertex',
    'quizzes': 'quiz',
    'movies': 'movie',
    'cookies': 'cookie',
    'zombies': 'zombie',
    'shoes': 'shoe',
    'menus': 'menu',
    'statuses': 'status',
    'buses': 'bus',
    'viruses': 'virus',
    'campuses': 'campus',
    'analyses': 'analysis',
    'crises': 'crisis',
    'theses': 'thesis',
    'aliases': 'alias',
    'biases': 'bias',
    'canvases': 'canvas',
    'atlases': 'atlas',
}

UNCOUNTABLE = set([
    'audio', 'data', 'equipment', 'feedback', 'information', 'metadata',
    'money', 'news', 'series', 'species', 'sheep', 'fish', 'deer',
    'software', 'staff', 'traffic', 'history',
])

# (suffix, replacement), first match wins
RULES = [
    ('ies', 'y'),
    ('sses', 'ss'),
    ('shes', 'sh'),
    ('ches', 'ch'),
    ('xes', 'x'),
]

# words ending in s that are already singular
KEEP_SUFFIXES = ('ss', 'us', 'is')


def _singular_word(word):
    lower = word.lower()
    if not lower or lower in UNCOUNTABLE:
        return word
    if lower in IRREGULAR:
        return _match_case(word, IRREGULAR[lower])
    if lower.endswith(KEEP_SUFFIXES):
        return word
    for suffix, replacement in RULES:
        if lower.endswith(suffix) and len(lower) > len(suffix):
            return word[:-len(suffix)] + _match_case(word[-len(suffix):], replacement)
    if lower.endswith('s') and len(lower) > 1:
        return word[:-1]
    return word


def _match_case(source, target):
    if source.isupper():
        return target.upper()
    return target


def singular(word):
    '''Singularise a (snake case) table name.

    Only the last ``_`` separated segment is inflected so that
    ``blog_posts`` becomes ``blog_post``.
    '''
    head, sep, tail = word.rpartition('_')
    return head + sep + _singular_word(tail)


def get_history_table_name(table_name, override=None):
    if override:
        return override
    return singular(table_name) + '_histories'


def get_history_model_id_reference(table_name, key_name, override=None):
    if override:
        return override
    return singular(table_name) + '_' + key_name


def get_ignored_fields(override=None):
    if not override:
        return frozenset()
    if isinstance(override, str):
        return frozenset([override])
    return frozenset(override)


class VersioningPolicy(object):
    '''How one entity type is versioned.

    :param table_name: table (collection) name of the entity type.
    :param key_name: name of the identifier field.
    :param fields: the declared fields of the entity type, including the
        identifier. Change detection and history capture only ever look at
        these.
    :param history_table: override for the history table name.
    :param model_id_reference: override for the history foreign key name.
    :param ignored_fields: fields that never trigger nor appear in history.
    :param connection: name of the connection the entity type lives on.
        None means "use whatever the caller passes, else the default".
    :param history_key: row id column of the history table, which also
        orders history records.
    '''

    def __init__(self, table_name, key_name='id', fields=(),
            history_table=None, model_id_reference=None,
            ignored_fields=None, connection=None, history_key='id',
            created_field='created_at', updated_field='updated_at'):
        if not table_name:
            raise ValueError('A versioned entity needs a table name')
        if not key_name:
            raise ValueError('A versioned entity needs an identifier field')
        self.table_name = table_name
        self.key_name = key_name
        self.fields = tuple(fields)
        self.history_table = get_history_table_name(table_name, history_table)
        self.model_id_reference = get_history_model_id_reference(
                table_name, key_name, model_id_reference)
        self.ignored_fields = get_ignored_fields(ignored_fields)
        self.connection = connection
        self.history_key = history_key
        self.created_field = created_field
        self.updated_field = updated_field

    @property
    def tracked_fields(self):
        return [f for f in self.fields if f not in self.ignored_fields]

    def is_tracked(self, field):
        return field not in self.ignored_fields

    def __repr__(self):
        return '<VersioningPolicy %s -> %s (%s)>' % (self.table_name,
                self.history_table, self.model_id_reference)
