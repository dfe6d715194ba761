"""
### Where Operation
Filtering corresponds to the `$match` stage of a MongoDB pipeline.

The `where` object uses the LoopBack filter syntax:

```python
Person.aggregate(db, {
    'where': {
        # all conditions are AND-ed together
        'age': {'between': [18, 25]},  # age 18..25
        'sex': 'female',  # sex = "female"
    }
})
```

#### Field Operators

* `{a: 1}` - equality check
* `{a: {eq: 1}}`, `{a: {neq: 1}}` - equality, inequality
* `{a: {gt: 1}}`, `{a: {gte: 1}}`, `{a: {lt: 1}}`, `{a: {lte: 1}}` - comparison
* `{a: {between: [1, 9]}}` - inclusive range
* `{a: {inq: [...]}}`, `{a: {nin: [...]}}` - any of, none of
* `{a: {like: 'ab.*'}}`, `{a: {nlike: ...}}` - regular expression match, and its negation.
    A regular expression may also be given as a string: `'/ab.*/i'`, or as a compiled `re` pattern.
    The `options` key sets the regular expression flags: `{a: {like: 'ab', options: 'i'}}`
* `{a: {ilike: ...}}`, `{a: {nilike: ...}}` - case-insensitive `like`, `nlike`
* `{a: {regexp: ...}}` - regular expression match
* `{a: {exists: True}}` - field presence
* `{a: {'$size': 3}}` - any `$`-prefixed operator is passed to MongoDB as is

#### Boolean Operators

* `{or: [{...}, ...]}`  - any is true
* `{and: [{...}, ...]}` - all are true
* `{nor: [{...}, ...]}` - none is true

#### Related fields
You can also filter the data by the fields of a related model.
This is achieved by using a dot after the relationship name:

```python
Person.aggregate(db, {
    'where': {
        # Field of the 'person' model
        'name': 'John',
        # Field of a related 'company' model
        'company.name': 'Acme',
    }
})
```

Every related model referenced this way is `$lookup`ed into the document before matching.
Nested relations work as well: `'company.city.name'`.
"""

import re
import logging
from typing import Mapping

from bson import ObjectId

from .base import PipelineHandlerBase
from .lookup import RelationExpander
from ..bag import ModelPropertyBags, NATIVE_ID_FIELD
from ..exc import InvalidFilterError

logger = logging.getLogger(__name__)


# region translate_where()

def _is_array(value):
    return isinstance(value, (list, tuple, set, frozenset))


def _is_id_field(field: str) -> bool:
    """ Is the (native) field an identifier that has to be stored as an ObjectId? """
    return field == NATIVE_ID_FIELD or field.endswith('.' + NATIVE_ID_FIELD)


def coerce_id(field: str, value):
    """ Convert a string identifier into an ObjectId, if the field is an identifier field

        Strings that are not valid ObjectIds are left alone: the collection may use other identifiers.
    """
    if not _is_id_field(field):
        return value
    if _is_array(value):
        return [coerce_id(field, v) for v in value]
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


_REGEX_FLAGS = {
    'i': re.IGNORECASE,
    'm': re.MULTILINE,
    's': re.DOTALL,
    'x': re.VERBOSE,
}

# A regular expression in the JavaScript notation: /pattern/flags
_JS_REGEX = re.compile(r'^/(.*)/([imsx]*)$', re.DOTALL)


def to_regex(value, flags: str = ''):
    """ Convert a value into a compiled regular expression

        :param value: str | re.Pattern. Strings can use the JavaScript notation: '/pattern/flags'
        :param flags: Additional flags: a string of 'imsx' letters
    """
    if isinstance(value, re.Pattern):
        pattern, re_flags = value.pattern, value.flags
    elif isinstance(value, str):
        m = _JS_REGEX.match(value)
        if m:
            pattern, js_flags = m.groups()
            flags += js_flags
        else:
            pattern = value
        re_flags = 0
    else:
        raise InvalidFilterError('Regular expression expected; got {!r}'.format(value))

    for letter in flags or '':
        try:
            re_flags |= _REGEX_FLAGS[letter]
        except KeyError:
            raise InvalidFilterError('Unsupported regular expression flag: {!r}'.format(letter))

    try:
        return re.compile(pattern, re_flags)
    except re.error as e:
        raise InvalidFilterError('Invalid regular expression {!r}: {}'.format(pattern, e))


def _between(value):
    if not _is_array(value) or len(value) != 2:
        raise InvalidFilterError('`between` expects a list of two values; got {!r}'.format(value))
    low, high = value
    return {'$gte': low, '$lte': high}


def _list_of(operator):
    def lambda_(value):
        if not _is_array(value):
            raise InvalidFilterError('`{}` expects a list; got {!r}'.format(operator, value))
        return {operator: list(value)}
    return lambda_


#: Filter operators
#: operator => lambda value, regex flags: MongoDB condition
_operators = {
    'eq':       lambda val, flags: {'$eq': val},
    'neq':      lambda val, flags: {'$ne': val},
    'gt':       lambda val, flags: {'$gt': val},
    'gte':      lambda val, flags: {'$gte': val},
    'lt':       lambda val, flags: {'$lt': val},
    'lte':      lambda val, flags: {'$lte': val},
    'inq':      lambda val, flags: _list_of('$in')(val),
    'nin':      lambda val, flags: _list_of('$nin')(val),
    'between':  lambda val, flags: _between(val),
    'like':     lambda val, flags: {'$regex': to_regex(val, flags)},
    'nlike':    lambda val, flags: {'$not': to_regex(val, flags)},
    'ilike':    lambda val, flags: {'$regex': to_regex(val, flags + 'i')},
    'nilike':   lambda val, flags: {'$not': to_regex(val, flags + 'i')},
    'regexp':   lambda val, flags: {'$regex': to_regex(val, flags)},
    'exists':   lambda val, flags: {'$exists': bool(val)},
}

#: Boolean operators: they combine a list of `where` objects
_boolean_operators = {
    'and': '$and', '$and': '$and',
    'or': '$or', '$or': '$or',
    'nor': '$nor', '$nor': '$nor',
}


def _is_operator_object(cond) -> bool:
    """ Is `cond` a set of operators? If none of its keys is an operator, it's an embedded document """
    if not isinstance(cond, Mapping):
        return False
    if not all(isinstance(k, str) for k in cond):
        raise InvalidFilterError('Condition keys must be strings; got {!r}'.format(list(cond)))
    return any(k in _operators or k == 'options' or k.startswith('$')
               for k in cond)


def _translate_condition(field: str, cond):
    """ Translate the condition on a single (native) field """
    # Equality
    if not _is_operator_object(cond):
        if isinstance(cond, re.Pattern):
            return cond  # MongoDB matches a field against a regular expression directly
        return coerce_id(field, cond)

    # Operators
    flags = cond.get('options') or ''
    if not isinstance(flags, str):
        raise InvalidFilterError('`options` must be a string of regular expression flags; got {!r}'.format(flags))

    result = {}
    for operator, value in cond.items():
        if operator == 'options':
            continue
        elif operator.startswith('$'):
            result[operator] = coerce_id(field, value)
        elif operator not in _operators:
            raise InvalidFilterError('Unknown operator {!r} for {!r}'.format(operator, field))
        else:
            result.update(_operators[operator](coerce_id(field, value), flags))
    return result


def translate_where(bags: ModelPropertyBags, where: Mapping) -> dict:
    """ Translate a LoopBack `where` object into a MongoDB query

        The model's identifier field is renamed to `_id`, and string identifiers become ObjectIds.

        :param bags: Bags of the model the `where` applies to
        :param where: The `where` object
        :return: MongoDB query for the `$match` stage
        :raises InvalidFilterError: invalid operator arguments
    """
    if not where:
        return {}
    if not isinstance(where, Mapping):
        raise InvalidFilterError('`where` must be an object; got {!r}'.format(where))

    query = {}
    for key, cond in where.items():
        # Boolean operators
        if key in _boolean_operators:
            if not _is_array(cond):
                raise InvalidFilterError('`{}` expects a list of conditions; got {!r}'.format(key, cond))
            query.setdefault(_boolean_operators[key], []).extend(
                translate_where(bags, c) for c in cond)
            continue

        # Field conditions
        if not isinstance(key, str):
            raise InvalidFilterError('`where` keys must be strings; got {!r}'.format(key))
        field = bags.native_field(key)
        query[field] = _translate_condition(field, cond)
    return query


#: The default `translate_where`, for handlers that have a setting with the same name
default_translate_where = translate_where

# endregion


class AggregateWhere(PipelineHandlerBase):
    """ Where: filter the documents with `$match`

        Conditions on the model's own fields are matched right away.
        Conditions on related fields (dot-notation: 'company.name') first have their relations
        `$lookup`ed into the document; then, they're matched at once.
    """

    filter_section_name = 'where'

    def __init__(self, model, bags, translate_where=None):
        """ Init the `where` handler

        :param translate_where: callable(bags, where) that converts a `where` into a MongoDB query
        """
        super(AggregateWhere, self).__init__(model, bags)

        # Settings
        self.translate_where = translate_where or default_translate_where

        # On input
        self.direct_where = None  #: Conditions on the model's own fields
        self.relational_where = None  #: Conditions on related fields; native paths

    def input(self, where):
        super(AggregateWhere, self).input(where)
        if where is None:
            where = {}
        if not isinstance(where, Mapping):
            raise InvalidFilterError('`where` must be an object; got {!r}'.format(where))
        if not all(isinstance(k, str) for k in where):
            raise InvalidFilterError('`where` keys must be strings; got {!r}'.format(list(where)))

        relational = set(self.which_fields_are_relational(where))
        self.direct_where = {k: v for k, v in where.items() if k not in relational}
        self.relational_where = {self.native_relational_path(k): v
                                 for k, v in where.items() if k in relational}
        return self

    def is_input_empty(self):
        return not self.direct_where and not self.relational_where

    def which_fields_are_relational(self, where: Mapping) -> list:
        """ Get the `where` keys that reference a relation: 'relation' or 'relation.field'

            Only top-level keys are considered; in their original order.
        """
        return [key for key in (where or {})
                if key.split('.', 1)[0] in self.bags.relations]

    def native_relational_path(self, key: str) -> str:
        """ Convert a dot-notation path to the way it's stored in MongoDB

            Every relation hop is kept as is: this is where $lookup puts the related documents.
            The field on the final related model gets its identifier renamed into `_id`.
        """
        segments = key.split('.')
        bags = self.bags
        for i, segment in enumerate(segments):
            if bags is None:
                break  # embedded document fields: no aliases there
            relation = bags.relations.get(segment)
            if relation is not None:
                bags = relation.bags_to
            else:
                segments[i] = bags.native_field(segment)
                bags = None
        return '.'.join(segments)

    def alter_pipeline(self, pipeline):
        # Own fields: filter early
        if self.direct_where:
            pipeline.match(self.translate_where(self.bags, self.direct_where))

        # Related fields: join, then filter
        if self.relational_where:
            RelationExpander(self.bags).expand(pipeline, self.relational_where)
            pipeline.coalesce(self.relational_where.keys())
            pipeline.match(self.translate_where(self.bags, self.relational_where))
        return pipeline
