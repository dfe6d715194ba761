"""
### Pipeline

A MongoDB aggregation pipeline is an ordered list of stages, every stage being an object with a single key:
the name of the operation, prefixed with a `$`:

```python
[
    {'$match': {'name': 'Kevin'}},
    {'$sort': {'age': -1}},
    {'$limit': 10},
]
```

`Pipeline` accumulates stages, and knows nothing about filters, models, or relations:
that's the job of the handlers.

It only guarantees two things:

* Every stage has exactly one key, which is always normalized to the `$`-prefixed form: `{'match': ...}`
  becomes `{'$match': ...}`.
* A `$geoNear` stage is always the first stage of the pipeline, because MongoDB won't accept it anywhere else.
"""

from collections.abc import Mapping

from .exc import InvalidStageError


class Pipeline:
    """ MongoDB aggregation pipeline builder """

    #: The stage that has to be the first one
    GEO_NEAR = '$geoNear'

    def __init__(self):
        #: List of stages
        self.stages = []
        #: Options for the `aggregate` command
        self.options = {}

    def __len__(self):
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    def __getitem__(self, index):
        return self.stages[index]

    def __repr__(self):
        return '{}({!r}, options={!r})'.format(self.__class__.__name__, self.stages, self.options)

    def append(self, stages):
        """ Append one stage, or a list of stages

        :param stages: A stage, or a list of them
        :type stages: dict | list[dict]
        :raises InvalidStageError: a stage does not have exactly one key
        """
        if isinstance(stages, Mapping):
            stages = [stages]
        elif not isinstance(stages, (list, tuple)):
            raise InvalidStageError('Aggregate stages must be an object, or a list of objects; {} provided'
                                    .format(type(stages).__name__))

        for stage in stages:
            op, value = self._parse_stage(stage)

            # $geoNear has to be the first stage, no matter when it was added
            if op == self.GEO_NEAR:
                self.stages.insert(0, {op: value})
            else:
                self.stages.append({op: value})
        return self

    @staticmethod
    def _parse_stage(stage):
        """ Get the (operator, value) of a stage, with the operator `$`-prefixed """
        if not isinstance(stage, Mapping):
            raise InvalidStageError('Aggregate stage must be an object; {} provided'.format(type(stage).__name__))
        if len(stage) != 1:
            raise InvalidStageError('Aggregate stage must have a single key; {} provided'.format(len(stage)))

        (op, value), = stage.items()
        if not isinstance(op, str):
            raise InvalidStageError('Aggregate stage key must be a string; {!r} provided'.format(op))
        if not op:
            raise InvalidStageError('Aggregate stage must have a key')
        if not op.startswith('$'):
            op = '$' + op
        return op, value

    # region Stages

    def project(self, project):
        """ Append a $project stage

        :param project: Projection object, or a list of field names to include
        :type project: dict | list[str]
        """
        return self.append({'$project': self.project_fields(project)})

    @staticmethod
    def project_fields(fields):
        """ Convert a list of field names into a projection object """
        if isinstance(fields, (list, tuple)):
            return {name: True for name in fields}
        return fields

    def match(self, match):
        """ Append a $match stage """
        return self.append({'$match': match})

    def near(self, near):
        """ Append a $geoNear stage. It always goes first. """
        return self.append({'$geoNear': near})

    def unwind(self, unwind):
        """ Append an $unwind stage """
        return self.append({'$unwind': unwind})

    def lookup(self, lookup):
        """ Append a $lookup stage """
        return self.append({'$lookup': lookup})

    def sort(self, sort):
        """ Append a $sort stage """
        return self.append({'$sort': sort})

    def skip(self, skip):
        """ Append a $skip stage """
        return self.append({'$skip': skip})

    def limit(self, limit):
        """ Append a $limit stage """
        return self.append({'$limit': limit})

    def add_fields(self, fields):
        """ Append an $addFields stage """
        return self.append({'$addFields': fields})

    def coalesce(self, fields, default=None):
        """ Replace the value of every field with `default` if it is null or missing.

        This makes predicates on fields of $lookup-ed documents evaluate safely.

        :param fields: Field names (dot-notation is fine)
        :type fields: Iterable[str]
        :param default: The value to use instead of a null
        """
        return self.add_fields({
            name: {'$ifNull': ['$' + name, default]}
            for name in fields
        })

    # endregion

    # region Options

    def allow_disk_use(self, value=True):
        """ Let MongoDB write temporary files, for large aggregations """
        return self.set_option('allowDiskUse', value)

    def set_options(self, options):
        """ Set options for the `aggregate` command

        See: https://docs.mongodb.com/manual/reference/command/aggregate/
        """
        for key, value in options.items():
            if key == 'allowDiskUse':
                self.allow_disk_use(value)
            else:
                self.set_option(key, value)
        return self

    def set_option(self, key, value):
        """ Set an option for the `aggregate` command """
        self.options[key] = value
        return self

    # endregion

    def exec(self, collection):
        """ Execute the pipeline on a collection

        :param collection: A pymongo collection
        :type collection: pymongo.collection.Collection
        :return: The cursor, untouched
        :rtype: pymongo.command_cursor.CommandCursor
        """
        return collection.aggregate(self.stages, **self.options)
