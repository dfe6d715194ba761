"""
### Limit Operation

The Limit operation consists of two optional parts:

* `limit` would limit the number of documents returned
* `skip` would shift the "window" a number of documents. `offset` is an alias.

Together, these two elements implement pagination.

Example:

```python
Person.aggregate(db, {
    'limit': 100,  # 100 items per page
    'skip': 200,  # skip 200 items, meaning, we're on the third page
})
```

Values: can be a number, or a `None`.
"""

from .base import PipelineHandlerBase
from ..exc import InvalidFilterError


class AggregateLimit(PipelineHandlerBase):
    """ Skip & Limit

        Handles three keys:
        * 'skip': None, or int: $skip
        * 'offset': alias for 'skip'. When both are given, 'skip' wins.
        * 'limit': None, or int: $limit
    """

    filter_section_name = 'limit'

    def __init__(self, model, bags, max_items=None):
        """ Init a limit

        :param max_items: The maximum number of items that can be loaded with this query.
            The user can never go any higher than that, and this value is forced onto every query.
        """
        super(AggregateLimit, self).__init__(model, bags)

        # Config
        self.max_items = max_items
        assert self.max_items is None or self.max_items > 0

        # On input
        self.skip = None
        self.limit = None

    def input_prepare_filter(self, filter):
        """ Alter the filter

        Unlike other handlers, this one receives 3 values: 'skip', 'offset', and 'limit'.
        AggregateQuery only supports one key per handler.
        Solution: pack them as a tuple
        """
        if 'skip' in filter or 'offset' in filter or 'limit' in filter:
            skip = filter.pop('skip', None)
            offset = filter.pop('offset', None)
            filter['limit'] = (offset if skip is None else skip,
                               filter.pop('limit', None))
            if filter['limit'] == (None, None):
                filter.pop('limit')  # remove it if it's actually empty

        return filter

    def input(self, skip=None, limit=None):
        # AggregateQuery actually gives us a tuple (skip, limit)
        # Adapt.
        if isinstance(skip, tuple):
            skip, limit = skip

        # Super
        super(AggregateLimit, self).input((skip, limit))

        # Validate
        # bool is an int, but it's surely not what the user meant
        if skip is not None and (not isinstance(skip, int) or isinstance(skip, bool)):
            raise InvalidFilterError('Skip must be either an integer, or null')
        if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool)):
            raise InvalidFilterError('Limit must be either an integer, or null')

        # Clamp
        skip = None if skip is None or skip <= 0 else skip
        limit = None if limit is None or limit <= 0 else limit

        # Max limit
        if self.max_items:
            limit = min(self.max_items, limit or self.max_items)

        # Done
        self.skip = skip
        self.limit = limit
        return self

    def is_input_empty(self):
        return self.skip is None and self.limit is None

    def alter_pipeline(self, pipeline):
        """ Apply $skip and $limit to the pipeline """
        if self.skip:
            pipeline.skip(self.skip)
        if self.limit:
            pipeline.limit(self.limit)
        return pipeline

    def get_final_input_value(self):
        return {'skip': self.skip, 'limit': self.limit}
