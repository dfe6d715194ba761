"""
### Fields Operation

Projection: selecting a subset of fields from every document.

The `fields` operation supports the following syntaxes:

* Array syntax: the fields to include. All the rest will be excluded.

    ```python
    {'fields': ['name', 'age']}
    ```

* String syntax: same, separated by whitespace.

    ```python
    {'fields': 'name age'}
    ```

* Object syntax: field names mapped to `True` (include) or `False` (exclude).

    ```python
    {'fields': {'name': True, 'age': True}}
    {'fields': {'password': False}}
    ```

The identifier field of the model (e.g. `id`) can be used: it becomes `_id`, which is how MongoDB stores it.
Entities are built with the selected fields only; the rest of their attributes remain unloaded.
"""

from collections.abc import Mapping

from .base import PipelineHandlerBase
from ..exc import InvalidFilterError


class AggregateFields(PipelineHandlerBase):
    """ Fields: a $project stage """

    filter_section_name = 'fields'

    def __init__(self, model, bags):
        super(AggregateFields, self).__init__(model, bags)

        # On input
        #: The projection object, with native field names
        self.projection = None

    def input(self, fields):
        super(AggregateFields, self).input(fields)
        self.projection = self.normalize_fields(fields)
        if self.projection is not None:
            self.projection = {self.bags.native_field(name): value
                               for name, value in self.projection.items()}
        return self

    @staticmethod
    def normalize_fields(fields):
        """ Convert `fields` into a projection object: {name: True|False}

            :type fields: None | str | list | dict
            :rtype: dict | None
            :raises InvalidFilterError: invalid input
        """
        if fields is None:
            return None

        # String syntax
        if isinstance(fields, str):
            fields = fields.split()

        # Array syntax
        if isinstance(fields, (list, tuple)):
            if not all(isinstance(name, str) for name in fields):
                raise InvalidFilterError('`fields` must be a list of field names; got {!r}'.format(fields))
            return {name: True for name in fields}

        # Object syntax
        if isinstance(fields, Mapping):
            return dict(fields)

        raise InvalidFilterError('`fields` must be an object, a list, or a string; got {!r}'.format(fields))

    def is_input_empty(self):
        return not self.projection

    def alter_pipeline(self, pipeline):
        if not self.is_input_empty():
            pipeline.project(self.projection)
        return pipeline

    def get_final_input_value(self):
        return {self.bags.domain_field(name): value
                for name, value in (self.projection or {}).items()}
