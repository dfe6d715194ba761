"""
### Order Operation

Sorting corresponds to the `$sort` stage of a MongoDB pipeline.

#### Syntax

* String syntax: a field name, optionally followed by the direction: `ASC` (default), or `DESC`.
    Several fields are separated with commas.

    ```python
    {'order': 'age DESC'}
    {'order': 'age DESC, name'}
    ```

* Array syntax: a list of such strings

    ```python
    {'order': ['age DESC', 'name ASC']}
    ```

* Object syntax: field names mapped to `1` (ascending) or `-1` (descending).
    Python dicts do keep the order of their keys.

    ```python
    {'order': {'age': -1, 'name': 1}}
    ```
"""

from collections.abc import Mapping

from .base import PipelineHandlerBase
from ..bag import ModelPropertyBags
from ..exc import InvalidFilterError


#: Sort directions, as they're written in the `order` string
_directions = {
    'ASC': 1,
    'DESC': -1,
}


def _parse_sort_item(item: str):
    """ Parse 'name [ASC|DESC]' into (name, direction) """
    parts = item.split()
    if len(parts) == 1:
        return parts[0], 1
    if len(parts) == 2 and parts[1].upper() in _directions:
        return parts[0], _directions[parts[1].upper()]
    raise InvalidFilterError('Invalid `order` item: {!r}'.format(item))


def translate_sort(bags: ModelPropertyBags, order) -> dict:
    """ Translate a LoopBack `order` into a MongoDB sort object

        :param bags: Bags of the model
        :param order: The `order`: str, list of str, or a dict
        :return: {native field name: 1 | -1}, ordered
        :raises InvalidFilterError: invalid input
    """
    # Object syntax
    if isinstance(order, Mapping):
        items = list(order.items())
        for name, direction in items:
            if direction not in (1, -1):
                raise InvalidFilterError('Invalid sort direction for {!r}: {!r}'.format(name, direction))
    # String syntax
    elif isinstance(order, str):
        items = [_parse_sort_item(item) for item in order.split(',') if item.strip()]
    # Array syntax
    elif isinstance(order, (list, tuple)):
        if not all(isinstance(item, str) for item in order):
            raise InvalidFilterError('`order` must be a list of strings; got {!r}'.format(order))
        items = [_parse_sort_item(item) for item in order]
    else:
        raise InvalidFilterError('`order` must be a string, a list, or an object; got {!r}'.format(order))

    return {bags.native_field(name): direction
            for name, direction in items}


#: The default `translate_sort`, for handlers that have a setting with the same name
default_translate_sort = translate_sort


class AggregateOrder(PipelineHandlerBase):
    """ Order: a $sort stage """

    filter_section_name = 'order'

    def __init__(self, model, bags, translate_sort=None):
        """ Init the `order` handler

        :param translate_sort: callable(bags, order) that converts an `order` into a MongoDB sort object
        """
        super(AggregateOrder, self).__init__(model, bags)

        # Settings
        self.translate_sort = translate_sort or default_translate_sort

        # On input
        self.sort = None

    def input(self, order):
        super(AggregateOrder, self).input(order)
        self.sort = self.translate_sort(self.bags, order) if order else None
        return self

    def is_input_empty(self):
        return not self.sort

    def alter_pipeline(self, pipeline):
        if not self.is_input_empty():
            pipeline.sort(self.sort)
        return pipeline
