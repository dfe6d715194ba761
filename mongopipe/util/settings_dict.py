from copy import deepcopy
from typing import Callable, Optional


class AggregateSettingsDict(dict):
    """ AggregateQuery settings container.

        Is only used for nice autocompletion and documentation purposes! :)

        The keyword settings in this object are plain kwargs names
        for every handler object's __init__ method,
        which are fed to subclasses of PipelineHandlerBase by AggregateSettingsHandler.
        The rest are the defaults for the options of AggregateQuery.aggregate().

        In addition to that, there are '<handler-name>_enabled' settings,
        that can enable or disable a handler.
    """

    def __init__(self,
                 # --- aggregate() options
                 build: bool = True,
                 build_options: Optional[dict] = None,
                 mongodb_args: Optional[dict] = None,
                 # --- where
                 translate_where: Optional[Callable] = None,
                 # --- order
                 translate_sort: Optional[Callable] = None,
                 # --- limit
                 max_items: Optional[int] = None,
                 # --- enabled handlers?
                 near_enabled: bool = True,
                 where_enabled: bool = True,
                 aggregate_enabled: bool = True,
                 fields_enabled: bool = True,
                 order_enabled: bool = True,
                 limit_enabled: bool = True,
                 postAggregate_enabled: bool = True,
                 ):
        """ `AggregateQuery` has a few settings that let you configure the way pipelines are made,
        and what is done with the results.

        Example:
            ```python
            from mongopipe import AggregateQuery, AggregateSettingsDict

            aq = AggregateQuery(models.Person, AggregateSettingsDict(
                # never load more than 100 people
                max_items=100,
                # never let the user run custom stages
                aggregate_enabled=False,
                postAggregate_enabled=False,
            ))
            ```

        Args:
            build (bool): (for: aggregate())
                Build model instances right after getting the documents from MongoDB.
                When `False`, aggregate() returns the raw documents, and a function to build them later.
            build_options (dict): (for: aggregate())
                Options for the build process:
                `notify` (bool, default: True): invoke the 'loaded' observers for every document;
                `fail_fast` (bool, default: True): stop at the first document that cannot be built.
                When `False`, all documents are built, and a HydrationBatchError reports the failures.
            mongodb_args (dict): (for: aggregate())
                Options for the MongoDB `aggregate` command, e.g. `allowDiskUse`, `maxTimeMS`.
                Note that `explain=True` disables `build`: the result is not made of documents.
            translate_where (Callable | None): (for: where)
                A `callable(bags, where)` that converts a `where` object into a MongoDB query.
                Default: `mongopipe.handlers.where.translate_where`
            translate_sort (Callable | None): (for: order)
                A `callable(bags, order)` that converts an `order` into a MongoDB sort object.
                Default: `mongopipe.handlers.order.translate_sort`
            max_items (int | None): (for: limit)
                The maximum number of items that can be loaded with this query.
                The user can never go any higher than that, and this value is forced onto every query.

            near_enabled (bool): Enable/disable the `near` handler
            where_enabled (bool): Enable/disable the `where` handler
            aggregate_enabled (bool): Enable/disable the `aggregate` handler
            fields_enabled (bool): Enable/disable the `fields` handler
            order_enabled (bool): Enable/disable the `order` handler
            limit_enabled (bool): Enable/disable the `limit` handler (also: `skip`, `offset`)
            postAggregate_enabled (bool): Enable/disable the `postAggregate` handler
        """
        # Set
        super().__init__(
            build=build,
            build_options=build_options,
            mongodb_args=mongodb_args,
            translate_where=translate_where,
            translate_sort=translate_sort,
            max_items=max_items,
            near_enabled=near_enabled,
            where_enabled=where_enabled,
            aggregate_enabled=aggregate_enabled,
            fields_enabled=fields_enabled,
            order_enabled=order_enabled,
            limit_enabled=limit_enabled,
            postAggregate_enabled=postAggregate_enabled,
        )

        # Drop `None`s: they mean "use the default"
        for k in [k for k, v in self.items() if v is None]:
            self.pop(k)


#: Defaults for the options of AggregateQuery.aggregate()
DEFAULT_AGGREGATE_OPTIONS = {
    # Build model instances right after getting results from MongoDB
    'build': True,
    # Options for the build process
    'build_options': {
        # Notify 'loaded' observers
        'notify': True,
        # Stop at the first document that fails to build
        'fail_fast': True,
    },
    # MongoDB `aggregate` command options
    'mongodb_args': {},
}


def merge_options(*dicts) -> dict:
    """ Merge option dicts, left to right. Nested dicts are merged key by key.

        None of the inputs is modified.
    """
    result = {}
    for d in dicts:
        for key, value in (d or {}).items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_options(result[key], value)
            else:
                result[key] = deepcopy(value) if isinstance(value, dict) else value
    return result
