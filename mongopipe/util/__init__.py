from .inspect import get_function_defaults, pluck_kwargs_from
from .rewrite_id import rewrite_id
from .settings_handler import AggregateSettingsHandler
from .settings_dict import AggregateSettingsDict, DEFAULT_AGGREGATE_OPTIONS, merge_options
