"""
### Hooks

Observers are functions that get notified when something happens to the entities of a model.
Currently, there is one operation: 'loaded', which fires for every document fetched by aggregate(),
right before it becomes an entity.

```python
@Person.observe('loaded')
def on_loaded(ctx):
    ctx.data['full_name'] = ctx.data['first_name'] + ' ' + ctx.data['last_name']
```

An observer may modify `ctx.data`, replace it, or set it to `None`: then no entity is made for the document.
It may also return a new context object, which replaces the current one.
"""

from collections import defaultdict
from typing import Callable


class HookContext:
    """ The object observers receive """

    __slots__ = ('model', 'data', 'is_new_instance', 'hook_state', 'options')

    def __init__(self, model, data, is_new_instance=False, hook_state=None, options=None):
        """ Init a context

        :param model: The model class
        :param data: The document
        :param is_new_instance: Always `False` for entities loaded from the database
        :param hook_state: A dict shared by all observers within one batch
        :param options: Build options
        """
        self.model = model
        self.data = data
        self.is_new_instance = is_new_instance
        self.hook_state = {} if hook_state is None else hook_state
        self.options = {} if options is None else options

    def __repr__(self):
        return '{}({}, {!r})'.format(self.__class__.__name__, self.model.__name__, self.data)


class ModelObservers:
    """ Observers registered for a model """

    __observers_per_model_cache = {}

    @classmethod
    def for_model(cls, model) -> 'ModelObservers':
        """ Get observers for a model; initialize them only once """
        try:
            return cls.__observers_per_model_cache[model]
        except KeyError:
            cls.__observers_per_model_cache[model] = observers = cls(model)
            return observers

    def __init__(self, model):
        self.model = model
        self._observers = defaultdict(list)

    def observe(self, operation: str, fn: Callable) -> Callable:
        """ Register an observer for an operation. Returns the function itself. """
        self._observers[operation].append(fn)
        return fn

    def remove_observers(self, operation: str = None):
        """ Remove observers for an operation, or all of them """
        if operation is None:
            self._observers.clear()
        else:
            self._observers.pop(operation, None)

    def has_observers(self, operation: str) -> bool:
        return bool(self._observers.get(operation))

    def notify(self, operation: str, context: HookContext) -> HookContext:
        """ Invoke every observer of the operation, in the order they were registered

            :return: The context; possibly, replaced by an observer
        """
        for fn in list(self._observers.get(operation, ())):
            result = fn(context)
            if result is not None:
                context = result
        return context
