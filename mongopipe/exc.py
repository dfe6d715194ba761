class BaseMongoPipeException(Exception):
    pass


class InvalidFilterError(BaseMongoPipeException):
    """ Invalid filter provided by the User """

    def __init__(self, err: str):
        super(InvalidFilterError, self).__init__('Filter error: {err}'.format(err=err))


class InvalidStageError(InvalidFilterError):
    """ A pipeline stage is malformed """


class DisabledError(InvalidFilterError):
    """ The feature is disabled """


class InvalidRelationError(InvalidFilterError):
    """ Filter mentioned an invalid relationship name """

    def __init__(self, model: str, relation_name: str, where: str):
        self.model = model
        self.relation_name = relation_name
        self.where = where

        super(InvalidRelationError, self).__init__(
            'Invalid relation "{relation_name}" for "{model}" specified in {where}'.format(
                relation_name=relation_name,
                model=model,
                where=where)
        )


class HydrationError(BaseMongoPipeException):
    """ A document could not be built into a model instance """

    def __init__(self, model: str, document: dict, err: str, index: int = None):
        self.model = model
        self.document = document
        self.index = index

        super(HydrationError, self).__init__(
            'Cannot build "{model}" from document #{index}: {err}'.format(
                model=model,
                index='?' if index is None else index,
                err=err)
        )


class HydrationBatchError(HydrationError):
    """ Some documents of a batch could not be built

        Raised only when the build is not fail-fast: all documents are processed first.
    """

    def __init__(self, model: str, errors: list, entities: list):
        self.errors = errors
        self.entities = entities

        BaseMongoPipeException.__init__(
            self,
            '{n} document(s) could not be built into "{model}": {first}'.format(
                n=len(errors),
                model=model,
                first=errors[0] if errors else None)
        )
        self.model = model
        self.document = None
        self.index = None
