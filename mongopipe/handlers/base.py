from ..bag import ModelPropertyBags


class PipelineHandlerBase:
    """ An implementation of a handler for AggregateQuery

        Every subclass will handle a single section of the filter object,
        and contribute stages to the pipeline.
    """

    #: Name of the filter section that this object is capable of handling
    filter_section_name = None

    def __init__(self, model, bags: ModelPropertyBags):
        """ Initialize the filter section handler with a model.

        This method does *not* receive any input data just yet, with the purpose of having an
        object that can be extended with some interesting defaults right at init time.

        :param model: The sqlalchemy model it's being applied to
        :type model: sqlalchemy.orm.DeclarativeMeta
        :param bags: Model bags.
        :type bags: ModelPropertyBags

        NOTE: Any arguments that have default values will be treated as handler settings!!
        """
        #: The model to handle the filter for
        self.model = model
        #: Model property bags: because we need access to the lists of its properties
        self.bags = bags

        # Has the input() method been called already?
        self.input_received = False
        self.input_value = None

        #: AggregateQuery bound to this object. It may remain uninitialized.
        self.aggregate_query = None

    def with_aggregate_query(self, aggregate_query):
        """ Bind this object with an AggregateQuery

            :type aggregate_query: mongopipe.query.AggregateQuery
        """
        self.aggregate_query = aggregate_query
        return self

    def __copy__(self):
        """ Handlers are reused: their state before input() is called is copied for every compilation """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)
        return result

    def input_prepare_filter(self, filter):
        """ Modify the filter object before it is processed.

        Sometimes a handler would need to alter it: e.g. to pack several keys into one.
        Note that the `filter` given here is a copy: it's safe to modify it.

        :param filter: dict
        """
        return filter

    def input(self, value):
        """ Get a section of the filter object.

        The purpose of this method is to receive the input, validate it, and store it.

        :param value: the value of the filter field it's handling

        :rtype: PipelineHandlerBase
        :raises InvalidFilterError
        """
        self.input_value = value  # no copying. Try not to modify it.
        self.input_received = True
        return self

    def is_input_empty(self):
        """ Test whether the input value was empty """
        return self.input_value is None

    def alter_pipeline(self, pipeline):
        """ Contribute stages to the pipeline

        :type pipeline: mongopipe.pipeline.Pipeline
        :rtype: mongopipe.pipeline.Pipeline
        """
        raise NotImplementedError()

    def get_final_input_value(self):
        """ Get the final input of the handler """
        return self.input_value
