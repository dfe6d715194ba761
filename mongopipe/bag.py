from typing import Mapping, Iterable, Tuple, FrozenSet, Set, Optional

from sqlalchemy import inspect, Column
from sqlalchemy.orm import ColumnProperty, RelationshipProperty
from sqlalchemy.orm import MANYTOONE, ONETOMANY, MANYTOMANY


#: The identifier field that MongoDB uses for every document
NATIVE_ID_FIELD = '_id'


class ModelPropertyBags:
    """ Model Property Bags is the class that lets you get information about the model's columns.

    This is the class that binds them all together: Columns, Relationships, the primary key.
    All the meta-information about a certain Model that is needed to build a pipeline is stored here:

    - Columns
    - Relations (with the metadata needed to $lookup them)
    - The primary key, which is stored as `_id` in a MongoDB collection
    - The name of the collection

    The bags are read-only: once initialized, they are only consulted.
    """
    __bags_per_model_cache = {}

    @classmethod
    def for_model(cls, model) -> 'ModelPropertyBags':
        """ Get bags for a model.

        Please use this method over __init__(), because it initializes those bags only once
        """
        try:
            # Every model class has to have its own ModelPropertyBags, and we want no one to inherit it.
            # Thus, we keep our own cache.
            return cls.__bags_per_model_cache[model]
        except KeyError:
            cls.__bags_per_model_cache[model] = bags = cls(model)
            return bags

    def __init__(self, model):
        """ Init bags

        :param model: Model
        :type model: sqlalchemy.orm.DeclarativeMeta
        """
        insp = inspect(model)

        # Initialize
        self.model = model
        self.model_name = model.__name__
        self.mapper = insp

        #: Name of the MongoDB collection the model is stored into
        self.collection_name = insp.local_table.name

        # Init bags
        self.columns = self._init_columns(model, insp)
        self.relations = self._init_relations(model, insp)

        #: Name of the primary key attribute: the domain identifier field
        self.pk = self._init_primary_key(model, insp)

    # region: Initialize bags

    def _init_columns(self, model, insp):
        """ Initialize: Column properties """
        return ColumnsBag(_get_model_columns(model, insp))

    def _init_relations(self, model, insp):
        """ Initialize: Relationships """
        return RelationsBag({name: Relation.from_relationship(model, name, rel)
                             for name, rel in insp.relationships.items()})

    def _init_primary_key(self, model, insp):
        """ Initialize: Primary key attribute name """
        pk_columns = list(insp.primary_key)
        if len(pk_columns) != 1:
            raise TypeError('Model {} must have exactly one primary key column to be stored in MongoDB; {} found'
                            .format(self.model_name, len(pk_columns)))
        return insp.get_property_by_column(pk_columns[0]).key

    # endregion

    @property
    def all_names(self) -> Set[str]:
        """ Get the names of all properties defined for the model """
        return self.columns.names | self.relations.names

    def native_field(self, name: str) -> str:
        """ Get the name of a field as stored in MongoDB: the primary key becomes `_id` """
        return NATIVE_ID_FIELD if name == self.pk else name

    def domain_field(self, name: str) -> str:
        """ Get the name of a field as seen by the model: `_id` becomes the primary key """
        return self.pk if name == NATIVE_ID_FIELD else name


class _PropertiesBagBase:
    """ Base class for Property bags

    A container that keeps meta-information on model properties.
    """

    def __contains__(self, name: str) -> bool:
        raise NotImplementedError

    def __getitem__(self, name: str):
        raise NotImplementedError

    @property
    def names(self) -> FrozenSet[str]:
        """ Get the set of names """
        raise NotImplementedError

    def __iter__(self):
        raise NotImplementedError

    def get_invalid_names(self, names: Iterable[str]) -> Set[str]:
        """ Get the names of invalid items

        Use this for validation.
        """
        return set(names) - self.names


class ColumnsBag(_PropertiesBagBase):
    """ Columns bag

    Contains the list of column names, and the columns themselves: bag[column_name]
    """

    def __init__(self, columns: Mapping[str, ColumnProperty]):
        self._columns = columns
        self._column_names = frozenset(self._columns.keys())

    @property
    def names(self) -> FrozenSet[str]:
        return self._column_names

    def __iter__(self) -> Iterable[Tuple[str, ColumnProperty]]:
        return iter(self._columns.items())

    def __contains__(self, name: str) -> bool:
        return name in self._column_names

    def __getitem__(self, column_name: str) -> ColumnProperty:
        return self._columns[column_name]


class RelationsBag(_PropertiesBagBase):
    """ Relations bag

    Keeps track of relations of a model.
    Unlike other bags, it has get(): a missing relation is a normal situation, not an error.
    """

    def __init__(self, relations: Mapping[str, 'Relation']):
        self._relations = relations
        self._rel_names = frozenset(self._relations.keys())

    @property
    def names(self) -> FrozenSet[str]:
        """ Get the set of relation names """
        return self._rel_names

    def __iter__(self) -> Iterable[Tuple[str, 'Relation']]:
        return iter(self._relations.items())

    def __contains__(self, name: str) -> bool:
        return name in self._relations

    def __getitem__(self, name: str) -> 'Relation':
        return self._relations[name]

    def get(self, name: str) -> Optional['Relation']:
        """ Get a relation by name, or None """
        return self._relations.get(name)

    def is_relation_array(self, name: str) -> bool:
        """ Does the relation yield many related entities? """
        return not self._relations[name].is_single


class Relation:
    """ A named edge between two models

    This is the metadata that the pipeline needs in order to $lookup related documents,
    derived from an SqlAlchemy relationship().
    """

    HAS_ONE = 'hasOne'
    BELONGS_TO = 'belongsTo'
    HAS_MANY = 'hasMany'
    HAS_MANY_THROUGH = 'hasManyThrough'

    #: Relation types that yield at most one related entity
    SINGLE_TYPES = frozenset((HAS_ONE, BELONGS_TO))

    __slots__ = ('name', 'type', 'model_from', 'model_to', 'key_from', 'key_to', 'through', 'key_through', 'key_target')

    def __init__(self, name, type, model_from, model_to, key_from, key_to,
                 through=None, key_through=None, key_target=None):
        """ Init a relation

        :param name: Relation name
        :param type: One of: hasOne, belongsTo, hasMany, hasManyThrough
        :param model_from: The model that declares the relation
        :param model_to: The target model
        :param key_from: Field on `model_from`
        :param key_to: Field on `model_to`; for hasManyThrough, field on the `through` collection that points to `model_from`
        :param through: hasManyThrough: name of the intermediate collection
        :param key_through: hasManyThrough: field on the `through` collection that points to `model_to`
        :param key_target: hasManyThrough: field on `model_to` that `key_through` refers to
        """
        self.name = name
        self.type = type
        self.model_from = model_from
        self.model_to = model_to
        self.key_from = key_from
        self.key_to = key_to
        self.through = through
        self.key_through = key_through
        self.key_target = key_target

    @classmethod
    def from_relationship(cls, model, name: str, rel: RelationshipProperty) -> 'Relation':
        """ Describe an SqlAlchemy relationship """
        model_to = rel.mapper.class_
        source_insp = inspect(model)

        if rel.direction is MANYTOMANY:
            # Parent <- secondary -> target
            (local_col, through_col), = rel.synchronize_pairs
            (target_col, through_target_col), = rel.secondary_synchronize_pairs
            return cls(name, cls.HAS_MANY_THROUGH, model, model_to,
                       key_from=source_insp.get_property_by_column(local_col).key,
                       key_to=through_col.key,
                       through=rel.secondary.name,
                       key_through=through_target_col.key,
                       key_target=inspect(model_to).get_property_by_column(target_col).key)

        (local_col, remote_col), = rel.local_remote_pairs
        if rel.direction is MANYTOONE:
            type = cls.BELONGS_TO
        elif rel.direction is ONETOMANY:
            type = cls.HAS_MANY if rel.uselist else cls.HAS_ONE
        else:
            raise NotImplementedError('Unsupported relationship direction: {}'.format(rel.direction))

        return cls(name, type, model, model_to,
                   key_from=source_insp.get_property_by_column(local_col).key,
                   key_to=inspect(model_to).get_property_by_column(remote_col).key)

    def __repr__(self):
        return '{}({}: {}.{} -> {}.{})'.format(
            self.type, self.name,
            self.model_from.__name__, self.key_from,
            self.model_to.__name__, self.key_to)

    @property
    def is_single(self) -> bool:
        """ Does this relation yield at most one related entity? """
        return self.type in self.SINGLE_TYPES

    @property
    def is_through(self) -> bool:
        return self.type == self.HAS_MANY_THROUGH

    @property
    def bags_from(self) -> ModelPropertyBags:
        return ModelPropertyBags.for_model(self.model_from)

    @property
    def bags_to(self) -> ModelPropertyBags:
        return ModelPropertyBags.for_model(self.model_to)

    @property
    def native_key_from(self) -> str:
        """ `key_from`, as stored in MongoDB """
        return self.bags_from.native_field(self.key_from)

    @property
    def native_key_to(self) -> str:
        """ `key_to`, as stored in MongoDB

            For hasManyThrough, that's a field of the `through` collection, which is never an alias.
        """
        if self.is_through:
            return self.key_to
        return self.bags_to.native_field(self.key_to)


def _get_model_columns(model, ins):
    """ Get a dict of model columns """
    return {name: getattr(model, name)
            for name, c in ins.column_attrs.items()
            # ignore Labels and other stuff that .items() will always yield
            if isinstance(c.expression, Column)
            }

