from sqlalchemy import Column, String, Integer, Table
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql.schema import ForeignKey

from mongopipe import MongoPipeBase
from .util import FakeDatabase


Base = declarative_base(cls=MongoPipeBase)


# Intermediate collection: people <-> tags
person_tags = Table('person_tags', Base.metadata,
                    Column('person_id', ForeignKey('people.id'), primary_key=True),
                    Column('tag_id', ForeignKey('tags.id'), primary_key=True),
                    )


class City(Base):
    __tablename__ = 'cities'

    id = Column(String, primary_key=True)
    name = Column(String)

    companies = relationship(lambda: Company, back_populates='city')

    def __repr__(self):
        return 'City(id={!r}, name={!r})'.format(self.id, self.name)


class Company(Base):
    __tablename__ = 'companies'

    id = Column(String, primary_key=True)
    name = Column(String)
    city_id = Column(ForeignKey(City.id))

    city = relationship(City, back_populates='companies')
    employees = relationship(lambda: Person, back_populates='company')

    def __repr__(self):
        return 'Company(id={!r}, name={!r})'.format(self.id, self.name)


class Person(Base):
    __tablename__ = 'people'

    id = Column(String, primary_key=True)
    name = Column(String)
    age = Column(Integer)
    company_id = Column(ForeignKey(Company.id))

    company = relationship(Company, back_populates='employees')
    profile = relationship(lambda: Profile, uselist=False, back_populates='person')
    tags = relationship(lambda: Tag, secondary=person_tags)

    @property
    def greeting(self):
        return 'Hello, ' + self.name

    def __repr__(self):
        return 'Person(id={!r}, name={!r})'.format(self.id, self.name)


class Profile(Base):
    __tablename__ = 'profiles'

    id = Column(String, primary_key=True)
    bio = Column(String)
    person_id = Column(ForeignKey(Person.id))

    person = relationship(Person, back_populates='profile')


class Tag(Base):
    __tablename__ = 'tags'

    id = Column(String, primary_key=True)
    name = Column(String)


class Venue(Base):
    """ A model with a primary key that is not named `id` """
    __tablename__ = 'venues'

    uid = Column(String, primary_key=True)
    title = Column(String)


# region Data

def sample_database():
    """ An in-memory database with a few documents in every collection """
    return FakeDatabase(
        cities=[
            {'_id': 'x1', 'name': 'Paris'},
            {'_id': 'x2', 'name': 'Oslo'},
        ],
        companies=[
            {'_id': 'c1', 'name': 'Acme', 'city_id': 'x1'},
            {'_id': 'c2', 'name': 'Globex', 'city_id': 'x2'},
        ],
        people=[
            {'_id': 'p1', 'name': 'Alice', 'age': 30, 'company_id': 'c1'},
            {'_id': 'p2', 'name': 'Bob', 'age': 17, 'company_id': 'c2'},
            {'_id': 'p3', 'name': 'Carl', 'age': 45, 'company_id': None},
        ],
        profiles=[
            {'_id': 'f1', 'bio': 'Likes cats', 'person_id': 'p1'},
        ],
        tags=[
            {'_id': 't1', 'name': 'vip'},
            {'_id': 't2', 'name': 'new'},
        ],
        person_tags=[
            {'_id': 'l1', 'person_id': 'p1', 'tag_id': 't1'},
            {'_id': 'l2', 'person_id': 'p1', 'tag_id': 't2'},
            {'_id': 'l3', 'person_id': 'p2', 'tag_id': 't1'},
        ],
    )

# endregion
