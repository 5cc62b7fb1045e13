# src/ogmalchemy/query/repository.py
"""
ogmalchemy repositories.

A repository is a thin, session-bound facade over one entity kind. Finder
methods are derived from their names the first time they are called and the
derived query is cached on the repository class.

Example:
    ```python
    class IngredientRepository(GraphRepository[Ingredient]):
        async def find_all_by_flavour_and_date_added_greater_than(self, flavour, since): ...
        async def count_by_category_name(self, name): ...

    async with factory.session() as session:
        ingredients = IngredientRepository(session)
        recent = await ingredients.find_all_by_flavour_and_date_added_greater_than("sweet", date(2024, 1, 1))
        basil = await ingredients.find_by_name("Basil")          # undeclared finders work too
    ```
"""

from __future__ import annotations

import inspect
from typing import Any, ClassVar, Dict, Generic, List, Optional, Type, TypeVar, TYPE_CHECKING, get_args, get_origin

from ogmalchemy.exceptions import ConfigurationError, EntityNotFoundError
from ogmalchemy.query.derivation import DerivedQuery, QueryDerivationEngine, is_derivable
from ogmalchemy.query.model import Page, Sort

if TYPE_CHECKING:
    from ogmalchemy.orm.session import Session


EntityType = TypeVar('EntityType')


class DerivedFinder:
    """Descriptor replacing a declared finder stub; derives its query on first use."""

    def __init__(self, name: str, doc: Optional[str] = None):
        self.name = name
        self.__doc__ = doc

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        return instance._finder(self.name)

    def __repr__(self) -> str:
        return f"DerivedFinder({self.name!r})"


class GraphRepository(Generic[EntityType]):
    """
    Session-bound access to one node entity kind.

    The kind comes from the generic argument (``GraphRepository[Ingredient]``)
    or from an ``entity`` class attribute.
    """

    entity: ClassVar[Type[Any]]
    _derived_queries: ClassVar[Dict[str, DerivedQuery]]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if 'entity' not in cls.__dict__:
            for base in getattr(cls, '__orig_bases__', ()):
                if get_origin(base) is not None and issubclass(get_origin(base), GraphRepository):
                    args = get_args(base)
                    if args and inspect.isclass(args[0]):
                        cls.entity = args[0]
                        break

        cls._derived_queries = {}
        for name, member in list(cls.__dict__.items()):
            if (
                inspect.isfunction(member)
                and is_derivable(name)
                and not hasattr(member, 'query')
                and not hasattr(GraphRepository, name)
            ):
                setattr(cls, name, DerivedFinder(name, member.__doc__))

    def __init__(self, session: Session):
        if getattr(type(self), 'entity', None) is None:
            raise ConfigurationError(f"{type(self).__name__} does not declare its entity kind")
        self.session = session

    def __getattr__(self, name: str) -> Any:
        if is_derivable(name):
            return self._finder(name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def _finder(self, name: str) -> Any:
        derived = self.derived(name)

        async def finder(*args: Any, depth: Optional[int] = None) -> Any:
            return await derived.execute(self.session, args, depth=depth)

        finder.__name__ = name
        finder.__qualname__ = f"{type(self).__name__}.{name}"
        return finder

    def derived(self, name: str) -> DerivedQuery:
        """Derived query of a finder, derived once per repository class."""
        cache = type(self)._derived_queries
        if name not in cache:
            cache[name] = QueryDerivationEngine(self.session.registry).derive(self.entity, name)
        return cache[name]

    # =========================================================================
    # CRUD
    # =========================================================================

    async def find_by_id(self, identity: str, depth: Optional[int] = None) -> Optional[EntityType]:
        try:
            return await self.session.load(self.entity, identity, depth)
        except EntityNotFoundError:
            return None

    async def find_all(
        self,
        sort: Optional[Sort] = None,
        page: Optional[Page] = None,
        depth: Optional[int] = None
    ) -> List[EntityType]:
        return await self.session.load_all(self.entity, sort=sort, page=page, depth=depth)

    async def count(self) -> int:
        return await self.session.count(self.entity)

    async def save(self, entity: EntityType, depth: int = -1) -> EntityType:
        return await self.session.save(entity, depth)

    async def delete(self, entity: EntityType) -> None:
        await self.session.delete(entity)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(entity={self.entity.__name__}, session={self.session.session_id})"
