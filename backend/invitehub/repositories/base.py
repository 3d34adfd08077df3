"""Generic MongoDB repository over pydantic entities."""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from bson import ObjectId
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database

from invitehub.entities.base import BaseEntity

T = TypeVar("T", bound=BaseEntity)

SortSpec = Optional[Sequence[Tuple[str, int]]]


class BaseRepository(Generic[T]):
    """CRUD helpers shared by all collection repositories."""

    def __init__(self, db: Database, collection_name: str, model_class: Type[T]):
        self.db = db
        self.collection_name = collection_name
        self.collection: Collection = db[collection_name]
        self.model_class = model_class

    @staticmethod
    def _to_object_id(value: Union[str, ObjectId]) -> ObjectId:
        return value if isinstance(value, ObjectId) else ObjectId(value)

    def _to_entity(self, doc: Optional[Dict[str, Any]]) -> Optional[T]:
        return self.model_class.model_validate(doc) if doc else None

    def find_by_id(self, entity_id: Union[str, ObjectId]) -> Optional[T]:
        return self.find_one({"_id": self._to_object_id(entity_id)})

    def find_one(
        self, query: Dict[str, Any], session: Optional[ClientSession] = None
    ) -> Optional[T]:
        return self._to_entity(self.collection.find_one(query, session=session))

    def find_many(
        self,
        query: Dict[str, Any],
        sort: SortSpec = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[T]:
        cursor = self.collection.find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [self.model_class.model_validate(doc) for doc in cursor]

    def paginate(
        self,
        query: Dict[str, Any],
        sort: SortSpec = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[T], int]:
        total = self.collection.count_documents(query)
        return self.find_many(query, sort=sort, skip=skip, limit=limit), total

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return list(self.collection.aggregate(pipeline))

    def insert_one(self, entity: T, session: Optional[ClientSession] = None) -> T:
        result = self.collection.insert_one(entity.to_mongo(), session=session)
        entity.id = result.inserted_id
        return entity

    def update_one(
        self,
        entity_id: Union[str, ObjectId],
        updates: Dict[str, Any],
        session: Optional[ClientSession] = None,
    ) -> bool:
        updates = {**updates, "updated_at": datetime.now(timezone.utc)}
        result = self.collection.update_one(
            {"_id": self._to_object_id(entity_id)}, {"$set": updates}, session=session
        )
        return result.modified_count > 0

    def delete_one(self, query: Dict[str, Any]) -> bool:
        return self.collection.delete_one(query).deleted_count > 0
