# src/polyorm/adapters/MongoDBAdapter.py
import datetime
import os
import re
from typing import Any, Callable, List, Optional, Sequence

from bson import ObjectId

from ..base.BaseAdapter import BaseAdapter
from ..condition import Clause, Condition, Disjunction, Operator, OrderSpec
from ..decorators import backend
from ..errors import DocumentStoreError, DriverNotInstalledError
from ..models import FieldSpec, IndexSpec, ModelDefinition
from ..types import ConditionLike, IdentifierKind, JsonDict

MONGO_ID = "_id"

# every document carries _id, so this never matches
MATCH_NONE: JsonDict = {MONGO_ID: {"$exists": False}}

_COMPARISON_OPS = {
    Operator.GT: "$gt",
    Operator.GTE: "$gte",
    Operator.LT: "$lt",
    Operator.LTE: "$lte",
}


def build_filter(clauses: Sequence[Clause], rename: Optional[Callable[[str], str]] = None) -> JsonDict:
    """Translate a clause conjunction into a Mongo filter document."""
    rename = rename or (lambda name: name)
    parts = [_clause_filter(clause, rename) for clause in clauses]
    if not parts:
        return {}
    if len(parts) == 1:
        return parts[0]
    return {"$and": parts}


def _clause_filter(clause: Clause, rename: Callable[[str], str]) -> JsonDict:
    if isinstance(clause, Disjunction):
        if not clause.branches:
            return dict(MATCH_NONE)
        return {"$or": [build_filter(branch, rename) for branch in clause.branches]}

    name = rename(clause.field)
    op, operand = clause.op, clause.operand

    if op == Operator.EQ:
        return {name: operand}
    if op == Operator.NE:
        return {name: {"$ne": operand}}
    if op in _COMPARISON_OPS:
        if operand is None:
            return dict(MATCH_NONE)
        return {name: {_COMPARISON_OPS[op]: operand}}
    if op == Operator.BETWEEN:
        low, high = operand
        return {name: {"$gte": low, "$lte": high}}
    if op == Operator.IN:
        return {name: {"$in": [v for v in operand if v is not None]}}
    if op == Operator.NIN:
        return {name: {"$nin": [v for v in operand if v is not None]}}
    if op == Operator.LIKE:
        return {name: {"$regex": operand}}
    if op == Operator.NLIKE:
        return {name: {"$not": re.compile(operand)}}
    raise DocumentStoreError(f"Unsupported operator {op}")


def build_sort(order: OrderSpec, rename: Optional[Callable[[str], str]] = None) -> List[tuple]:
    """Sort keys with ``_id`` appended as the insertion-order tiebreak."""
    rename = rename or (lambda name: name)
    keys = [(rename(name), 1 if direction > 0 else -1) for name, direction in order]
    if not any(key == MONGO_ID for key, _ in keys):
        keys.append((MONGO_ID, 1))
    return keys


@backend("mongodb", "mongo")
class MongoDBAdapter(BaseAdapter):
    """MongoDB through the pymongo async client"""

    name = "mongodb"
    identifier_kind = IdentifierKind.OBJECT_ID

    def __init__(self, settings=None, connection=None):
        super().__init__(settings, connection)
        self.mongo_uri = getattr(settings, "url", None) or os.getenv("MONGODB_URI", "mongodb://localhost:27017")
        self.db_name = getattr(settings, "database", None) or os.getenv("MONGODB_DATABASE", "default")
        self._client = None

    async def _connect(self) -> None:
        try:
            from pymongo import AsyncMongoClient
        except ImportError:
            raise DriverNotInstalledError("pymongo is not installed. Install with: pip install pymongo")

        if self._client is not None:
            return
        try:
            client = AsyncMongoClient(
                self.mongo_uri,
                maxPoolSize=int(os.getenv("MONGODB_MAX_POOL_SIZE", "10")),
                minPoolSize=int(os.getenv("MONGODB_MIN_POOL_SIZE", "1")),
                serverSelectionTimeoutMS=5000,
            )
            await client.admin.command("ping")
        except Exception as e:
            raise DocumentStoreError(f"MongoDB connect failed: {str(e)}") from e
        self._client = client
        self.logger.info("MongoDB initialized")

    async def _disconnect(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def _collection(self, definition: ModelDefinition):
        if self._client is None:
            await self._connect()
        return self._client[self.db_name][definition.table]  # type: ignore

    # -- identifiers ---------------------------------------------------------

    @staticmethod
    def _id_field(definition: ModelDefinition) -> Optional[str]:
        """The primary key stored as ``_id``: a single object-id key."""
        pks = definition.primary_keys
        if len(pks) == 1 and definition.fields[pks[0].field].type == IdentifierKind.OBJECT_ID.value:
            return pks[0].field
        return None

    def _renamer(self, definition: ModelDefinition) -> Callable[[str], str]:
        id_field = self._id_field(definition)
        return lambda name: MONGO_ID if name == id_field else name

    # -- value conversion ----------------------------------------------------

    def _value_to_database(self, spec: FieldSpec, value: Any) -> Any:
        if value is None:
            return None
        if spec.type == IdentifierKind.OBJECT_ID.value and isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        if spec.type == "date" and isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
            return datetime.datetime.combine(value, datetime.time())
        if spec.type == "uuid" and not isinstance(value, str):
            return str(value)
        return value

    def _value_from_database(self, spec: FieldSpec, value: Any) -> Any:
        if isinstance(value, ObjectId):
            return str(value)
        return value

    def to_document(self, definition: ModelDefinition, data: JsonDict) -> JsonDict:
        doc = self.to_database(definition.name, {k: v for k, v in data.items() if k in definition.fields})
        id_field = self._id_field(definition)
        if id_field and id_field in doc:
            value = doc.pop(id_field)
            if value is not None:
                doc[MONGO_ID] = value
        return doc

    def from_document(self, definition: ModelDefinition, doc: JsonDict) -> JsonDict:
        doc = dict(doc)
        mongo_id = doc.pop(MONGO_ID, None)
        id_field = self._id_field(definition)
        if id_field:
            doc[id_field] = mongo_id
        return self.from_database(definition.name, doc)

    def filter_for(self, definition: ModelDefinition, condition: Condition) -> JsonDict:
        clauses = self._database_clauses(definition.name, condition)
        return build_filter(clauses, self._renamer(definition))

    # -- contract ------------------------------------------------------------

    async def exists(self, model_name: str, id: Any) -> bool:
        return await self.count(model_name, {"where": self._id_where(model_name, id)}) > 0

    async def count(self, model_name: str, condition: ConditionLike = None) -> int:
        definition = self._definition(model_name)
        query = self.filter_for(definition, Condition.from_value(condition))
        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.count_documents({query})")
        try:
            result = await collection.count_documents(query)
        except Exception as e:
            raise DocumentStoreError(f"MongoDB count failed: {str(e)}") from e
        done()
        return result

    async def create(self, model_name: str, data: JsonDict) -> JsonDict:
        definition = self._definition(model_name)
        record = dict(data)
        id_field = self._id_field(definition)
        for pk in definition.primary_keys:
            if record.get(pk.field) is None and pk.field != id_field:
                generated = self._generate_id(definition.fields[pk.field]) if pk.generated else None
                if generated is None:
                    raise DocumentStoreError(f"MongoDB create failed: primary key '{pk.field}' is required")
                record[pk.field] = generated

        doc = self.to_document(definition, record)
        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.insert_one({doc})")
        try:
            result = await collection.insert_one(doc)
        except Exception as e:
            raise DocumentStoreError(f"MongoDB create failed: {str(e)}") from e
        done()
        doc[MONGO_ID] = result.inserted_id
        return self.from_document(definition, doc)

    async def save(self, model_name: str, data: JsonDict) -> JsonDict:
        if not self._has_identity(model_name, data):
            return await self.create(model_name, data)

        definition = self._definition(model_name)
        id_where = self._id_where(model_name, {pk: data[pk] for pk in definition.primary_key_names})
        query = self.filter_for(definition, Condition(where=id_where))
        doc = self.to_document(definition, data)
        changes = {k: v for k, v in doc.items() if k != MONGO_ID}

        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.update_one({query}, upsert=True)")
        try:
            if changes:
                await collection.update_one(query, {"$set": changes}, upsert=True)
            elif await collection.find_one(query) is None:
                await collection.insert_one(doc)
            stored = await collection.find_one(query)
        except Exception as e:
            raise DocumentStoreError(f"MongoDB save failed: {str(e)}") from e
        done()
        return self.from_document(definition, stored)

    async def find(self, model_name: str, condition: ConditionLike = None) -> List[JsonDict]:
        definition = self._definition(model_name)
        condition = Condition.from_value(condition)
        rename = self._renamer(definition)
        query = self.filter_for(definition, condition)

        names = self._projection_fields(model_name, condition.fields)
        projection = {rename(name): 1 for name in names} if names is not None else None

        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.find({query})")
        try:
            cursor = collection.find(query, projection).sort(build_sort(condition.order, rename))
            if condition.skip:
                cursor = cursor.skip(condition.skip)
            if condition.limit is not None:
                if condition.limit == 0:
                    return []
                cursor = cursor.limit(condition.limit)
            docs = await cursor.to_list(None)
        except Exception as e:
            raise DocumentStoreError(f"MongoDB find failed: {str(e)}") from e
        done()
        return [self.from_document(definition, doc) for doc in docs]

    async def update(self, model_name: str, condition: ConditionLike, data: JsonDict) -> List[JsonDict]:
        definition = self._definition(model_name)
        query = self.filter_for(definition, Condition.from_value(condition))
        changes = self.to_document(definition, data)
        # _id is immutable
        new_id = changes.pop(MONGO_ID, None)

        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.update_many({query}, {{'$set': {changes}}})")
        try:
            ids = [doc[MONGO_ID] for doc in await collection.find(query, {MONGO_ID: 1}).to_list(None)]
            if not ids:
                return []
            if new_id is not None and ids != [new_id]:
                raise DocumentStoreError("MongoDB update failed: the _id field cannot be changed")
            scope = {MONGO_ID: {"$in": ids}}
            if changes:
                await collection.update_many(scope, {"$set": changes})
            docs = await collection.find(scope).sort(MONGO_ID, 1).to_list(None)
        except DocumentStoreError:
            raise
        except Exception as e:
            raise DocumentStoreError(f"MongoDB update failed: {str(e)}") from e
        done()
        return [self.from_document(definition, doc) for doc in docs]

    async def remove(self, model_name: str, condition: ConditionLike) -> bool:
        definition = self._definition(model_name)
        query = self.filter_for(definition, Condition.from_value(condition))
        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.delete_many({query})")
        try:
            result = await collection.delete_many(query)
        except Exception as e:
            raise DocumentStoreError(f"MongoDB remove failed: {str(e)}") from e
        done()
        return result.deleted_count > 0

    async def remove_all(self, model_name: str) -> None:
        definition = self._definition(model_name)
        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.delete_many({{}})")
        try:
            await collection.delete_many({})
        except Exception as e:
            raise DocumentStoreError(f"MongoDB remove_all failed: {str(e)}") from e
        done()

    # -- indexes -------------------------------------------------------------

    async def _reconcile(self, definition: ModelDefinition) -> None:
        rename = self._renamer(definition)
        for name, spec in definition.fields.items():
            if rename(name) == MONGO_ID or not (spec.index or spec.unique):
                continue
            index_name = spec.index if isinstance(spec.index, str) else None
            await self._create_index(
                definition, IndexSpec.build(definition.table, [name], {"name": index_name, "unique": spec.unique})
            )
        for index in definition.indexes.values():
            await self._create_index(definition, index)

    async def _create_index(self, definition: ModelDefinition, index: IndexSpec) -> None:
        rename = self._renamer(definition)
        keys = [(rename(column), 1) for column in index.columns]
        collection = await self._collection(definition)
        done = self.logger_for(f"db.{definition.table}.create_index({keys})")
        try:
            await collection.create_index(keys, name=index.name, unique=index.unique)
        except Exception as e:
            raise DocumentStoreError(f"MongoDB create_index failed: {str(e)}") from e
        done()
