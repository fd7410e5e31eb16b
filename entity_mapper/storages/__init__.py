from entity_mapper.storages.base import Adapter, QueryResult, Row, Transaction
