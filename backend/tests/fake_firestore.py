"""FirestoreCouponStore テスト用の最小限のフェイククライアント

複合インデックスが無い状態 (indexes=False) では、並び替えや複数条件のクエリで
実機と同じく FailedPrecondition を送出する。

トランザクションは google.cloud.firestore.transactional から駆動できる。
読み取ったドキュメントのバージョンを覚えておき、コミット時に他の書き込みで
変わっていれば Aborted を送出する (ラッパー側が再試行する)。
"""
import itertools
import operator
import threading

from google.api_core.exceptions import Aborted, FailedPrecondition

_OPS = {
    "==": operator.eq,
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}

_ids = itertools.count(1)


class FakeSnapshot:
    def __init__(self, doc_id, data, reference):
        self.id = doc_id
        self._data = data
        self.reference = reference

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, collection, doc_id):
        self.collection = collection
        self.id = doc_id

    @property
    def client(self):
        return self.collection.client

    def get(self, transaction=None):
        with self.client.lock:
            data = self.collection.docs.get(self.id)
            version = self.collection.versions.get(self.id, 0)
        if transaction is not None:
            transaction._reads.setdefault((self.collection.name, self.id), (self, version))
        return FakeSnapshot(self.id, dict(data) if data is not None else None, self)

    def set(self, data):
        with self.client.lock:
            self._write(dict(data))

    def update(self, data):
        with self.client.lock:
            self._write({**self.collection.docs[self.id], **data})

    def _write(self, data):
        self.collection.docs[self.id] = data
        self.collection.versions[self.id] = self.collection.versions.get(self.id, 0) + 1
        self.client.writes.append((self.collection.name, self.id, data))


class FakeTransaction:
    _max_attempts = 5
    _read_only = False

    def __init__(self, client):
        self.client = client
        self._id = None
        self._reads = {}
        self._writes = []

    def _clean_up(self):
        self._id = None
        self._reads = {}
        self._writes = []

    def _begin(self, retry_id=None):
        self._id = f"tx{next(_ids)}".encode()

    def update(self, reference, field_updates):
        self._writes.append((reference, dict(field_updates)))

    def _commit(self):
        with self.client.lock:
            for doc, version in self._reads.values():
                if doc.collection.versions.get(doc.id, 0) != version:
                    self.client.aborts += 1
                    raise Aborted("Transaction lock timeout / contention")
            for doc, field_updates in self._writes:
                doc._write({**doc.collection.docs[doc.id], **field_updates})
            self.client.commits += 1
        self._clean_up()
        return []

    def _rollback(self):
        self._clean_up()


class FakeQuery:
    def __init__(self, collection, filters=(), order=None, limit=None):
        self.collection = collection
        self.filters = list(filters)
        self.order = order
        self._limit = limit

    def where(self, filter):
        return FakeQuery(self.collection, self.filters + [filter], self.order, self._limit)

    def order_by(self, field, direction="ASCENDING"):
        return FakeQuery(self.collection, self.filters, (field, direction), self._limit)

    def limit(self, n):
        return FakeQuery(self.collection, self.filters, self.order, n)

    def _needs_composite_index(self):
        return self.order is not None or len(self.filters) > 1

    def stream(self):
        self.collection.client.queries.append(self)
        if self._needs_composite_index() and not self.collection.client.indexes:
            raise FailedPrecondition(
                "The query requires an index. You can create it here: https://console.firebase.google.com/..."
            )
        with self.collection.client.lock:
            snapshot = list(self.collection.docs.items())
        rows = [
            (doc_id, data)
            for doc_id, data in snapshot
            if all(_OPS[f.op_string](data.get(f.field_path), f.value) for f in self.filters)
        ]
        if self.order is not None:
            field, direction = self.order
            rows.sort(key=lambda r: r[1][field], reverse=direction == "DESCENDING")
        if self._limit is not None:
            rows = rows[: self._limit]
        for doc_id, data in rows:
            yield FakeSnapshot(doc_id, dict(data), FakeDocument(self.collection, doc_id))


class FakeCollection(FakeQuery):
    def __init__(self, client, name):
        self.client = client
        self.name = name
        self.docs = {}
        self.versions = {}
        super().__init__(self)

    def document(self, doc_id):
        return FakeDocument(self, doc_id)

    def add(self, data):
        ref = FakeDocument(self, f"doc{next(_ids)}")
        ref.set(data)
        return None, ref


class FakeFirestore:
    def __init__(self, indexes=True):
        self.indexes = indexes
        self.collections = {}
        self.queries = []
        self.writes = []
        self.commits = 0
        self.aborts = 0
        self.lock = threading.RLock()

    def collection(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(self, name)
        return self.collections[name]

    def transaction(self, **kwargs):
        return FakeTransaction(self)
