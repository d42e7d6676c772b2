"""In-memory doubles for the Firestore client, Storage bucket and executors used in tests"""
import copy
import itertools
from concurrent.futures import Future

from google.api_core.exceptions import NotFound

_ids = itertools.count(1)


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, db, collection, doc_id):
        self._db = db
        self.collection_name = collection
        self.id = doc_id

    @property
    def _docs(self):
        return self._db.data.setdefault(self.collection_name, {})

    def get(self):
        self._db.reads += 1
        if self._db.fail_reads:
            raise ConnectionError('firestore unavailable')
        return FakeSnapshot(self, self._docs.get(self.id))

    def set(self, data, merge=False):
        self._db.writes += 1
        if merge and self.id in self._docs:
            self._docs[self.id].update(copy.deepcopy(data))
        else:
            self._docs[self.id] = copy.deepcopy(data)

    def update(self, fields):
        if self.id not in self._docs:
            raise NotFound(f'No document to update: {self.collection_name}/{self.id}')
        self._db.writes += 1
        self._docs[self.id].update(copy.deepcopy(fields))

    def delete(self):
        self._db.writes += 1
        self._docs.pop(self.id, None)


class FakeQuery:
    def __init__(self, db, collection, filters=()):
        self._db = db
        self.collection_name = collection
        self._filters = tuple(filters)

    def where(self, field, op, value):
        assert op == '==', 'only equality filters are used'
        return FakeQuery(self._db, self.collection_name, self._filters + ((field, value),))

    def stream(self):
        self._db.reads += 1
        docs = self._db.data.get(self.collection_name, {})
        for doc_id, data in list(docs.items()):
            if all(data.get(field) == value for field, value in self._filters):
                yield FakeSnapshot(FakeDocumentRef(self._db, self.collection_name, doc_id), data)


class FakeCollection(FakeQuery):
    def document(self, doc_id=None):
        return FakeDocumentRef(self._db, self.collection_name, doc_id or f'doc{next(_ids)}')

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref


class FakeBatch:
    def __init__(self, db):
        self._db = db
        self._ops = []

    def update(self, ref, fields):
        self._ops.append((ref, fields))

    def commit(self):
        self._db.commits += 1
        if self._db.commits in self._db.fail_commits:
            raise ConnectionError('batch commit failed')
        for ref, _ in self._ops:
            if ref.id not in self._db.data.get(ref.collection_name, {}):
                raise NotFound(f'No document to update: {ref.collection_name}/{ref.id}')
        for ref, fields in self._ops:
            ref.update(fields)


class FakeFirestore:
    """Just enough of google.cloud.firestore.Client for the repository"""

    def __init__(self):
        self.data = {}
        self.reads = 0
        self.writes = 0
        self.commits = 0
        self.fail_commits = set()
        self.fail_reads = False

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch(self)


class FakeBlob:
    def __init__(self, bucket, path):
        self.bucket = bucket
        self.name = path
        self.public = False

    def upload_from_string(self, data, content_type=None):
        self.bucket.objects[self.name] = (data, content_type)

    def make_public(self):
        self.public = True

    @property
    def public_url(self):
        return f'https://storage.googleapis.com/{self.bucket.name}/{self.name}'


class FakeBucket:
    def __init__(self, name='examstar-test'):
        self.name = name
        self.objects = {}

    def blob(self, path):
        return FakeBlob(self, path)


class ManualExecutor:
    """Queues submitted work until run_pending() is called"""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self):
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as e:
                future.set_exception(e)


class InlineExecutor(ManualExecutor):
    """Runs submitted work immediately"""

    def submit(self, fn, *args, **kwargs):
        future = super().submit(fn, *args, **kwargs)
        self.run_pending()
        return future
