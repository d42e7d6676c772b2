"""
Firestore access layer for ExamStar
Exams, resources, events, resource types and suggestions. Every data mutation ends with a
version bump so cached reads everywhere go stale on their next validation.
"""
import time
import uuid
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from google.api_core.exceptions import NotFound

from models import (
    DEFAULT_RESOURCE_TYPES, EPOCH, Exam, ExamEvent, ExamStructure, Resource, Suggestion, to_datetime,
)
from utils.logger import logger

EXAMS_COL = 'exams'
RESOURCES_COL = 'resources'
EVENTS_COL = 'events'
SETTINGS_COL = 'settings'
SUGGESTIONS_COL = 'suggestions'
METADATA_DOC = 'metadata'
RESOURCE_TYPES_DOC = 'resource-types'

# Firestore rejects batches with more than 500 writes
MAX_BATCH_WRITES = 500


class ContentStoreError(Exception):
    """Base error for repository operations"""


class NotFoundError(ContentStoreError):
    def __init__(self, collection, doc_id):
        super().__init__(f'{collection}/{doc_id} not found')
        self.collection = collection
        self.doc_id = doc_id


class PartialUpdateError(ContentStoreError):
    """A multi-document mutation stopped after some writes were committed"""

    def __init__(self, message, applied=0, pending=0):
        super().__init__(message)
        self.applied = applied
        self.pending = pending


# ============================================================================
# VERSION TOKEN
# ============================================================================

def new_version_token() -> str:
    return f'{time.time_ns()}-{uuid.uuid4().hex[:8]}'


class VersionTokenStore:
    """The global data hash in settings/metadata"""

    def __init__(self, db):
        self.db = db

    @property
    def _ref(self):
        return self.db.collection(SETTINGS_COL).document(METADATA_DOC)

    def bump_version(self) -> str:
        token = new_version_token()
        self._ref.set({'hash': token}, merge=True)
        logger.debug('data_version_bumped', version=token)
        return token

    def read_version(self) -> Optional[str]:
        snap = self._ref.get()
        if snap.exists:
            return (snap.to_dict() or {}).get('hash')
        return None


# ============================================================================
# HELPERS
# ============================================================================

def normalize_drive_link(url: str) -> str:
    """Google Drive share links open a viewer page; /preview embeds"""
    if 'drive.google.com' in url and '/view' in url:
        return url.replace('/view', '/preview')
    return url


def sort_resources(resources: Iterable[Resource]) -> List[Resource]:
    """Ascending order, then newest first for equal order"""
    def created(r):
        return r.created_at or EPOCH
    by_created = sorted(resources, key=created, reverse=True)
    return sorted(by_created, key=lambda r: r.order if r.order is not None else 0)


def exam_status(exam_id: str, events: Iterable[ExamEvent], today: Optional[date] = None) -> Optional[dict]:
    """Badge for the next exam-type event of an exam: ongoing today or N days left"""
    today = today or datetime.now(timezone.utc).date()
    upcoming = sorted(
        (e for e in events if e.exam_id == exam_id and e.type == 'exam' and e.date.date() >= today),
        key=lambda e: e.date,
    )
    if not upcoming:
        return None
    days_left = (upcoming[0].date.date() - today).days
    if days_left == 0:
        return {'label': 'Exam Going On', 'state': 'ongoing', 'days_left': 0}
    return {'label': f'{days_left} Days Left', 'state': 'upcoming', 'days_left': days_left}


def _chunks(items, size):
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ============================================================================
# REPOSITORY
# ============================================================================

class ContentRepository:
    """Sole writer of exams, resources, events, resource types and suggestions"""

    def __init__(self, db, bucket=None):
        self.db = db
        self.bucket = bucket
        self.versions = VersionTokenStore(db)

    def bump_version(self) -> str:
        return self.versions.bump_version()

    def read_version(self) -> Optional[str]:
        return self.versions.read_version()

    def _commit_updates(self, updates):
        """
        Commit (ref, fields) updates in batches of at most MAX_BATCH_WRITES.
        Each batch is all-or-nothing; a failure after an earlier batch went through
        raises PartialUpdateError.
        """
        committed = 0
        for chunk in _chunks(updates, MAX_BATCH_WRITES):
            batch = self.db.batch()
            for ref, fields in chunk:
                batch.update(ref, fields)
            try:
                batch.commit()
            except Exception as e:
                if committed == 0:
                    raise ContentStoreError(f'batched update failed: {e}') from e
                raise PartialUpdateError(
                    f'batched update stopped after {committed} of {len(updates)} writes: {e}',
                    applied=committed, pending=len(updates) - committed,
                ) from e
            committed += len(chunk)
        return committed

    # --- Exams ---

    def get_all_exams(self) -> List[Exam]:
        return [Exam.from_dict(d.to_dict(), exam_id=d.id) for d in self.db.collection(EXAMS_COL).stream()]

    def get_all_exam_ids(self) -> List[str]:
        return [exam.id for exam in self.get_all_exams()]

    def get_exam(self, exam_id: str) -> Optional[Exam]:
        snap = self.db.collection(EXAMS_COL).document(exam_id).get()
        if snap.exists:
            return Exam.from_dict(snap.to_dict(), exam_id=snap.id)
        return None

    def get_exam_structure(self, exam_id: str) -> Optional[ExamStructure]:
        snap = self.db.collection(EXAMS_COL).document(exam_id).get()
        if snap.exists:
            return ExamStructure.from_dict((snap.to_dict() or {}).get('structure'))
        return None

    def save_exam_structure(self, exam_id: str, structure: ExamStructure) -> None:
        # merge keeps name and any other exam fields
        self.db.collection(EXAMS_COL).document(exam_id).set({'structure': structure.to_dict()}, merge=True)
        self.bump_version()

    def save_exam(self, exam_id: str, name: str, structure: Optional[ExamStructure] = None) -> Exam:
        fields = {'name': name}
        if structure is not None:
            fields['structure'] = structure.to_dict()
        ref = self.db.collection(EXAMS_COL).document(exam_id)
        ref.set(fields, merge=True)
        self.bump_version()
        return Exam.from_dict(ref.get().to_dict(), exam_id=exam_id)

    def delete_exam(self, exam_id: str) -> None:
        self.db.collection(EXAMS_COL).document(exam_id).delete()
        self.bump_version()

    # --- Resources ---

    def _bucket_query(self, exam_id, subject, class_level, chapter, resource_type=None):
        query = (self.db.collection(RESOURCES_COL)
                 .where('examId', '==', exam_id)
                 .where('subject', '==', subject)
                 .where('class', '==', class_level)
                 .where('chapter', '==', chapter))
        if resource_type:
            query = query.where('type', '==', resource_type)
        return query

    def add_resource(self, resource: Resource) -> Resource:
        existing = self._bucket_query(*resource.bucket).stream()
        orders = [d.to_dict().get('order') for d in existing]
        orders = [o for o in orders if o is not None]
        min_order = min(orders) if orders else 0

        resource.order = min_order - 1
        resource.created_at = datetime.now(timezone.utc)
        _, ref = self.db.collection(RESOURCES_COL).add(resource.to_document())
        resource.id = ref.id
        self.bump_version()
        logger.info('resource_added', resource_id=ref.id, exam_id=resource.exam_id, order=resource.order)
        return resource

    def get_resources(self, exam_id: str, subject: str, class_level: str, chapter: str,
                      resource_type: Optional[str] = None) -> List[Resource]:
        docs = self._bucket_query(exam_id, subject, class_level, chapter, resource_type).stream()
        return sort_resources(Resource.from_dict(d.to_dict(), resource_id=d.id) for d in docs)

    def update_resource_order(self, items) -> None:
        """items: iterable of {'id': ..., 'order': ...}"""
        updates = [(self.db.collection(RESOURCES_COL).document(item['id']), {'order': int(item['order'])})
                   for item in items]
        try:
            self._commit_updates(updates)
        except PartialUpdateError:
            self.bump_version()
            raise
        self.bump_version()

    def delete_resource(self, resource_id: str) -> None:
        self.db.collection(RESOURCES_COL).document(resource_id).delete()
        self.bump_version()

    def upload_file(self, data: bytes, path: str, content_type: Optional[str] = None) -> str:
        if self.bucket is None:
            raise ContentStoreError('no storage bucket configured')
        blob = self.bucket.blob(path)
        blob.upload_from_string(data, content_type=content_type)
        blob.make_public()
        logger.info('file_uploaded', path=path, size=len(data))
        return blob.public_url

    # --- Resource types ---

    @property
    def _types_ref(self):
        return self.db.collection(SETTINGS_COL).document(RESOURCE_TYPES_DOC)

    def get_resource_types(self) -> List[str]:
        snap = self._types_ref.get()
        if snap.exists:
            return list((snap.to_dict() or {}).get('types') or [])
        defaults = list(DEFAULT_RESOURCE_TYPES)
        self._types_ref.set({'types': defaults})
        return defaults

    def add_resource_type(self, new_type: str) -> List[str]:
        snap = self._types_ref.get()
        types = list((snap.to_dict() or {}).get('types') or []) if snap.exists else list(DEFAULT_RESOURCE_TYPES)
        if new_type not in types:
            types.append(new_type)
            self._types_ref.set({'types': types})
            self.bump_version()
        return types

    def delete_resource_type(self, type_to_delete: str) -> List[str]:
        """Resources keep the deleted type string"""
        snap = self._types_ref.get()
        if not snap.exists:
            return list(DEFAULT_RESOURCE_TYPES)
        types = [t for t in (snap.to_dict() or {}).get('types') or [] if t != type_to_delete]
        self._types_ref.set({'types': types})
        self.bump_version()
        return types

    def update_resource_type(self, old_name: str, new_name: str) -> int:
        """Rename in the registry, then rewrite every resource of that type. Returns resources updated."""
        snap = self._types_ref.get()
        registry_changed = False
        if snap.exists:
            types = list((snap.to_dict() or {}).get('types') or [])
            if old_name in types:
                types[types.index(old_name)] = new_name
                self._types_ref.set({'types': types})
                registry_changed = True

        docs = self.db.collection(RESOURCES_COL).where('type', '==', old_name).stream()
        updates = [(d.reference, {'type': new_name}) for d in docs]
        try:
            count = self._commit_updates(updates)
        except PartialUpdateError as e:
            self.bump_version()
            logger.error('resource_type_rename_partial', old=old_name, new=new_name,
                         applied=e.applied, pending=e.pending)
            raise
        except ContentStoreError as e:
            if not registry_changed:
                raise
            # registry already holds the new name while every resource still has the old one
            self.bump_version()
            logger.error('resource_type_rename_partial', old=old_name, new=new_name,
                         applied=0, pending=len(updates))
            raise PartialUpdateError(f'registry renamed but resources were not: {e}',
                                     applied=0, pending=len(updates)) from e
        self.bump_version()
        logger.info('resource_type_renamed', old=old_name, new=new_name, resources=count)
        return count

    # --- Events ---

    def add_event(self, event: ExamEvent) -> ExamEvent:
        _, ref = self.db.collection(EVENTS_COL).add(event.to_document())
        event.id = ref.id
        self.bump_version()
        return event

    def update_event(self, event_id: str, fields: dict) -> None:
        fields = dict(fields)
        if 'date' in fields:
            fields['date'] = to_datetime(fields['date'])
        try:
            self.db.collection(EVENTS_COL).document(event_id).update(fields)
        except NotFound as e:
            raise NotFoundError(EVENTS_COL, event_id) from e
        self.bump_version()

    def delete_event(self, event_id: str) -> None:
        self.db.collection(EVENTS_COL).document(event_id).delete()
        self.bump_version()

    def get_events(self) -> List[ExamEvent]:
        events = [ExamEvent.from_dict(d.to_dict(), event_id=d.id) for d in self.db.collection(EVENTS_COL).stream()]
        return sorted(events, key=lambda e: e.date)

    # --- Suggestions (not versioned: never served through the cache) ---

    def add_suggestion(self, content: str) -> Suggestion:
        suggestion = Suggestion(content=content, created_at=datetime.now(timezone.utc))
        _, ref = self.db.collection(SUGGESTIONS_COL).add({'content': content, 'createdAt': suggestion.created_at})
        suggestion.id = ref.id
        return suggestion

    def get_suggestions(self) -> List[Suggestion]:
        items = [Suggestion.from_dict(d.to_dict(), suggestion_id=d.id)
                 for d in self.db.collection(SUGGESTIONS_COL).stream()]
        return sorted(items, key=lambda s: s.created_at or EPOCH, reverse=True)

    def delete_suggestion(self, suggestion_id: str) -> None:
        self.db.collection(SUGGESTIONS_COL).document(suggestion_id).delete()
