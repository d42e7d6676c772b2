"""Domain records stored in Firestore."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

DEFAULT_RESOURCE_TYPES = ['note', 'pyq', 'practice']
EVENT_TYPES = ('exam', 'registration', 'result', 'other')
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_datetime(value: Any) -> datetime | None:
    """Normalize Firestore timestamps, dates, ISO strings and epoch millis to aware datetimes."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError(f'Unsupported date value: {value!r}')


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class ClassLevel:
    name: str
    chapters: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> ClassLevel:
        return cls(name=data.get('name', ''), chapters=list(data.get('chapters') or []))

    def to_dict(self) -> dict:
        return {'name': self.name, 'chapters': list(self.chapters)}


@dataclass
class Subject:
    name: str
    classes: list[ClassLevel] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> Subject:
        return cls(
            name=data.get('name', ''),
            classes=[ClassLevel.from_dict(c) for c in data.get('classes') or []],
        )

    def to_dict(self) -> dict:
        return {'name': self.name, 'classes': [c.to_dict() for c in self.classes]}


@dataclass
class ExamStructure:
    subjects: list[Subject] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> ExamStructure:
        data = data or {}
        return cls(subjects=[Subject.from_dict(s) for s in data.get('subjects') or []])

    def to_dict(self) -> dict:
        return {'subjects': [s.to_dict() for s in self.subjects]}

    def find_class(self, subject: str, class_level: str) -> ClassLevel | None:
        for s in self.subjects:
            if s.name == subject:
                for c in s.classes:
                    if c.name == class_level:
                        return c
        return None

    def has_chapter(self, subject: str, class_level: str, chapter: str) -> bool:
        found = self.find_class(subject, class_level)
        return found is not None and chapter in found.chapters


@dataclass
class Exam:
    id: str
    name: str = ''
    structure: ExamStructure = field(default_factory=ExamStructure)

    @property
    def display_name(self) -> str:
        return self.name or self.id.replace('-', ' ')

    @classmethod
    def from_dict(cls, data: dict, exam_id: str | None = None) -> Exam:
        return cls(
            id=exam_id or data.get('id', ''),
            name=data.get('name') or '',
            structure=ExamStructure.from_dict(data.get('structure')),
        )

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'structure': self.structure.to_dict()}


@dataclass
class Resource:
    """One linked file, filed under exactly one (exam, subject, class, chapter, type) bucket."""

    exam_id: str
    subject: str
    class_level: str
    chapter: str
    type: str
    title: str
    file_url: str
    subtitle: str | None = None
    year: str | None = None
    id: str | None = None
    created_at: datetime | None = None
    order: int | None = None

    @property
    def bucket(self) -> tuple[str, str, str, str, str]:
        return (self.exam_id, self.subject, self.class_level, self.chapter, self.type)

    @classmethod
    def from_dict(cls, data: dict, resource_id: str | None = None) -> Resource:
        return cls(
            id=resource_id or data.get('id'),
            exam_id=data.get('examId', ''),
            subject=data.get('subject', ''),
            class_level=data.get('class', ''),
            chapter=data.get('chapter', ''),
            type=data.get('type', ''),
            title=data.get('title', ''),
            subtitle=data.get('subtitle'),
            year=data.get('year'),
            file_url=data.get('fileUrl', ''),
            created_at=to_datetime(data.get('createdAt')),
            order=data.get('order'),
        )

    def to_document(self) -> dict:
        """Firestore field layout (no id; datetimes stay native)."""
        doc = {
            'examId': self.exam_id,
            'subject': self.subject,
            'class': self.class_level,
            'chapter': self.chapter,
            'type': self.type,
            'title': self.title,
            'fileUrl': self.file_url,
        }
        if self.subtitle:
            doc['subtitle'] = self.subtitle
        if self.year:
            doc['year'] = self.year
        if self.created_at is not None:
            doc['createdAt'] = self.created_at
        if self.order is not None:
            doc['order'] = self.order
        return doc

    def to_dict(self) -> dict:
        doc = self.to_document()
        doc['id'] = self.id
        doc['createdAt'] = _iso(self.created_at)
        return doc


@dataclass
class ExamEvent:
    title: str
    date: datetime
    type: str = 'other'
    description: str | None = None
    exam_id: str | None = None
    link: str | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict, event_id: str | None = None) -> ExamEvent:
        return cls(
            id=event_id or data.get('id'),
            title=data.get('title', ''),
            date=to_datetime(data.get('date')) or EPOCH,
            type=data.get('type') or 'other',
            description=data.get('description'),
            exam_id=data.get('examId'),
            link=data.get('link'),
        )

    def to_document(self) -> dict:
        doc = {'title': self.title, 'date': self.date, 'type': self.type}
        if self.description:
            doc['description'] = self.description
        if self.exam_id:
            doc['examId'] = self.exam_id
        if self.link:
            doc['link'] = self.link
        return doc

    def to_dict(self) -> dict:
        doc = self.to_document()
        doc['id'] = self.id
        doc['date'] = _iso(self.date)
        return doc


@dataclass
class Suggestion:
    content: str
    created_at: datetime | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict, suggestion_id: str | None = None) -> Suggestion:
        return cls(
            id=suggestion_id or data.get('id'),
            content=data.get('content', ''),
            created_at=to_datetime(data.get('createdAt')),
        )

    def to_dict(self) -> dict:
        return {'id': self.id, 'content': self.content, 'createdAt': _iso(self.created_at)}
