"""
Input validation schemas for ExamStar
"""
from marshmallow import EXCLUDE, Schema, ValidationError, fields, post_load, pre_load, validate, validates_schema

from models import EVENT_TYPES, ClassLevel, ExamStructure, Resource, Subject, to_datetime

SLUG_PATTERN = r'^[a-z0-9]+(?:-[a-z0-9]+)*$'


class FlexibleDateTime(fields.Field):
    """Accepts ISO dates / datetimes and epoch millis, yields aware datetimes"""

    def _deserialize(self, value, attr, data, **kwargs):
        # bool is an int subclass; true/false are not epoch millis
        if isinstance(value, bool):
            raise ValidationError('Not a valid date.')
        try:
            return to_datetime(value)
        except (TypeError, ValueError) as e:
            raise ValidationError('Not a valid date.') from e


class StrippedSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    @pre_load
    def strip_strings(self, data, **kwargs):
        if not isinstance(data, dict):
            return data
        cleaned = {}
        for key, value in data.items():
            if isinstance(value, str):
                value = value.strip()
                field = self.fields.get(key)
                # blank optional form inputs mean "not set"
                if value == '' and field is not None and field.allow_none:
                    value = None
            cleaned[key] = value
        return cleaned


# ============================================================================
# EXAM STRUCTURE
# ============================================================================

class ClassLevelSchema(StrippedSchema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    chapters = fields.List(fields.Str(validate=validate.Length(min=1, max=200)), load_default=list)

    @post_load
    def make_class_level(self, data, **kwargs):
        return ClassLevel(name=data['name'], chapters=data['chapters'])


class SubjectSchema(StrippedSchema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    classes = fields.List(fields.Nested(ClassLevelSchema), load_default=list)

    @validates_schema
    def unique_class_names(self, data, **kwargs):
        names = [c['name'] if isinstance(c, dict) else c.name for c in data.get('classes', [])]
        if len(names) != len(set(names)):
            raise ValidationError('Class names must be unique within a subject.', 'classes')

    @post_load
    def make_subject(self, data, **kwargs):
        return Subject(name=data['name'], classes=data['classes'])


class ExamStructureSchema(StrippedSchema):
    subjects = fields.List(fields.Nested(SubjectSchema), load_default=list)

    @validates_schema
    def unique_subject_names(self, data, **kwargs):
        names = [s['name'] if isinstance(s, dict) else s.name for s in data.get('subjects', [])]
        if len(names) != len(set(names)):
            raise ValidationError('Subject names must be unique within an exam.', 'subjects')

    @post_load
    def make_structure(self, data, **kwargs):
        return ExamStructure(subjects=data['subjects'])


class ExamSchema(StrippedSchema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=150))
    structure = fields.Nested(ExamStructureSchema, load_default=None, allow_none=True)


# ============================================================================
# RESOURCES
# ============================================================================

class ResourceSchema(StrippedSchema):
    examId = fields.Str(required=True, validate=validate.Regexp(SLUG_PATTERN, error='Invalid exam id.'))
    subject = fields.Str(required=True, validate=validate.Length(min=1))
    class_level = fields.Str(required=True, data_key='class', validate=validate.Length(min=1))
    chapter = fields.Str(required=True, validate=validate.Length(min=1))
    type = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    title = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    subtitle = fields.Str(load_default=None, allow_none=True)
    year = fields.Str(load_default=None, allow_none=True, validate=validate.Regexp(r'^\d{4}$', error='Year must be four digits.'))
    fileUrl = fields.Url(required=True)

    @post_load
    def make_resource(self, data, **kwargs):
        return Resource(
            exam_id=data['examId'],
            subject=data['subject'],
            class_level=data['class_level'],
            chapter=data['chapter'],
            type=data['type'],
            title=data['title'],
            subtitle=data.get('subtitle') or None,
            year=data.get('year') or None,
            file_url=data['fileUrl'],
        )


class OrderItemSchema(StrippedSchema):
    id = fields.Str(required=True, validate=validate.Length(min=1))
    order = fields.Int(required=True, strict=True)


class ResourceOrderSchema(StrippedSchema):
    items = fields.List(fields.Nested(OrderItemSchema), required=True, validate=validate.Length(min=1))


class ResourceTypeSchema(StrippedSchema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=50))


# ============================================================================
# EVENTS / SUGGESTIONS
# ============================================================================

class EventSchema(StrippedSchema):
    title = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    date = FlexibleDateTime(required=True)
    type = fields.Str(load_default='other', validate=validate.OneOf(EVENT_TYPES))
    description = fields.Str(load_default=None, allow_none=True)
    examId = fields.Str(load_default=None, allow_none=True)
    link = fields.Url(load_default=None, allow_none=True)


class SuggestionSchema(StrippedSchema):
    content = fields.Str(required=True, validate=validate.Length(min=1, max=500))


exam_schema = ExamSchema()
exam_structure_schema = ExamStructureSchema()
resource_schema = ResourceSchema()
resource_order_schema = ResourceOrderSchema()
resource_type_schema = ResourceTypeSchema()
event_schema = EventSchema()
suggestion_schema = SuggestionSchema()


def validate_schema(schema, data, partial=False):
    """Returns (True, loaded) or (False, errors)"""
    try:
        return True, schema.load(data or {}, partial=partial)
    except ValidationError as err:
        return False, err.messages
