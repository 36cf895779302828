from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from marshmallow import EXCLUDE, Schema, ValidationError, fields, pre_load, validates, validate

import config

MAX_TEXT = 255
MAX_POS = 50
MAX_BULK = 20
MAX_PAGE_SIZE = 100
# largest id SQLite can store in an INTEGER column
MAX_ID = 2**63 - 1

SORT_FIELDS = ["created_at", "front", "box"]


class FlashcardSchema(Schema):
    """Card text as entered by hand, in the API or in a CSV import."""

    class Meta:
        unknown = EXCLUDE

    front = fields.String(required=True, validate=validate.Length(min=1, max=MAX_TEXT))
    back = fields.String(required=True, validate=validate.Length(min=1, max=MAX_TEXT))
    part_of_speech = fields.String(allow_none=True, validate=validate.Length(max=MAX_POS))
    ai_generated = fields.Boolean(truthy={True}, falsy={False}, load_default=False)

    @pre_load
    def strip_text(self, data, **kwargs):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("front", "back", "part_of_speech"):
            if isinstance(data.get(key), str):
                data[key] = data[key].strip()
        if data.get("part_of_speech") == "":
            data["part_of_speech"] = None
        return data


class ImportedFlashcardSchema(FlashcardSchema):
    ai_generated = fields.Boolean(truthy={True}, falsy={False}, load_default=True)


class BulkImportSchema(Schema):
    flashcards = fields.List(fields.Nested(ImportedFlashcardSchema), required=True,
                             validate=validate.Length(min=1, max=MAX_BULK))


class ReviewUpdateSchema(Schema):
    flashcard_id = fields.Integer(required=True, strict=True,
                                  validate=validate.Range(min=1, max=MAX_ID))
    knew_it = fields.Boolean(required=True, truthy={True}, falsy={False})


class FlashcardListQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    page = fields.Integer(load_default=1, validate=validate.Range(min=1, max=10**6))
    page_size = fields.Integer(load_default=20, validate=validate.Range(min=1, max=MAX_PAGE_SIZE))
    sort_by = fields.String(load_default="created_at", validate=validate.OneOf(SORT_FIELDS))
    order = fields.String(load_default="desc", validate=validate.OneOf(["asc", "desc"]))


class ReviewQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    limit = fields.Integer(load_default=config.REVIEW_SESSION_LIMIT,
                           validate=validate.Range(min=1, max=MAX_PAGE_SIZE))


class ProfileSchema(Schema):
    timezone = fields.String(required=True)

    @validates("timezone")
    def validate_timezone(self, value, **kwargs):
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError("Unknown timezone.")
