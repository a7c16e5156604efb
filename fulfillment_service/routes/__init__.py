import uuid
from flask import request
from fulfillment_service.errors import NotFoundError, ValidationError


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_uuid(value, label="Resource"):
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise NotFoundError(f"{label} not found") from e
