from flask import current_app, jsonify, request

from vpe.exceptions import ValidationError

REQUIRED = object()
TRUE_STRINGS = ('1', 'true', 'yes', 'on')
FALSE_STRINGS = ('0', 'false', 'no', 'off')


def registry():
    return current_app.extensions['vpe']


def arguments() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def field(args: dict, name: str, kind=str, default=REQUIRED):
    """Fetch and coerce one argument of an operation."""
    value = args.get(name)
    if value is None:
        if default is REQUIRED:
            raise ValidationError(f"Missing required field: {name}", "MISSING_REQUIRED_FIELD")
        return default

    if kind is int:
        if isinstance(value, bool):
            raise ValidationError(f"{name} must be an integer", "INVALID_FIELD")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be an integer", "INVALID_FIELD")
    if kind is bool:
        if isinstance(value, bool):
            return value
        if str(value).strip().lower() in TRUE_STRINGS:
            return True
        if str(value).strip().lower() in FALSE_STRINGS:
            return False
        raise ValidationError(f"{name} must be a boolean", "INVALID_FIELD")
    if kind is str:
        if isinstance(value, (dict, list)):
            raise ValidationError(f"{name} must be a string", "INVALID_FIELD")
        return str(value)
    # anything else is passed through (ids or names, lists)
    return value


def respond(result):
    ok, payload = result
    return jsonify({'ok': ok, 'result': payload}), 200
