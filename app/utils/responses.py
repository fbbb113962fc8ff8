from flask import jsonify, request

NOT_AN_OBJECT = "Request body must be a JSON object"


def error_response(error):
    """JSON body and status code for a CheckoutError."""
    body = {"status": "error", "message": error.message}
    if error.details:
        body["details"] = error.details
    reason = getattr(error, "reason", None)
    if reason:
        body["reason"] = reason
    return jsonify(body), error.status_code


def json_body():
    """
    The request's JSON object, ``{}`` when there is no usable body, or None
    when the body is JSON but not an object (e.g. an array).
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        return None
    return data


def not_an_object_response():
    return jsonify({"status": "error", "message": NOT_AN_OBJECT}), 400
