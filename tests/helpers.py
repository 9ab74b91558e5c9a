import json
from unittest.mock import Mock

import requests
from faker import Faker

from payrecon.webhooks.security import compute_signature

fake = Faker()


def grow_response(body, status_code=200):
    """Build a fake requests.Response returning ``body`` as JSON"""
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"HTTP error: {status_code}")
    else:
        response.raise_for_status.return_value = None
    return response


def grow_success(process_id=None, url=None, token=None):
    return grow_response({
        "status": "1",
        "data": {
            "url": url or f"https://pay.grow.test/{fake.uuid4()}",
            "processId": process_id or str(fake.random_number(digits=8, fix_len=True)),
            "processToken": token or fake.sha1(),
        },
    })


def grow_error(code, message="API error"):
    return grow_response({"status": "0", "err": {"code": code, "message": message}})


def run_inline(target, *args):
    target(*args)


def encode(body):
    return json.dumps(body).encode()


def sign(raw, secret):
    return compute_signature(raw, secret)
