"""JMESPath search with helpers for encoded event fields.

Serverless events frequently carry the interesting data inside a JSON string
(an API gateway ``body``) or a base64 / gzip blob (log subscriptions). The
functions registered here let key expressions reach into those fields:

    parse_json(body).order_id
    parse_json(decode_base64(data)).id
    parse_json(decode_base64_gzip(awslogs.data)).logEvents[0].id
"""

import base64
import gzip
import json
from functools import lru_cache
from typing import Any

import jmespath
from jmespath import functions
from jmespath.parser import ParsedResult


class IdempotencyFunctions(functions.Functions):
    """Custom JMESPath functions available to key and validation expressions."""

    @functions.signature({"types": ["string"]})
    def _func_parse_json(self, value: str) -> Any:
        return json.loads(value)

    @functions.signature({"types": ["string"]})
    def _func_decode_base64(self, value: str) -> str:
        return base64.b64decode(value).decode("utf-8")

    @functions.signature({"types": ["string"]})
    def _func_decode_base64_gzip(self, value: str) -> str:
        return gzip.decompress(base64.b64decode(value)).decode("utf-8")


_OPTIONS = jmespath.Options(custom_functions=IdempotencyFunctions())


@lru_cache(maxsize=128)
def compile_expression(expression: str) -> ParsedResult:
    """Compile and memoize a JMESPath expression."""
    return jmespath.compile(expression)


def search(expression: str, data: Any) -> Any:
    """Evaluate ``expression`` against ``data`` with the custom functions.

    Args:
        expression: JMESPath expression.
        data: Payload to search.

    Returns:
        The selected value, or None when nothing matches.

    Examples:
        >>> search("parse_json(body).id", {"body": '{"id": 7}'})
        7
    """
    return compile_expression(expression).search(data, options=_OPTIONS)
