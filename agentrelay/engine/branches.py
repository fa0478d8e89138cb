"""Extract the list a fan-out prompt produced and turn it into branch values."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable, List, Optional

from ..gateway.base import ConversationMessage

logger = logging.getLogger(__name__)

_LIST_TYPE = re.compile(
    r"^\s*(?:list|List)\s*(?:_|<|\[)\s*(?P<element>[A-Za-z]*)\s*(?:>|\])?\s*$"
)
_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_BARE = re.compile(r"\[[^\[\]]*\]|\{[^{}]*\}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("booleans are not integers")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"not an integer: {value!r}")
    return int(value)


_ELEMENT_TYPES: dict[str, Callable[[Any], Any]] = {
    "": lambda v: v,
    "string": str,
    "str": str,
    "integer": _to_int,
    "int": _to_int,
    "long": _to_int,
    "double": float,
    "float": float,
    "boolean": _to_bool,
    "bool": _to_bool,
}


def is_list_type(bind_result_type: Optional[str]) -> bool:
    """Return ``True`` for ``List_Integer``, ``List<String>``, ``list[int]`` and friends."""
    if not bind_result_type:
        return False
    match = _LIST_TYPE.match(bind_result_type)
    return bool(match) and match.group("element").lower() in _ELEMENT_TYPES


def element_converter(bind_result_type: str) -> Callable[[Any], Any]:
    match = _LIST_TYPE.match(bind_result_type)
    if not match:
        raise ValueError(f"Unsupported bind result type: {bind_result_type}")
    element = match.group("element").lower()
    try:
        return _ELEMENT_TYPES[element]
    except KeyError:
        raise ValueError(f"Unsupported bind result element type: {element}") from None


def conversation_text(messages: Iterable[ConversationMessage]) -> str:
    """Concatenate the assistant side of a conversation."""
    texts = [m.text for m in messages if m.text and m.type != "user_message"]
    return "\n".join(texts)


def _candidates(text: str) -> List[str]:
    """JSON snippets in the text, most preferred last."""
    bare = _BARE.findall(text)
    fenced = [block.strip() for block in _FENCED.findall(text)]
    return bare + fenced


def _as_list(decoded: Any, preferred_keys: Iterable[str]) -> Optional[list]:
    if isinstance(decoded, list):
        return decoded
    if isinstance(decoded, dict):
        for key in preferred_keys:
            if isinstance(decoded.get(key), list):
                return decoded[key]
    return None


def extract_list(text: str, bind_result_type: str) -> Optional[list]:
    """Find the last JSON list in ``text`` and coerce its elements.

    Objects are accepted when they hold a list under the type name,
    ``result`` or ``items``. Returns ``None`` if nothing usable is found.
    """
    convert = element_converter(bind_result_type)
    keys = (bind_result_type, "result", "items")
    for snippet in reversed(_candidates(text)):
        try:
            decoded = json.loads(snippet)
        except ValueError:
            continue
        values = _as_list(decoded, keys)
        if values is None:
            continue
        try:
            return [convert(v) for v in values]
        except (TypeError, ValueError) as exc:
            logger.debug(f"Discarding list {snippet!r}: {exc}")
            continue
    return None


def format_bound_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)
