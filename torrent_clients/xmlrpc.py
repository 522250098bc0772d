# torrent_clients/xmlrpc.py - XML-RPC request builder and response decoder
"""
Small XML-RPC codec for rTorrent.

Requests are built as text templates so the encoding of every parameter is
explicit (rTorrent is picky about i4 vs i8). Responses are parsed into an
ElementTree and then unwrapped recursively into native values:

    methodResponse -> params -> param -> value -> {string|i4|i8|boolean|...}

64-bit integers are returned as ``I8`` (a ``str`` subclass) so byte counts
keep every digit; convert with ``int()`` only where arithmetic is needed.
"""
import base64
import re
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape

from .errors import ProtocolError

I4_MIN = -2 ** 31
I4_MAX = 2 ** 31 - 1

_INTEGER = re.compile(r"^[+-]?\d+$")


class I8(str):
    """A 64-bit integer carried as its decimal digit string."""

    def __new__(cls, value):
        text = str(value).strip()
        if not _INTEGER.match(text):
            raise ValueError(f"Not an integer literal: {value!r}")
        return super().__new__(cls, text.lstrip('+'))


class Base64(bytes):
    """Raw bytes that must be sent as <base64>."""


# --- Encoding ---

def _encode_value(value) -> str:
    # bool is an int subclass, check it first
    if isinstance(value, bool):
        return f"<value><boolean>{1 if value else 0}</boolean></value>"
    if isinstance(value, I8):
        return f"<value><i8>{value}</i8></value>"
    if isinstance(value, int):
        if I4_MIN <= value <= I4_MAX:
            return f"<value><i4>{value}</i4></value>"
        return f"<value><i8>{value}</i8></value>"
    if isinstance(value, float):
        return f"<value><double>{value!r}</double></value>"
    if isinstance(value, str):
        return f"<value><string>{escape(value)}</string></value>"
    if isinstance(value, (bytes, bytearray)):
        encoded = base64.b64encode(bytes(value)).decode('ascii')
        return f"<value><base64>{encoded}</base64></value>"
    if isinstance(value, (list, tuple)):
        items = "".join(_encode_value(v) for v in value)
        return f"<value><array><data>{items}</data></array></value>"
    if isinstance(value, dict):
        members = "".join(
            f"<member><name>{escape(str(k))}</name>{_encode_value(v)}</member>"
            for k, v in value.items()
        )
        return f"<value><struct>{members}</struct></value>"
    if value is None:
        return "<value><nil/></value>"
    raise TypeError(f"Cannot encode {type(value).__name__} as XML-RPC")


def build_call(method: str, params=()) -> str:
    """Builds a <methodCall> document."""
    xml_params = "".join(f"<param>{_encode_value(p)}</param>" for p in params)
    return (
        "<?xml version='1.0'?>"
        f"<methodCall><methodName>{escape(method)}</methodName>"
        f"<params>{xml_params}</params></methodCall>"
    )


def build_response(value) -> str:
    """Builds a successful <methodResponse> carrying one value."""
    return (
        "<?xml version='1.0'?>"
        f"<methodResponse><params><param>{_encode_value(value)}</param></params></methodResponse>"
    )


def build_fault(code: int, message: str) -> str:
    fault = _encode_value({"faultCode": code, "faultString": message})
    return f"<?xml version='1.0'?><methodResponse><fault>{fault}</fault></methodResponse>"


# --- Decoding ---

def _text(node: ET.Element) -> str:
    return (node.text or "").strip()


def _decode_int(node):
    text = _text(node)
    if not _INTEGER.match(text):
        raise ProtocolError(f"Invalid <{node.tag}> value: {text!r}")
    return int(text)


def _decode_i8(node):
    text = _text(node) or "0"
    try:
        return I8(text)
    except ValueError as e:
        raise ProtocolError(f"Invalid <i8> value: {text!r}") from e


def _decode_boolean(node):
    text = _text(node)
    if text not in ("0", "1"):
        raise ProtocolError(f"Invalid <boolean> value: {text!r}")
    return text == "1"


def _decode_double(node):
    try:
        return float(_text(node))
    except ValueError as e:
        raise ProtocolError(f"Invalid <double> value: {_text(node)!r}") from e


def _decode_base64(node):
    try:
        return base64.b64decode(_text(node))
    except ValueError as e:
        raise ProtocolError("Invalid <base64> value") from e


def _decode_array(node):
    data = node.find("data")
    if data is None:
        return []
    return [_decode_value(v) for v in data.findall("value")]


def _decode_struct(node):
    result = {}
    for member in node.findall("member"):
        name = member.find("name")
        value = member.find("value")
        if name is None or value is None:
            raise ProtocolError("Malformed <member> in XML-RPC struct")
        result[name.text or ""] = _decode_value(value)
    return result


_DECODERS = {
    "string": lambda node: node.text or "",
    "i4": _decode_int,
    "int": _decode_int,
    "i8": _decode_i8,
    "boolean": _decode_boolean,
    "double": _decode_double,
    "base64": _decode_base64,
    "dateTime.iso8601": _text,
    "array": _decode_array,
    "struct": _decode_struct,
    "nil": lambda node: None,
}


def _decode_value(node: ET.Element):
    children = list(node)
    if not children:
        # A bare <value>text</value> is a string
        return node.text or ""
    typed = children[0]
    decoder = _DECODERS.get(typed.tag)
    if decoder is None:
        raise ProtocolError(f"Unsupported XML-RPC type <{typed.tag}>")
    return decoder(typed)


def parse_response(xml_text: str):
    """
    Decodes a <methodResponse>. Raises ProtocolError on a <fault> or on
    anything that is not a well-formed XML-RPC response.
    """
    try:
        # Some web servers emit blank lines before the declaration
        root = ET.fromstring(xml_text.strip())
    except ET.ParseError as e:
        raise ProtocolError(f"Invalid XML-RPC response: {e} | Raw: {xml_text[:100]}") from e

    if root.tag != "methodResponse":
        raise ProtocolError(f"Expected <methodResponse>, got <{root.tag}>")

    fault = root.find("fault")
    if fault is not None:
        value = fault.find("value")
        detail = _decode_value(value) if value is not None else {}
        if not isinstance(detail, dict):
            detail = {}
        code = detail.get("faultCode")
        message = detail.get("faultString", "Unknown error")
        raise ProtocolError(f"XML-RPC Fault: {message} ({code})", code=code, fault_string=message)

    params = root.find("params")
    if params is None:
        raise ProtocolError("XML-RPC response has neither <params> nor <fault>")
    value = params.find("param/value")
    if value is None:
        return None
    return _decode_value(value)
