import json
import base64
import logging


logger = logging.getLogger(__name__)


def serialize_bytes(msg):
    """Serializes msg into its canonical bytes form

    Keys are sorted and separators compact, so equal messages
    always serialize to the same bytes.

    Arguments:
        msg {dict} -- A JSON serializable message

    Returns:
        bytes -- The utf-8 encoded canonical JSON of msg
    """
    msg_str = json.dumps(msg, sort_keys=True, separators=(",", ":"))
    return msg_str.encode("utf-8")


def parse_bytes(msg):
    msg_dict = {}

    if type(msg) is bytes:
        msg_str = msg.decode("utf-8")
        if msg_str:
            msg_dict = json.loads(msg_str)

    return msg_dict


def b64encode(data):
    return base64.b64encode(data).decode("ascii")
