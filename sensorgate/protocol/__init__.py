"""Link protocol: framing, control frames and the outbound encoder."""

from .encoder import OutboundMessage, encode_outbound, frame_text
from .frame import DelimiterFramer, FixedLengthFramer, Framer, build_framer, iter_frames
from .topics import command_topic, record_topic, topic_path

__all__ = [
    "DelimiterFramer",
    "FixedLengthFramer",
    "Framer",
    "OutboundMessage",
    "build_framer",
    "encode_outbound",
    "frame_text",
    "iter_frames",
    "command_topic",
    "record_topic",
    "topic_path",
]
