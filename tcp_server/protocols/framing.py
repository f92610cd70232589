"""
BW32 frame decoder

Splits the byte stream of a tracker connection into '#'-terminated frames
and parses each one into a DeviceFrame:

    BW*<deviceId>*<len>*<CMD>,<payload>#

Only the first two '*' after the prefix are structural; the payload may
carry more of them.
"""
import logging
from typing import List, Optional, Tuple

from .messages import Command, DeviceFrame

logger = logging.getLogger(__name__)

FRAME_PREFIX = "BW*"
FRAME_DELIMITER = b"#"
MAX_BUFFER_SIZE = 8192  # bytes kept without seeing a delimiter


class BW32FrameDecoder:
    """Stateless frame extraction; each connection owns its own buffer"""

    def __init__(self, max_buffer_size: int = MAX_BUFFER_SIZE):
        self.max_buffer_size = max_buffer_size

    def split_frames(self, buffer: bytes) -> Tuple[List[bytes], bytes]:
        """
        Cut every complete frame off the front of the buffer.
        Returns the frames in receive order and the bytes left for the next read.
        A remainder larger than max_buffer_size is discarded.
        """
        frames = []
        start = 0
        while True:
            end = buffer.find(FRAME_DELIMITER, start)
            if end == -1:
                break
            frames.append(buffer[start:end + 1])
            start = end + 1

        remainder = buffer[start:]
        if len(remainder) > self.max_buffer_size:
            logger.warning(
                f"No frame delimiter within {self.max_buffer_size} bytes, "
                f"discarding {len(remainder)} buffered bytes"
            )
            remainder = b""
        return frames, remainder

    def parse_frame(self, raw: bytes) -> Optional[DeviceFrame]:
        """Parse one delimiter-terminated chunk, None if it is malformed"""
        try:
            text = raw.decode('utf-8').strip()
        except UnicodeDecodeError:
            logger.warning(f"Non UTF-8 BW frame dropped: {raw[:100]!r}")
            return None

        if not text.startswith(FRAME_PREFIX) or not text.endswith('#'):
            logger.warning(f"Invalid BW frame format: {text[:100]!r}")
            return None

        content = text[len(FRAME_PREFIX):-1]
        parts = content.split('*')
        if len(parts) < 3:
            logger.warning(f"Invalid BW frame parts: {text[:100]!r}")
            return None

        device_id = parts[0]
        if not device_id:
            logger.warning(f"BW frame without device id: {text[:100]!r}")
            return None

        length_token = parts[1]
        # str.isdigit() also accepts non-ASCII digits such as '²' that int() rejects
        declared_length = (int(length_token)
                           if length_token.isascii() and length_token.isdigit() else None)

        command_data = '*'.join(parts[2:])
        command_token, _, payload = command_data.partition(',')

        return DeviceFrame(
            device_id=device_id,
            declared_length=declared_length,
            command=Command.from_token(command_token),
            command_token=command_token,
            payload=payload,
            raw=text,
        )

    def decode(self, buffer: bytes) -> Tuple[List[DeviceFrame], bytes]:
        """Split and parse in one go; malformed frames are dropped"""
        raw_frames, remainder = self.split_frames(buffer)
        frames = []
        for raw in raw_frames:
            frame = self.parse_frame(raw)
            if frame is not None:
                frames.append(frame)
        return frames, remainder
