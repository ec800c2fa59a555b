"""Turn tailed text into WebSocket text frames, one input unit per frame."""


def encode_line(text: str) -> str:
    return text + "\n"


def encode_blob(data: bytes, encoding: str = "utf-8") -> str:
    return data.decode(encoding, errors="replace")
